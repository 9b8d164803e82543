"""Tests for the HTTP API (FastAPI TestClient over fake providers)."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from fakes import FakeEmbedder, FakeMailApi, InMemoryVectorIndex, ScriptedChatModel, make_message
from mailrag.api.app import create_app
from mailrag.capabilities import Capabilities
from mailrag.chat.stream import NDJSON_MEDIA_TYPE, decode_lines
from mailrag.config import MailragConfig
from mailrag.errors import UpstreamFatal, UpstreamRetryable
from mailrag.services import build_services

U1 = {"X-User-Id": "u1"}
U2 = {"X-User-Id": "u2"}


@pytest.fixture
def mail_api():
    return FakeMailApi(
        [
            make_message("m1", "The Q1 budget was approved."),
            make_message("m2", "A" * 9_000, subject="Long report"),
            make_message("m3", "Sent the contract.", sender="Me <me@example.com>"),
        ]
    )


@pytest.fixture
def services(tmp_path, mail_api):
    cfg = MailragConfig()
    cfg.database.path = str(tmp_path / "api.db")
    cfg.mailbox.email = "me@example.com"
    caps = Capabilities(
        embedder=FakeEmbedder(),
        chat_model=ScriptedChatModel(),
        vector_index=InMemoryVectorIndex(),
    )
    svc = build_services(cfg, capabilities=caps, mail_api=mail_api)
    yield svc
    svc.close()


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def _events(response):
    return decode_lines(response.text.splitlines())


# ------------------------------------------------------------------
# Health / conversations
# ------------------------------------------------------------------


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_conversation_crud(client):
    created = client.post("/api/conversations", json={"title": "Vendors"}, headers=U1)
    assert created.status_code == 201
    conv_id = created.json()["id"]

    listed = client.get("/api/conversations", headers=U1).json()
    assert [c["id"] for c in listed] == [conv_id]
    assert client.get("/api/conversations", headers=U2).json() == []

    renamed = client.patch(f"/api/conversations/{conv_id}", json={"title": "Suppliers"}, headers=U1)
    assert renamed.json()["title"] == "Suppliers"

    assert client.delete(f"/api/conversations/{conv_id}", headers=U1).status_code == 204
    assert client.get(f"/api/conversations/{conv_id}", headers=U1).status_code == 404


def test_create_without_body_uses_default_title(client):
    assert client.post("/api/conversations", headers=U1).json()["title"] == "New chat"


def test_rename_empty_title_is_400(client):
    conv_id = client.post("/api/conversations", headers=U1).json()["id"]
    resp = client.patch(f"/api/conversations/{conv_id}", json={"title": " "}, headers=U1)
    assert resp.status_code == 400
    assert resp.json() == {"message": "Title is required", "error": "ValidationError"}


def test_other_users_conversation_is_404(client):
    conv_id = client.post("/api/conversations", headers=U1).json()["id"]
    assert client.get(f"/api/conversations/{conv_id}", headers=U2).status_code == 404
    assert client.delete(f"/api/conversations/{conv_id}", headers=U2).status_code == 404
    assert client.get(f"/api/conversations/{conv_id}/chats", headers=U2).status_code == 404


# ------------------------------------------------------------------
# Streamed chat
# ------------------------------------------------------------------


def test_message_stream(client):
    client.post("/api/mail/sync", json={})
    conv_id = client.post("/api/conversations", headers=U1).json()["id"]

    resp = client.post(
        f"/api/conversations/{conv_id}/messages",
        json={"message": "Who approved the budget?"},
        headers=U1,
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith(NDJSON_MEDIA_TYPE)
    events = _events(resp)
    assert events[0]["type"] == "metadata"
    assert events[0]["matchCount"] > 0
    assert events[-1]["type"] == "done"
    answer = "".join(e["content"] for e in events if e["type"] == "chunk")

    chats = client.get(f"/api/conversations/{conv_id}/chats", headers=U1).json()
    assert [(c["role"], c["sequence"]) for c in chats] == [("user", 1), ("assistant", 2)]
    assert chats[1]["message"] == answer


def test_question_alias_accepted(client):
    conv_id = client.post("/api/conversations", headers=U1).json()["id"]
    resp = client.post(
        f"/api/conversations/{conv_id}/messages", json={"question": "hello"}, headers=U1
    )
    assert _events(resp)[-1]["type"] == "done"


def test_empty_message_is_400_before_stream(client):
    conv_id = client.post("/api/conversations", headers=U1).json()["id"]
    resp = client.post(f"/api/conversations/{conv_id}/messages", json={"message": "  "}, headers=U1)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Message is required"
    assert client.get(f"/api/conversations/{conv_id}/chats", headers=U1).json() == []


def test_message_to_foreign_conversation_is_404(client):
    conv_id = client.post("/api/conversations", headers=U1).json()["id"]
    resp = client.post(f"/api/conversations/{conv_id}/messages", json={"message": "hi"}, headers=U2)
    assert resp.status_code == 404


def test_chat_endpoint_creates_conversation(client):
    resp = client.post("/api/chat", json={"message": "hello", "topK": 3}, headers=U1)
    events = _events(resp)
    conv_id = events[0]["conversationId"]
    assert [c["id"] for c in client.get("/api/conversations", headers=U1).json()] == [conv_id]

    follow = client.post(
        "/api/chat", json={"message": "again", "conversationId": conv_id}, headers=U1
    )
    assert _events(follow)[0]["conversationId"] == conv_id
    chats = client.get(f"/api/conversations/{conv_id}/chats", headers=U1).json()
    assert [c["sequence"] for c in chats] == [1, 2, 3, 4]



def test_embedding_failure_before_stream_is_500(client, services):
    failing = UpstreamRetryable("rate limited after retries")
    with patch.object(services.capabilities.embedder, "embed", side_effect=failing):
        resp = client.post("/api/chat", json={"message": "hello"}, headers=U1)
    assert resp.status_code == 500
    assert resp.json() == {
        "message": "rate limited after retries",
        "error": "UpstreamRetryable",
    }


# ------------------------------------------------------------------
# Mail
# ------------------------------------------------------------------


def test_sync(client, services):
    resp = client.post("/api/mail/sync", json={"all": True, "maxResults": 2})
    assert resp.status_code == 200
    assert resp.json() == {"syncedCount": 4, "attachmentChunksSynced": 0, "namespace": "emails"}
    stored = services.capabilities.vector_index.namespaces["emails"]
    assert {"m2_chunk_0", "m2_chunk_1"} <= set(stored)
    assert stored["m3"].metadata["direction"] == "outbound"


def test_sync_single_page(client):
    resp = client.post("/api/mail/sync", json={"maxResults": 1})
    assert resp.json()["syncedCount"] == 1


def test_list_messages(client):
    body = client.get("/api/mail/messages", params={"maxResults": 2}).json()
    assert [m["id"] for m in body["messages"]] == ["m1", "m2"]
    assert body["nextPageToken"] == "2"
    assert body["fetchedCount"] == 2
    assert body["resultSizeEstimate"] == 3


def test_sync_without_mail_connection(tmp_path):
    cfg = MailragConfig()
    cfg.database.path = str(tmp_path / "nomail.db")
    caps = Capabilities(FakeEmbedder(), ScriptedChatModel(), InMemoryVectorIndex())
    svc = build_services(cfg, capabilities=caps)
    try:
        resp = TestClient(create_app(svc)).post("/api/mail/sync", json={})
        assert resp.status_code == 404
        assert resp.json()["message"] == "No mail connection configured"
    finally:
        svc.close()


def test_sync_embedding_failure_is_500(client, services):
    failing = UpstreamFatal("invalid api key")
    with patch.object(services.capabilities.embedder, "embed", side_effect=failing):
        resp = client.post("/api/mail/sync", json={"maxResults": 1})
    assert resp.status_code == 500
    assert resp.json()["error"] == "UpstreamFatal"
