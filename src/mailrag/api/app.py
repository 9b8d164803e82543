"""FastAPI application: conversations, streamed chat, mail sync.

Identity comes from the ``X-User-Id`` header (``"local"`` when absent);
authenticating that header is left to whatever fronts the service.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from mailrag import __version__
from mailrag.api.schemas import (
    ChatRequest,
    ChatTurnOut,
    ConversationCreate,
    ConversationOut,
    ConversationRename,
    MessageListResponse,
    MessageRequest,
    SyncRequest,
    SyncResponse,
)
from mailrag.chat.stream import NDJSON_MEDIA_TYPE, encode_events
from mailrag.errors import MailragError, NotFoundError
from mailrag.services import MailragServices
from mailrag.sources.bulk import ListOptions

logger = logging.getLogger(__name__)

DEFAULT_USER = "local"


def _error_response(status_code: int, message: str, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "error": error})


def create_app(services: MailragServices) -> FastAPI:
    """Build the app around an already-wired services bundle."""
    app = FastAPI(title="mailrag", version=__version__)
    app.state.services = services

    @app.exception_handler(MailragError)
    async def mailrag_error_handler(request: Request, exc: MailragError) -> JSONResponse:
        return _error_response(exc.status_code, exc.message or "Request failed", type(exc).__name__)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(500, "Request failed", str(exc))

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    @app.post("/api/conversations", status_code=201, response_model=ConversationOut)
    def create_conversation(
        body: ConversationCreate | None = None,
        user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
    ) -> dict:
        title = body.title if body else None
        return services.conversations.create(user_id, title).to_dict()

    @app.get("/api/conversations", response_model=list[ConversationOut])
    def list_conversations(user_id: str = Header(DEFAULT_USER, alias="X-User-Id")) -> list[dict]:
        return [c.to_dict() for c in services.conversations.list(user_id)]

    @app.get("/api/conversations/{conversation_id}", response_model=ConversationOut)
    def get_conversation(
        conversation_id: str, user_id: str = Header(DEFAULT_USER, alias="X-User-Id")
    ) -> dict:
        return services.conversations.get(conversation_id, user_id).to_dict()

    @app.patch("/api/conversations/{conversation_id}", response_model=ConversationOut)
    def rename_conversation(
        conversation_id: str,
        body: ConversationRename,
        user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
    ) -> dict:
        return services.conversations.rename(conversation_id, user_id, body.title).to_dict()

    @app.delete("/api/conversations/{conversation_id}", status_code=204)
    def delete_conversation(
        conversation_id: str, user_id: str = Header(DEFAULT_USER, alias="X-User-Id")
    ) -> Response:
        services.conversations.delete(conversation_id, user_id)
        return Response(status_code=204)

    @app.get("/api/conversations/{conversation_id}/chats", response_model=list[ChatTurnOut])
    def list_chats(
        conversation_id: str, user_id: str = Header(DEFAULT_USER, alias="X-User-Id")
    ) -> list[dict]:
        return [t.to_dict() for t in services.conversations.chats(conversation_id, user_id)]

    # ------------------------------------------------------------------
    # Streamed chat
    # ------------------------------------------------------------------

    def _stream(user_id: str, text: str, conversation_id: str | None, top_k) -> StreamingResponse:
        # Everything that can fail before the first line raises here and
        # becomes a plain JSON error via the exception handlers.
        prepared = services.engine.prepare_turn(user_id, text, conversation_id, top_k)
        return StreamingResponse(
            encode_events(services.engine.stream_turn(prepared)),
            media_type=NDJSON_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/api/conversations/{conversation_id}/messages")
    def send_message(
        conversation_id: str,
        body: MessageRequest,
        user_id: str = Header(DEFAULT_USER, alias="X-User-Id"),
    ) -> StreamingResponse:
        return _stream(user_id, body.text, conversation_id, body.top_k)

    @app.post("/api/chat")
    def chat(
        body: ChatRequest, user_id: str = Header(DEFAULT_USER, alias="X-User-Id")
    ) -> StreamingResponse:
        return _stream(user_id, body.text, body.conversation_id, body.top_k)

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    @app.post("/api/mail/sync", response_model=SyncResponse)
    def sync_mail(body: SyncRequest | None = None) -> dict:
        body = body or SyncRequest()
        cfg = services.config.gmail
        options = ListOptions.from_request(
            all=body.all,
            max_results=body.max_results,
            max_total=body.max_total,
            label_filter=body.label_filter,
            query=body.query,
            page_token=body.page_token,
            default_max_results=cfg.max_results,
            default_max_total=cfg.max_total,
        )
        return services.sync_mailbox(options).to_dict()

    @app.get("/api/mail/messages", response_model=MessageListResponse)
    def list_mail(
        all: str | None = Query(None),
        max_results: str | None = Query(None, alias="maxResults"),
        max_total: str | None = Query(None, alias="maxTotal"),
        label_filter: str | None = Query(None, alias="labelFilter"),
        q: str | None = Query(None),
        page_token: str | None = Query(None, alias="pageToken"),
    ) -> dict:
        if services.lister is None:
            raise NotFoundError("No mail connection configured")
        options = ListOptions.from_request(
            all=all,
            max_results=max_results,
            max_total=max_total,
            label_filter=label_filter,
            query=q,
            page_token=page_token,
            default_max_results=20,
            default_max_total=services.config.gmail.max_total,
        )
        previews, listing = services.lister.preview(options)
        return {
            "messages": [p.to_dict() for p in previews],
            "nextPageToken": listing.next_page_token,
            "resultSizeEstimate": listing.result_size_estimate,
            "fetchedCount": len(previews),
        }

    return app
