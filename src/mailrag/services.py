"""Wiring: builds the capability bundle, stores, pipeline and engine from config."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from mailrag.capabilities import Capabilities, MailApi
from mailrag.chat.conversations import ConversationStore
from mailrag.chat.engine import ChatSettings, ConversationEngine
from mailrag.config import MailragConfig
from mailrag.db.connection import Database
from mailrag.db.repository import ConversationRepository
from mailrag.db.vectors import SqliteVectorIndex
from mailrag.errors import NotFoundError
from mailrag.ingest.attachments import DefaultTextExtractor
from mailrag.ingest.chunker import TextChunker
from mailrag.ingest.pipeline import IngestionPipeline, IngestResult
from mailrag.llm.client import LiteLLMClient
from mailrag.rag.retriever import Retriever
from mailrag.sources.bulk import BulkMailLister, ListOptions

logger = logging.getLogger(__name__)


@dataclass
class MailragServices:
    config: MailragConfig
    capabilities: Capabilities
    repository: ConversationRepository
    conversations: ConversationStore
    pipeline: IngestionPipeline
    retriever: Retriever
    engine: ConversationEngine
    lister: BulkMailLister | None = None
    _connections: list[sqlite3.Connection] = field(default_factory=list, repr=False)

    def sync_mailbox(self, options: ListOptions) -> IngestResult:
        """List, fetch and ingest mail from the configured mail API."""
        if self.lister is None:
            raise NotFoundError("No mail connection configured")
        messages = self.lister.fetch(options)
        logger.info("Fetched %d messages for sync", len(messages))
        return self.pipeline.ingest(messages, mailbox_email=self.config.mailbox.email)

    def close(self) -> None:
        self.engine.close()
        for conn in self._connections:
            conn.close()
        self._connections.clear()


def build_capabilities(
    config: MailragConfig,
    vector_conn: sqlite3.Connection,
    mail_api: MailApi | None = None,
) -> Capabilities:
    client = LiteLLMClient(config.embedding, config.generation, config.retry)
    return Capabilities(
        embedder=client,
        chat_model=client,
        vector_index=SqliteVectorIndex(vector_conn),
        mail_api=mail_api,
        text_extractor=DefaultTextExtractor(),
    )


def build_services(
    config: MailragConfig,
    *,
    capabilities: Capabilities | None = None,
    mail_api: MailApi | None = None,
) -> MailragServices:
    """Assemble every service for *config*.

    Pass *capabilities* to substitute providers (tests use fakes); otherwise
    LiteLLM and the sqlite-vec index are used.
    """
    database = Database(config.database.path)
    repo_conn = database.open_shared()
    connections = [repo_conn]
    if capabilities is None:
        vector_conn = database.open_shared()
        connections.append(vector_conn)
        capabilities = build_capabilities(config, vector_conn, mail_api)
    elif mail_api is not None:
        capabilities.mail_api = mail_api

    repository = ConversationRepository(repo_conn)
    pipeline = IngestionPipeline(
        capabilities.embedder,
        capabilities.vector_index,
        namespace=config.retrieval.namespace,
        email_chunker=TextChunker(config.chunking.email_max_chars, overlap=0),
        document_chunker=TextChunker(
            config.chunking.document_chunk_size, config.chunking.document_overlap
        ),
        text_extractor=capabilities.text_extractor,
    )
    retriever = Retriever(
        capabilities.embedder,
        capabilities.vector_index,
        namespace=config.retrieval.namespace,
        default_top_k=config.retrieval.top_k,
    )
    engine = ConversationEngine(
        repository,
        retriever,
        capabilities.chat_model,
        settings=ChatSettings.from_config(config.conversation),
        mailbox_email=config.mailbox.email,
    )
    lister = None
    if capabilities.mail_api is not None:
        lister = BulkMailLister(capabilities.mail_api, config.gmail.detail_batch_size)
    return MailragServices(
        config=config,
        capabilities=capabilities,
        repository=repository,
        conversations=ConversationStore(repository),
        pipeline=pipeline,
        retriever=retriever,
        engine=engine,
        lister=lister,
        _connections=connections,
    )
