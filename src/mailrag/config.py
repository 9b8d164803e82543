"""Layered configuration for mailrag.

Later layers win:
  hardcoded defaults < ~/.mailrag/config.yaml < ./mailrag.yaml
  < MAILRAG_* / IMAP_USER environment variables < CLI flags (applied by callers)

The global file holds model and mailbox defaults only. Credential-like keys
there raise ConfigError; keys and passwords come from the environment
(the IMAP app password only from IMAP_APP_PASSWORD). YAML is read with
yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".mailrag"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "mailrag.yaml"

# Credential-looking keys are forbidden in the global config.
# Does NOT match legitimate keys like token_file, max_tokens, batch_size.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "embedding",
        "generation",
        "retrieval",
        "chunking",
        "conversation",
        "retry",
        "mailbox",
        "gmail",
        "imap",
        "server",
        "database",
    ]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (mailrag.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100


@dataclass
class GenerationCfg:
    """Chat model configuration (mailrag.yaml: generation:).

    ``utility_model`` handles the small background calls (titles, memory).
    """

    model: str = "openai/gpt-4o-mini"
    utility_model: str = "openai/gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 500


@dataclass
class RetrievalCfg:
    top_k: int = 6
    namespace: str = "emails"


@dataclass
class ChunkingCfg:
    """Chunk sizes in characters (mailrag.yaml: chunking:)."""

    email_max_chars: int = 8_000
    document_chunk_size: int = 800
    document_overlap: int = 150


@dataclass
class ConversationCfg:
    history_limit: int = 15
    memory_summary_messages: int = 8
    memory_max_chars: int = 2_000
    fallback_answer: str = "No answer available."


@dataclass
class RetryCfg:
    """Bounded retry for provider calls: exponential backoff with jitter."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0


@dataclass
class MailboxCfg:
    email: str = ""


@dataclass
class GmailCfg:
    token_file: str | None = None
    max_results: int = 25
    max_total: int = 200
    detail_batch_size: int = 10


@dataclass
class ImapCfg:
    """Live listener settings. The password comes from IMAP_APP_PASSWORD."""

    host: str = "imap.gmail.com"
    port: int = 993
    user: str = ""
    folder: str = "[Gmail]/All Mail"
    label_query: str = "label:INBOX OR label:SENT"
    fetch_count: int = 1
    reconnect_delay: float = 30.0
    poll_interval: float = 10.0


@dataclass
class ServerCfg:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class DatabaseCfg:
    path: str = ".mailrag.db"


@dataclass
class MailragConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    conversation: ConversationCfg = field(default_factory=ConversationCfg)
    retry: RetryCfg = field(default_factory=RetryCfg)
    mailbox: MailboxCfg = field(default_factory=MailboxCfg)
    gmail: GmailCfg = field(default_factory=GmailCfg)
    imap: ImapCfg = field(default_factory=ImapCfg)
    server: ServerCfg = field(default_factory=ServerCfg)
    database: DatabaseCfg = field(default_factory=DatabaseCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {type(raw).__name__}.")
    return raw


def _cfg_from_dict(data: dict[str, Any]) -> MailragConfig:
    """Build a *MailragConfig* from a merged raw YAML dict."""
    cfg = MailragConfig()

    e = _section(data, "embedding")
    cfg.embedding = EmbeddingCfg(
        model=str(e.get("model", cfg.embedding.model)),
        dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
    )

    g = _section(data, "generation")
    cfg.generation = GenerationCfg(
        model=str(g.get("model", cfg.generation.model)),
        utility_model=str(g.get("utility_model", cfg.generation.utility_model)),
        temperature=float(g.get("temperature", cfg.generation.temperature)),
        max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
    )

    r = _section(data, "retrieval")
    cfg.retrieval = RetrievalCfg(
        top_k=int(r.get("top_k", cfg.retrieval.top_k)),
        namespace=str(r.get("namespace", cfg.retrieval.namespace)),
    )

    ch = _section(data, "chunking")
    cfg.chunking = ChunkingCfg(
        email_max_chars=int(ch.get("email_max_chars", cfg.chunking.email_max_chars)),
        document_chunk_size=int(
            ch.get("document_chunk_size", cfg.chunking.document_chunk_size)
        ),
        document_overlap=int(ch.get("document_overlap", cfg.chunking.document_overlap)),
    )

    c = _section(data, "conversation")
    cfg.conversation = ConversationCfg(
        history_limit=int(c.get("history_limit", cfg.conversation.history_limit)),
        memory_summary_messages=int(
            c.get("memory_summary_messages", cfg.conversation.memory_summary_messages)
        ),
        memory_max_chars=int(c.get("memory_max_chars", cfg.conversation.memory_max_chars)),
        fallback_answer=str(c.get("fallback_answer", cfg.conversation.fallback_answer)),
    )

    rt = _section(data, "retry")
    cfg.retry = RetryCfg(
        max_attempts=int(rt.get("max_attempts", cfg.retry.max_attempts)),
        base_delay=float(rt.get("base_delay", cfg.retry.base_delay)),
        max_delay=float(rt.get("max_delay", cfg.retry.max_delay)),
    )

    mb = _section(data, "mailbox")
    cfg.mailbox = MailboxCfg(email=str(mb.get("email", cfg.mailbox.email)))

    gm = _section(data, "gmail")
    cfg.gmail = GmailCfg(
        token_file=gm.get("token_file") or cfg.gmail.token_file,
        max_results=int(gm.get("max_results", cfg.gmail.max_results)),
        max_total=int(gm.get("max_total", cfg.gmail.max_total)),
        detail_batch_size=int(gm.get("detail_batch_size", cfg.gmail.detail_batch_size)),
    )

    im = _section(data, "imap")
    cfg.imap = ImapCfg(
        host=str(im.get("host", cfg.imap.host)),
        port=int(im.get("port", cfg.imap.port)),
        user=str(im.get("user", cfg.imap.user)),
        folder=str(im.get("folder", cfg.imap.folder)),
        label_query=str(im.get("label_query", cfg.imap.label_query)),
        fetch_count=int(im.get("fetch_count", cfg.imap.fetch_count)),
        reconnect_delay=float(im.get("reconnect_delay", cfg.imap.reconnect_delay)),
        poll_interval=float(im.get("poll_interval", cfg.imap.poll_interval)),
    )

    sv = _section(data, "server")
    cfg.server = ServerCfg(
        host=str(sv.get("host", cfg.server.host)),
        port=int(sv.get("port", cfg.server.port)),
    )

    db = _section(data, "database")
    cfg.database = DatabaseCfg(path=str(db.get("path", cfg.database.path)))

    _validate(cfg)
    return cfg


def _validate(cfg: MailragConfig) -> None:
    if not 1 <= cfg.retrieval.top_k <= 20:
        raise ConfigError(f"retrieval.top_k must be between 1 and 20, got {cfg.retrieval.top_k}")
    if cfg.chunking.document_overlap >= cfg.chunking.document_chunk_size:
        raise ConfigError("chunking.document_overlap must be smaller than document_chunk_size")
    if cfg.retry.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be >= 1")


def _apply_env_overrides(cfg: MailragConfig) -> MailragConfig:
    """Apply MAILRAG_* / IMAP_USER environment variable overrides."""
    if model := os.environ.get("MAILRAG_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("MAILRAG_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if namespace := os.environ.get("MAILRAG_NAMESPACE"):
        cfg.retrieval.namespace = namespace
    if mailbox := os.environ.get("MAILRAG_MAILBOX_EMAIL"):
        cfg.mailbox.email = mailbox
    if db_path := os.environ.get("MAILRAG_DB"):
        cfg.database.path = db_path
    if imap_user := os.environ.get("IMAP_USER"):
        cfg.imap.user = imap_user
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> MailragConfig:
    """Load and return a merged *MailragConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *mailrag.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains credential-like fields or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.mailrag/config.yaml`` with defaults if it does not exist.

    Parent directory gets mode 0o700, the file 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# mailrag global configuration (defaults only).\n"
            "# Keep API keys and passwords out of this file. Set them in the environment:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export IMAP_APP_PASSWORD=...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4o-mini\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
