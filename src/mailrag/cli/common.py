"""Shared CLI plumbing: config loading, API key checks, service construction."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from mailrag.cli.errors import err_config, err_no_api_key
from mailrag.config import ConfigError, MailragConfig, load_config
from mailrag.llm.client import validate_api_key

console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through rich. Library modules never add handlers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose)],
        force=True,
    )
    if not verbose:
        for noisy in ("LiteLLM", "litellm", "httpx", "googleapiclient.discovery_cache"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def load_cli_config(db: Path | None = None) -> MailragConfig:
    """load_config() plus CLI overrides; config errors exit with code 1."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    if db is not None:
        cfg.database.path = str(db)
    return cfg


def require_api_keys(cfg: MailragConfig, *, chat: bool = True) -> None:
    models = [cfg.embedding.model]
    if chat:
        models += [cfg.generation.model, cfg.generation.utility_model]
    for model in models:
        try:
            validate_api_key(model)
        except EnvironmentError:
            provider = model.split("/")[0] if "/" in model else "openai"
            console.print(err_no_api_key(provider))
            raise typer.Exit(1)
