"""mailrag serve: run the HTTP API with uvicorn."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import uvicorn

from mailrag.api.app import create_app
from mailrag.cli.common import console, load_cli_config, require_api_keys
from mailrag.cli.errors import err_token_file_missing
from mailrag.services import build_services
from mailrag.sources.gmail import GmailMailApi


def serve_cmd(
    host: Annotated[str | None, typer.Option("--host", help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option("--port", help="Bind port.")] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mailrag database."),
    ] = None,
) -> None:
    """Serve conversations, streamed chat and mail sync over HTTP."""
    cfg = load_cli_config(db)
    require_api_keys(cfg)

    mail_api = None
    if cfg.gmail.token_file:
        token = Path(cfg.gmail.token_file).expanduser()
        if not token.exists():
            console.print(err_token_file_missing(str(token)))
            raise typer.Exit(1)
        mail_api = GmailMailApi.from_token_file(token)

    services = build_services(cfg, mail_api=mail_api)
    try:
        uvicorn.run(
            create_app(services),
            host=host or cfg.server.host,
            port=port or cfg.server.port,
            log_config=None,
        )
    finally:
        services.close()
