"""mailrag listen: ingest new mail as it arrives over IMAP."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

import typer

from mailrag.cli.common import console, load_cli_config, require_api_keys
from mailrag.cli.errors import err_no_imap_credentials
from mailrag.services import build_services
from mailrag.sources.imap import ImapMailFeed
from mailrag.sources.listener import LiveMailListener


def listen_cmd(
    reconnect_delay: Annotated[
        float | None,
        typer.Option("--reconnect-delay", help="Seconds to wait after a lost connection."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mailrag database."),
    ] = None,
) -> None:
    """Watch the mailbox and index each new inbox / sent message. Ctrl-C stops."""
    cfg = load_cli_config(db)
    password = os.environ.get("IMAP_APP_PASSWORD", "")
    if not cfg.imap.user or not password:
        console.print(err_no_imap_credentials())
        raise typer.Exit(1)
    require_api_keys(cfg, chat=False)

    imap = cfg.imap
    services = build_services(cfg)
    listener = LiveMailListener(
        lambda: ImapMailFeed(
            imap.host,
            imap.port,
            imap.user,
            password,
            folder=imap.folder,
            label_query=imap.label_query,
            poll_interval=imap.poll_interval,
        ),
        services.pipeline,
        mailbox_email=cfg.mailbox.email or imap.user.lower(),
        fetch_count=imap.fetch_count,
        reconnect_delay=imap.reconnect_delay if reconnect_delay is None else reconnect_delay,
    )
    console.print(f"Listening for new mail on {imap.user} ({imap.folder}). Ctrl-C to stop.")
    listener.start()
    try:
        listener.wait()
    except KeyboardInterrupt:
        console.print("\nStopping…")
    finally:
        listener.stop()
        services.close()
    console.print(f"[green]✓[/] {listener.processed_count} messages indexed")
