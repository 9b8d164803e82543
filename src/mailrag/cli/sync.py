"""mailrag sync: ingest a mailbox into the vector index.

Sources:
  --mbox PATH          local mbox archive (offline)
  gmail.token_file     Gmail REST API via an authorized-user token
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from mailrag.cli.common import console, load_cli_config, require_api_keys
from mailrag.cli.errors import err_mbox_not_found, err_no_mail_source, err_token_file_missing
from mailrag.errors import MailragError
from mailrag.services import build_services
from mailrag.sources.bulk import ListOptions
from mailrag.sources.gmail import GmailMailApi
from mailrag.sources.rfc822 import iter_mbox


def sync_cmd(
    mbox: Annotated[
        Path | None,
        typer.Option("--mbox", help="Import a local mbox file instead of Gmail."),
    ] = None,
    token_file: Annotated[
        Path | None,
        typer.Option("--token-file", help="Gmail authorized-user token JSON."),
    ] = None,
    all_pages: Annotated[
        bool,
        typer.Option("--all", help="Keep paging until --max-total messages."),
    ] = False,
    max_results: Annotated[
        int | None,
        typer.Option("--max-results", help="Messages per page (1-100)."),
    ] = None,
    max_total: Annotated[
        int | None,
        typer.Option("--max-total", help="Upper bound on messages with --all."),
    ] = None,
    query: Annotated[
        str | None,
        typer.Option("--query", "-q", help="Gmail search query, e.g. 'newer_than:7d'."),
    ] = None,
    labels: Annotated[
        str | None,
        typer.Option("--labels", help="Comma-separated Gmail label ids."),
    ] = None,
    mailbox: Annotated[
        str | None,
        typer.Option("--mailbox", help="Your own address (outbound detection)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mailrag database."),
    ] = None,
) -> None:
    """Fetch mail, embed it and upsert it into the index."""
    cfg = load_cli_config(db)
    if mailbox:
        cfg.mailbox.email = mailbox

    if mbox is not None:
        if not mbox.exists():
            console.print(err_mbox_not_found(str(mbox)))
            raise typer.Exit(1)
        require_api_keys(cfg, chat=False)
        services = build_services(cfg)
        try:
            with console.status(f"Importing {mbox}…"):
                result = services.pipeline.ingest(
                    list(iter_mbox(mbox)), mailbox_email=cfg.mailbox.email
                )
        except MailragError as exc:
            console.print(f"[red]Error:[/] {exc.message or exc}")
            raise typer.Exit(1)
        finally:
            services.close()
        _report(result.synced_count, result.attachment_chunks_synced, result.namespace)
        return

    token = token_file or (Path(cfg.gmail.token_file) if cfg.gmail.token_file else None)
    if token is None:
        console.print(err_no_mail_source())
        raise typer.Exit(1)
    if not token.expanduser().exists():
        console.print(err_token_file_missing(str(token)))
        raise typer.Exit(1)

    require_api_keys(cfg, chat=False)
    services = build_services(cfg, mail_api=GmailMailApi.from_token_file(token))
    options = ListOptions.from_request(
        all=all_pages,
        max_results=max_results,
        max_total=max_total,
        label_filter=labels,
        query=query,
        default_max_results=cfg.gmail.max_results,
        default_max_total=cfg.gmail.max_total,
    )
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task("Syncing Gmail…", total=None)
            result = services.sync_mailbox(options)
    except MailragError as exc:
        console.print(f"[red]Error:[/] {exc.message or exc}")
        raise typer.Exit(1)
    finally:
        services.close()
    _report(result.synced_count, result.attachment_chunks_synced, result.namespace)


def _report(synced: int, attachment_chunks: int, namespace: str) -> None:
    console.print(
        f"[green]✓[/] {synced} email vectors, {attachment_chunks} attachment chunks "
        f"→ namespace '{namespace}'"
    )
