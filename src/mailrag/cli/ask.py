"""mailrag ask: stream an answer about your mailbox to the terminal."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from mailrag.chat.stream import ChunkEvent, ErrorEvent, MetadataEvent, TitleEvent
from mailrag.cli.common import console, load_cli_config, require_api_keys
from mailrag.cli.errors import err_conversation_not_found
from mailrag.errors import MailragError, NotFoundError
from mailrag.services import build_services

CLI_USER = "local"


def ask_cmd(
    question: Annotated[str, typer.Argument(help="Question about your mail.")],
    conversation: Annotated[
        str | None,
        typer.Option("--conversation", "-c", help="Continue an existing conversation."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", help="Matches to retrieve (1-20)."),
    ] = None,
    show_sources: Annotated[
        bool,
        typer.Option("--sources/--no-sources", help="List cited emails after the answer."),
    ] = True,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mailrag database."),
    ] = None,
) -> None:
    """Answer QUESTION from the indexed mailbox, streaming tokens as they arrive."""
    cfg = load_cli_config(db)
    require_api_keys(cfg)
    services = build_services(cfg)
    failed = False
    try:
        try:
            prepared = services.engine.prepare_turn(CLI_USER, question, conversation, top_k)
        except NotFoundError:
            console.print(err_conversation_not_found(conversation or ""))
            raise typer.Exit(1)
        except MailragError as exc:
            console.print(f"[red]Error:[/] {exc.message or exc}")
            raise typer.Exit(1)

        citations: list[dict] = []
        for event in services.engine.stream_turn(prepared):
            if isinstance(event, MetadataEvent):
                citations = event.citations
            elif isinstance(event, ChunkEvent):
                console.print(event.content, end="", markup=False, highlight=False)
            elif isinstance(event, TitleEvent):
                pass
            elif isinstance(event, ErrorEvent):
                console.print(f"\n[red]Error:[/] {event.message}")
                failed = True
        console.print()

        if show_sources and citations:
            console.print("\n[bold]Sources[/]")
            for n, c in enumerate(citations, start=1):
                label = f"attachment {c['filename']}" if c["docType"] == "attachment" else c["subject"]
                console.print(f"  [dim]{n}.[/] {label}, {c['from']} ({c['date']})", markup=True)
        console.print(f"[dim]conversation {prepared.conversation.id}[/]")
    finally:
        services.close()
    if failed:
        raise typer.Exit(1)
