"""mailrag CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from mailrag.cli.ask import ask_cmd
from mailrag.cli.common import configure_logging
from mailrag.cli.listen import listen_cmd
from mailrag.cli.serve import serve_cmd
from mailrag.cli.sync import sync_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("mailrag")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"mailrag {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="mailrag",
    help=(
        "mailrag — ask questions about your mailbox.\n\n"
        "  mailrag sync    Index mail from Gmail or an mbox file.\n"
        "  mailrag ask     Stream an answer grounded in your mail."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging."),
    ] = False,
) -> None:
    """mailrag — ask questions about your mailbox."""
    configure_logging(verbose)


app.command("sync")(sync_cmd)
app.command("ask")(ask_cmd)
app.command("listen")(listen_cmd)
app.command("serve")(serve_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed mailrag version."""
    typer.echo(f"mailrag {_installed_version()}")


if __name__ == "__main__":
    app()
