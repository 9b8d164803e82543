"""mailrag rich error messages: what went wrong and the exact fix.

Usage:
    from mailrag.cli.errors import err_no_api_key
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

_ENV_MAP = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "azure": "AZURE_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _ENV_MAP.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_config(message: str) -> str:
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_no_mail_source() -> str:
    return (
        "[red]Error:[/] No mail source given.\n"
        "  Import a local archive:  mailrag sync --mbox PATH\n"
        "  Or set gmail.token_file in mailrag.yaml (an authorized-user token JSON)."
    )


def err_token_file_missing(path: str) -> str:
    return (
        f"[red]Error:[/] Gmail token file not found: '{path}'\n"
        "  Create an OAuth token with the gmail.readonly scope and point\n"
        "  gmail.token_file (or --token-file) at it."
    )


def err_mbox_not_found(path: str) -> str:
    return f"[red]Error:[/] mbox file not found: '{path}'"


def err_no_imap_credentials() -> str:
    return (
        "[red]Error:[/] IMAP credentials missing.\n"
        "  Set:  export IMAP_USER=you@gmail.com\n"
        "        export IMAP_APP_PASSWORD=<app password>"
    )


def err_conversation_not_found(conversation_id: str) -> str:
    return (
        f"[red]Error:[/] Conversation '{conversation_id}' not found.\n"
        "  Omit --conversation to start a new one."
    )
