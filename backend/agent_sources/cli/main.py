"""`ags` command: drive the Agent Sources HTTP API from a shell."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, List, Optional

import requests
import typer

app = typer.Typer(name="ags", help="Agent Sources command-line interface")
prefetch_app = typer.Typer(name="prefetch", help="Inspect and control link prefetching")
app.add_typer(prefetch_app, name="prefetch")

DEFAULT_HOST = "http://127.0.0.1:3090"
REQUEST_TIMEOUT = 60


def _base_url(host: Optional[str]) -> str:
    return (host or os.environ.get("AGS_HOST") or DEFAULT_HOST).rstrip("/")


def _resolve_user(override: Optional[str]) -> str:
    user = override or os.environ.get("AGS_USER")
    if not user:
        typer.echo("A user id is required (--user or AGS_USER)", err=True)
        raise typer.Exit(code=2)
    return user


def _call(method: str, path: str, host: Optional[str] = None, user: Optional[str] = None, **kwargs) -> Any:
    """Send one API request and return the decoded body; exit 1 on any non-2xx."""
    headers = {"X-User-Id": user} if user else {}
    resp = requests.request(method, _base_url(host) + path, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
    if not resp.ok:
        try:
            body = resp.json()
            detail = body.get("error", body) if isinstance(body, dict) else body
        except ValueError:
            detail = resp.text
        typer.echo(f"{method} {path} failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp.json()


def _show(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def url(
    file_id: str = typer.Argument(..., help="Cited file id"),
    message: str = typer.Option(..., "--message", help="Message id"),
    conversation: str = typer.Option(..., "--conversation", help="Conversation id"),
    user: Optional[str] = typer.Option(None, "--user", help="Requesting user id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Request a download link for one cited file."""
    payload = {"fileId": file_id, "messageId": message, "conversationId": conversation}
    _show(_call("POST", "/api/files/agent-source-url", host=host, user=_resolve_user(user), json=payload))


@app.command()
def batch(
    file_ids: List[str] = typer.Argument(..., help="Cited file ids"),
    message: str = typer.Option(..., "--message", help="Message id"),
    conversation: str = typer.Option(..., "--conversation", help="Conversation id"),
    user: Optional[str] = typer.Option(None, "--user", help="Requesting user id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Request download links for several cited files."""
    payload = {"fileIds": list(file_ids), "messageId": message, "conversationId": conversation}
    _show(_call("POST", "/api/files/agent-source-urls-batch", host=host, user=_resolve_user(user), json=payload))


@app.command()
def process(
    content: Path = typer.Argument(..., help="JSON file holding the response's content parts"),
    message: str = typer.Option(..., "--message", help="Message id"),
    conversation: str = typer.Option(..., "--conversation", help="Conversation id"),
    user: Optional[str] = typer.Option(None, "--user", help="Owning user id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Record citations from a saved agent response."""
    parts = json.loads(content.expanduser().read_text(encoding="utf-8"))
    if isinstance(parts, dict):
        parts = parts.get("contentParts") or parts.get("content") or []
    payload = {"messageId": message, "conversationId": conversation, "contentParts": parts}
    _show(_call("POST", "/api/agents/responses", host=host, user=_resolve_user(user), json=payload))


@app.command()
def purge(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Apply citation and audit retention."""
    _show(_call("POST", "/admin/purge", host=host))


@prefetch_app.command("run")
def prefetch_run(
    message: str = typer.Option(..., "--message", help="Message id"),
    conversation: str = typer.Option(..., "--conversation", help="Conversation id"),
    force: bool = typer.Option(False, "--force", help="Ignore the confidence threshold"),
    user: Optional[str] = typer.Option(None, "--user", help="Requesting user id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Prefetch likely downloads for a message."""
    payload = {"messageId": message, "conversationId": conversation, "priorityOverride": force}
    _show(_call("POST", "/api/prefetch/run", host=host, user=_resolve_user(user), json=payload))


@prefetch_app.command("clear")
def prefetch_clear(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Drop every prefetched link."""
    _show(_call("POST", "/admin/prefetch/clear", host=host))


if __name__ == "__main__":
    app()
