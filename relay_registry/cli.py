"""
Admin CLI for Relay Registry.

Utilities:
  - migrate             : initialize / upgrade the SQLite schema
  - create-admin        : create an admin account
  - create-api-key      : generate and store an API key (printed once)
  - list-api-keys       : list stored API keys (masked)
  - set-api-key-active  : activate or deactivate an API key
  - record-status       : report a node's health (e.g. from a cron probe)

Usage:
  relay-registry-admin <command> [options]
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from .config import Settings, get_settings
from .errors import ApiError
from .logging import get_logger, setup_logging
from .services.admins import AdminStore
from .services.api_keys import CredentialStore
from .services.registry import NodeRegistry
from .storage import Database, run_migrations

app = typer.Typer(add_completion=False, help="Relay Registry: Admin CLI")
log = get_logger(__name__)


@dataclass
class AppCtx:
    settings: Settings
    db: Optional[Database] = None

    def open_db(self) -> Database:
        if self.db is None:
            self.db = Database(self.settings.storage.db_path)
            run_migrations(self.db)
        return self.db


def _ctx(ctx: typer.Context) -> AppCtx:
    return ctx.obj


def _fail(err: ApiError) -> None:
    typer.echo(f"❌ {err.message}", err=True)
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite database path (overrides DB_PATH)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level (default: WARNING)"),
):
    """
    Shared options for all subcommands.
    """
    settings = get_settings()
    if db_path:
        settings = settings.model_copy(deep=True)
        settings.storage.db_path = Path(db_path)
    setup_logging(service_name=settings.service_name, level=log_level or "WARNING", log_format="console")
    ctx.obj = AppCtx(settings=settings)
    ctx.call_on_close(lambda: ctx.obj.db.close() if ctx.obj.db is not None else None)


@app.command("migrate")
def migrate(ctx: typer.Context):
    """
    Apply the schema (idempotent).
    """
    db = _ctx(ctx).open_db()
    typer.echo(f"✅ Migrations applied to {db.path}.")


@app.command("create-admin")
def create_admin(
    ctx: typer.Context,
    username: str = typer.Option(..., "--username", "-u", help="Login name (3-50 chars)"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True),
    email: Optional[str] = typer.Option(None, "--email", "-e"),
):
    """
    Create an admin account. Works regardless of the registration setting.
    """
    app_ctx = _ctx(ctx)
    store = AdminStore(app_ctx.open_db(), app_ctx.settings.security)
    try:
        admin = store.register(username, password, email=email)
    except ApiError as e:
        _fail(e)
    typer.echo(f"✅ Admin created: id={admin.id} username={admin.username}")


@app.command("create-api-key")
def create_api_key(
    ctx: typer.Context,
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Label for this key"),
    rate_limit: Optional[int] = typer.Option(None, "--rate-limit", "-r", help="Requests per minute"),
):
    """
    Generate and store an API key. The full key is shown only here.
    """
    app_ctx = _ctx(ctx)
    store = CredentialStore(app_ctx.open_db(), app_ctx.settings.api_keys)
    try:
        cred = store.create(description, rate_limit)
    except ApiError as e:
        _fail(e)
    typer.echo(f"✅ API key created: id={cred.id} rate_limit={cred.rate_limit}/min")
    typer.echo(cred.key)


@app.command("list-api-keys")
def list_api_keys(
    ctx: typer.Context,
    show_inactive: bool = typer.Option(True, "--all/--active-only", help="Include deactivated keys"),
):
    """
    List stored API keys (masked).
    """
    app_ctx = _ctx(ctx)
    store = CredentialStore(app_ctx.open_db(), app_ctx.settings.api_keys)
    creds, total = store.list(is_active=None if show_inactive else True, limit=100)
    if not creds:
        typer.echo("No API keys found.")
        return
    for c in creds:
        state = "active" if c.is_active else "inactive"
        last = c.last_used_at.isoformat() if c.last_used_at else "-"
        typer.echo(f"[{c.id}] {c.masked_key}  {c.rate_limit:>6}/min  {state:<8} last_used={last}  {c.description or ''}")
    if total > len(creds):
        typer.echo(f"... {total - len(creds)} more")


@app.command("set-api-key-active")
def set_api_key_active(
    ctx: typer.Context,
    key_id: int = typer.Argument(..., help="Numeric id of the API key"),
    active: bool = typer.Option(True, "--active/--inactive"),
):
    """
    Activate or deactivate an API key by id.
    """
    app_ctx = _ctx(ctx)
    store = CredentialStore(app_ctx.open_db(), app_ctx.settings.api_keys)
    if not store.set_active(key_id, active):
        typer.echo(f"❌ API key id={key_id} not found", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"✅ API key id={key_id} {'activated' if active else 'deactivated'}")


@app.command("record-status")
def record_status(
    ctx: typer.Context,
    node_id: int = typer.Argument(..., help="Numeric id of the node"),
    status: str = typer.Argument(..., help="Online | Offline"),
    response_time: Optional[int] = typer.Option(None, "--response-time", "-t", help="Probe latency in ms"),
):
    """
    Record a node status report (updates the cached status and appends history).
    """
    registry = NodeRegistry(_ctx(ctx).open_db())
    try:
        ok = registry.record_status(node_id, status, response_time)
    except ApiError as e:
        _fail(e)
    if not ok:
        typer.echo(f"❌ Node id={node_id} not found", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"✅ Node id={node_id} is now {status}")


if __name__ == "__main__":
    app()
