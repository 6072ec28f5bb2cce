import asyncio
from datetime import date, timedelta

import typer
from rich.console import Console
from rich.table import Table

from statuspage.core.exceptions import ConflictError

console = Console()
cli_app = typer.Typer(name="statuspage-admin", help="Status page administrative CLI")


def _run_async(coro):
    """Run async code from sync CLI context."""
    return asyncio.run(coro)


async def _ensure_db():
    from statuspage.core.database import init_db
    await init_db()


@cli_app.command("create-key")
def create_key(
    label: str = typer.Option(..., "--label", help="Human-readable label for this key"),
    scope: str = typer.Option("user", "--scope", help="Key scope: 'user' or 'admin'"),
    notes: str = typer.Option(None, "--notes", help="Optional notes"),
):
    """Create a new API key."""
    async def _create():
        await _ensure_db()
        from statuspage.services.auth import AuthService
        return await AuthService().create_key(label=label, scope=scope, notes=notes)

    raw_key, key_row = _run_async(_create())

    console.print("\n[bold green]API key created.[/bold green]\n")
    console.print(f"  Label:  {key_row.label}")
    console.print(f"  Scope:  {key_row.scope}")
    console.print(f"  Prefix: {key_row.key_prefix}")
    console.print(f"\n  [bold yellow]Key: {raw_key}[/bold yellow]")
    console.print("\n  [dim]Save this key now, it cannot be retrieved later.[/dim]\n")


@cli_app.command("list-keys")
def list_keys():
    """List all active API keys."""
    async def _list():
        await _ensure_db()
        from statuspage.services.auth import AuthService
        return await AuthService().list_keys()

    keys = _run_async(_list())

    if not keys:
        console.print("[dim]No active API keys found.[/dim]")
        return

    table = Table(title="Active API Keys")
    table.add_column("Prefix", style="cyan")
    table.add_column("Label")
    table.add_column("Scope", style="green")
    table.add_column("Created")
    table.add_column("Last Used")

    for key in keys:
        created = key.created_at.strftime("%Y-%m-%d %H:%M") if key.created_at else "-"
        last_used = key.last_used_at.strftime("%Y-%m-%d %H:%M") if key.last_used_at else "never"
        table.add_row(key.key_prefix, key.label, key.scope, created, last_used)

    console.print(table)


@cli_app.command("revoke-key")
def revoke_key(
    key: str = typer.Argument(help="Full API key or key prefix to revoke"),
):
    """Revoke an API key."""
    async def _revoke():
        await _ensure_db()
        from statuspage.services.auth import AuthService
        return await AuthService().revoke_key(key)

    try:
        revoked = _run_async(_revoke())
    except ConflictError as e:
        console.print(f"[red]{e.message}[/red]")
        for label in e.details.get("labels", []):
            console.print(f"  {label}")
        raise typer.Exit(code=1)

    if revoked:
        console.print("[bold red]Key revoked.[/bold red]")
    else:
        console.print(f"[yellow]No active key found matching '{key}'.[/yellow]")
        raise typer.Exit(code=1)


@cli_app.command("calculate-uptime")
def calculate_uptime(
    day: str = typer.Option(None, "--date", help="UTC date (YYYY-MM-DD), defaults to yesterday"),
):
    """Recompute uptime rows for one day."""
    try:
        target = date.fromisoformat(day) if day else None
    except ValueError:
        console.print(f"[red]Invalid date '{day}', expected YYYY-MM-DD.[/red]")
        raise typer.Exit(code=2)

    async def _calculate():
        await _ensure_db()
        from statuspage.services.uptime_recorder import UptimeRecorder
        recorder = UptimeRecorder()
        resolved = target or recorder.today() - timedelta(days=1)
        return resolved, await recorder.record_day(resolved)

    resolved, summary = _run_async(_calculate())
    console.print(
        f"[green]{resolved.isoformat()}[/green]: {summary.recorded} recorded, {summary.skipped} skipped"
    )
    if summary.skipped:
        raise typer.Exit(code=1)


@cli_app.command("backfill")
def backfill(
    days: int = typer.Option(7, "--days", min=1, max=365, help="Days before today to process"),
    missing_only: bool = typer.Option(False, "--missing-only", help="Only fill days without a stored row"),
):
    """Recompute (or fill in) uptime rows for past days."""
    async def _backfill():
        await _ensure_db()
        from statuspage.services.uptime_recorder import UptimeRecorder
        recorder = UptimeRecorder()
        if missing_only:
            return await recorder.backfill_missing(days)
        return await recorder.backfill(days)

    summary = _run_async(_backfill())

    table = Table(title=f"Uptime backfill ({days} days)")
    table.add_column("Recorded", style="green")
    table.add_column("Skipped", style="red")
    table.add_row(str(summary.recorded), str(summary.skipped))
    console.print(table)
    if summary.skipped:
        raise typer.Exit(code=1)


def main():
    cli_app()


if __name__ == "__main__":
    main()
