"""CLI for the fulfillment server - operations and support tasks.

Usage:
    fulfillment serve
    fulfillment db upgrade
    fulfillment user show EMAIL
    fulfillment user logout EMAIL
    fulfillment catalog show
"""

import asyncio
from typing import Any

import typer
from rich import box
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="fulfillment",
    help="CLI for the fulfillment server",
    add_completion=False,
)
console = Console()


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address (default from settings)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port (default from settings)"),
) -> None:
    """Run the HTTP server."""
    import uvicorn

    from fulfillment.config import settings

    uvicorn.run(
        "fulfillment.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.dev_mode,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


# =============================================================================
# Database Commands
# =============================================================================

db_app = typer.Typer(help="Manage the database schema")
app.add_typer(db_app, name="db")


@db_app.command("upgrade")
def db_upgrade() -> None:
    """Apply all pending migrations."""
    from fulfillment.main import run_migrations

    try:
        asyncio.run(run_migrations())
    except Exception as e:
        console.print(f"[red]Migration failed: {e}[/red]")
        raise typer.Exit(1) from e
    console.print("[green]Database is up to date[/green]")


# =============================================================================
# User Commands
# =============================================================================

user_app = typer.Typer(help="Inspect readers and their sessions")
app.add_typer(user_app, name="user")


async def _show_user_async(email: str) -> dict[str, Any] | None:
    """Load a user with their sessions and grants."""
    from fulfillment.db import get_session, repository
    from fulfillment.tokens import email_identifier

    async with get_session() as session:
        user = await repository.get_user_by_email_hmac(session, email_identifier(email))
        if user is None:
            return None
        sessions = await repository.list_user_sessions(session, user.id)
        grants = await repository.list_user_authorizations(session, user.id)
        return {
            "id": user.id,
            "email_hmac": user.email_hmac,
            "pending_link": user.login_token is not None,
            "created": user.created_at.strftime("%Y-%m-%d %H:%M"),
            "sessions": [
                (s.id, s.created_at.strftime("%Y-%m-%d %H:%M"), s.valid) for s in sessions
            ],
            "grants": [
                (g.path, repository.ensure_utc(g.expires_on).strftime("%Y-%m-%d %H:%M"))
                for g in grants
            ],
        }


async def _logout_user_async(email: str) -> int | None:
    """Invalidate every session of a user and cancel any pending magic link."""
    from fulfillment.db import get_session, repository
    from fulfillment.tokens import email_identifier

    async with get_session() as session:
        user = await repository.get_user_by_email_hmac(session, email_identifier(email))
        if user is None:
            return None
        await repository.set_login_token(session, user, None)
        return await repository.invalidate_sessions_except(session, user.id, [])


@user_app.command("show")
def user_show(
    email: str = typer.Argument(..., help="The reader's email address"),
) -> None:
    """Show a reader's sessions and access grants."""
    try:
        data = asyncio.run(_show_user_async(email))
    except Exception as e:
        console.print(f"[red]Failed to load user: {e}[/red]")
        raise typer.Exit(1) from e

    if data is None:
        console.print("[yellow]No user found for that email[/yellow]")
        raise typer.Exit(1)

    console.print(f"\n[bold cyan]User {data['id']}[/bold cyan] [dim]{data['email_hmac']}[/dim]")
    console.print(f"Created {data['created']}")
    if data["pending_link"]:
        console.print("[yellow]Magic link pending[/yellow]")

    sessions_table = Table(title="Sessions", box=box.ROUNDED)
    sessions_table.add_column("ID", style="cyan", justify="right")
    sessions_table.add_column("Created", style="green")
    sessions_table.add_column("Valid")
    for session_id, created, valid in data["sessions"]:
        valid_str = "[green]✓[/green]" if valid else "[red]✗[/red]"
        sessions_table.add_row(str(session_id), created, valid_str)
    console.print(sessions_table)

    grants_table = Table(title="Authorizations", box=box.ROUNDED)
    grants_table.add_column("Path", style="cyan")
    grants_table.add_column("Expires", style="green")
    for path, expires in data["grants"]:
        grants_table.add_row(path, expires)
    console.print(grants_table)


@user_app.command("logout")
def user_logout(
    email: str = typer.Argument(..., help="The reader's email address"),
) -> None:
    """Sign a reader out everywhere."""
    try:
        count = asyncio.run(_logout_user_async(email))
    except Exception as e:
        console.print(f"[red]Failed to log out user: {e}[/red]")
        raise typer.Exit(1) from e

    if count is None:
        console.print("[yellow]No user found for that email[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Invalidated {count} session(s)[/green]")


# =============================================================================
# Catalog Commands
# =============================================================================

catalog_app = typer.Typer(help="Inspect the product and poll files")
app.add_typer(catalog_app, name="catalog")


@catalog_app.command("show")
def catalog_show() -> None:
    """Validate and list the products and polls."""
    from fulfillment.catalog import load_snapshot
    from fulfillment.config import settings

    try:
        snapshot = asyncio.run(load_snapshot(settings.store_file, settings.polls_file))
    except Exception as e:
        console.print(f"[red]Failed to load catalog: {e}[/red]")
        raise typer.Exit(1) from e

    if not snapshot.products:
        console.print("[yellow]No products found[/yellow]")
    else:
        table = Table(title="Products", box=box.ROUNDED)
        table.add_column("Path", style="cyan")
        table.add_column("Name", style="white")
        table.add_column("Files", justify="right")
        table.add_column("Links", justify="right")
        table.add_column("Members")
        table.add_column("Access", style="magenta")
        for path, product in snapshot.products.items():
            access = "-"
            if product.cdn is not None:
                access = f"{product.cdn.expiry.amount} {product.cdn.expiry.unit}"
            table.add_row(
                path,
                product.name,
                str(len(product.files or {})),
                str(len(product.links or [])),
                "[green]✓[/green]" if product.members else "",
                access,
            )
        console.print(table)

    if snapshot.polls:
        polls_table = Table(title="Polls", box=box.ROUNDED)
        polls_table.add_column("Name", style="cyan")
        polls_table.add_column("Type")
        polls_table.add_column("Unique")
        for name, poll in snapshot.polls.items():
            polls_table.add_row(name, poll.type, "[green]✓[/green]" if poll.unique else "")
        console.print(polls_table)


# Entry point
if __name__ == "__main__":
    app()
