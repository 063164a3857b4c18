"""CLI for membership system operators.

Provides database initialisation, admin bootstrap and the API server.
"""

import asyncio
from typing import Optional

import pydantic
import typer
from rich.console import Console
from rich.table import Table

from membership_system.config import get_settings
from membership_system.core.schemas import AdminBootstrapRequest
from membership_system.core.users import UserService
from membership_system.database.connection import close_db, get_session_factory, init_db
from membership_system.database.models import User

app = typer.Typer(
    name="membership-admin",
    help="Library association membership system - operator commands",
    add_completion=False,
)

console = Console()


async def _init_db() -> None:
    try:
        await init_db()
    finally:
        await close_db()


async def _create_admin(request: AdminBootstrapRequest) -> tuple[User, bool]:
    service = UserService(get_settings())
    try:
        await init_db()
        async with get_session_factory()() as db:
            return await service.create_or_promote_admin(request, db)
    finally:
        await close_db()


@app.command("init-db")
def init_db_command() -> None:
    """Create all database tables that do not exist yet."""
    settings = get_settings()
    try:
        asyncio.run(_init_db())
    except Exception as e:
        console.print(f"[red]Error:[/red] Database initialisation failed: {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Tables ready on {settings.database_url.split('@')[-1]}")


@app.command("create-admin")
def create_admin(
    email: str = typer.Argument(..., help="Admin login email"),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="Admin password (min 6 characters)",
    ),
    name: str = typer.Option("Administrator", "--name", "-n", help="Display name"),
) -> None:
    """Create an admin account, or promote an existing user to admin."""
    try:
        request = AdminBootstrapRequest(email=email, password=password, name=name)
    except pydantic.ValidationError as e:
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            console.print(f"[red]Error:[/red] {field}: {error['msg']}")
        raise typer.Exit(1)

    try:
        user, created = asyncio.run(_create_admin(request))
    except Exception as e:
        console.print(f"[red]Error:[/red] Could not create admin: {e}")
        raise typer.Exit(1)

    table = Table(title="Admin account")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("ID", str(user.id))
    table.add_row("Email", user.email)
    table.add_row("Action", "created" if created else "promoted")
    console.print(table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "membership_system.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload or settings.debug,
        log_level=settings.log_level.lower(),
    )


def _version_callback(value: bool) -> None:
    if value:
        from membership_system import __version__

        console.print(f"membership-system v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Library association membership system."""


if __name__ == "__main__":
    app()
