"""
Kreisverband Portal - CLI Entry Point

Administrative commands that run outside the API.

Usage:
    # Create the first admin
    kvportal create-user --username admin --email admin@example.org --role admin

    # Delete newsletter analytics older than one year
    kvportal cleanup-analytics

    # Run the API
    kvportal serve --port 8000
"""

import asyncio

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kvportal import __version__
from kvportal import models  # noqa: F401
from kvportal.auth.models import UserRole
from kvportal.auth.schemas import UserCreate
from kvportal.auth.services import UserService
from kvportal.core.database import Base, async_session_maker, engine
from kvportal.core.errors import AppError
from kvportal.core.logging import configure_logging
from kvportal.newsletter.tracking import cleanup_old_analytics

app = typer.Typer(
    name="kvportal",
    help="Administration commands for the Kreisverband portal",
    add_completion=False,
)
console = Console()


def print_banner() -> None:
    """Print the application banner."""
    console.print(Panel.fit(
        f"[bold red]Kreisverband Portal[/bold red] [dim]v{__version__}[/dim]",
        border_style="red",
    ))
    console.print()


@app.callback()
def main() -> None:
    configure_logging()


@app.command("create-user")
def create_user(
    username: str = typer.Option(..., "--username", "-u", help="Login name"),
    email: str = typer.Option(..., "--email", "-e", help="E-mail address"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True
    ),
    role: UserRole = typer.Option(UserRole.MITGLIED, "--role", "-r", help="User role"),
    first_name: str | None = typer.Option(None, "--first-name"),
    last_name: str | None = typer.Option(None, "--last-name"),
) -> None:
    """Create a portal user."""
    print_banner()
    try:
        data = UserCreate(
            username=username,
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=role,
        )
    except ValidationError as e:
        for error in e.errors():
            console.print(f"[red]Error:[/red] {error['loc'][-1]}: {error['msg']}")
        raise typer.Exit(1) from e

    async def run() -> None:
        async with async_session_maker() as session:
            user = await UserService(session).create_user(data)
            await session.commit()

        table = Table(show_header=False)
        table.add_row("ID", str(user.id))
        table.add_row("Username", user.username)
        table.add_row("E-Mail", user.email)
        table.add_row("Role", str(user.role))
        console.print(table)

    try:
        asyncio.run(run())
    except AppError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e
    console.print("[green]User created[/green]")


@app.command("cleanup-analytics")
def cleanup_analytics() -> None:
    """Delete newsletter analytics older than one year."""
    print_banner()

    async def run() -> int:
        async with async_session_maker() as session:
            deleted = await cleanup_old_analytics(session)
            await session.commit()
        return deleted

    deleted = asyncio.run(run())
    console.print(f"[green]Deleted {deleted} analytics records[/green]")


@app.command("init-db")
def init_db() -> None:
    """Create all tables (development only, use Alembic in production)."""
    print_banner()

    async def run() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(run())
    console.print("[green]Tables created[/green]")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run("kvportal.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
