"""Command-line interface using Typer."""

import asyncio
from datetime import UTC, datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from likes_archive import __version__
from likes_archive.logging import setup_logging

# Setup logging
setup_logging()

app = typer.Typer(
    name="likes-archive",
    help="Likes Archive - resumable archive of liked posts and their media",
    add_completion=False,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Likes Archive v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Likes Archive - download a user's liked posts and keep them locally."""
    pass


@app.command("init-db")
def init_db_command() -> None:
    """Create any missing database tables."""
    from likes_archive.config import settings
    from likes_archive.db.session import init_db

    try:
        init_db()
    except Exception as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"[bold green]✓ Database ready[/bold green] [dim]{settings.database_url}[/dim]")


@app.command("generate-key")
def generate_key() -> None:
    """Print a new ENCRYPTION_MASTER_KEY for storing session tokens."""
    from likes_archive.services.encryption import generate_master_key

    console.print(f"ENCRYPTION_MASTER_KEY={generate_master_key()}", soft_wrap=True)
    console.print(
        "[dim]Add this to .env; tokens stored under another key cannot be read back[/dim]"
    )


@app.command()
def login(
    user_id: str = typer.Option(..., "--user-id", "-u", help="Source account ID"),
    username: str = typer.Option(..., "--username", help="Account handle"),
    access_token: str = typer.Option(..., "--access-token", help="OAuth2 access token"),
    refresh_token: str = typer.Option(..., "--refresh-token", help="OAuth2 refresh token"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    expires_in: Optional[int] = typer.Option(
        None, "--expires-in", help="Seconds until the access token expires"
    ),
    created_at: Optional[datetime] = typer.Option(
        None, "--created-at", help="Account creation time (defaults to now)"
    ),
) -> None:
    """Register a session for an account that completed OAuth elsewhere."""
    from likes_archive.db.session import init_db
    from likes_archive.domain.models import Author, OAuthToken
    from likes_archive.services.sessions import SessionStore

    expires_at = None
    if expires_in is not None:
        expires_at = int(datetime.now(UTC).timestamp()) + expires_in

    author = Author(
        id=user_id,
        name=name or username,
        username=username,
        created_at=created_at or datetime.now(UTC),
    )
    token = OAuthToken(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
    )

    try:
        init_db()
        session_id = SessionStore().register_session(author, token)
    except Exception as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    console.print(Panel.fit(
        f"[bold]Session created[/bold]\n\n"
        f"[cyan]User:[/cyan] @{username} ({user_id})\n"
        f"[cyan]Session ID:[/cyan] {session_id}",
        title="Login",
        border_style="green",
    ))


async def _run_jobs(enqueue_args: dict[str, str] | None = None) -> tuple[int, list[str]]:
    """Resume persisted jobs, optionally enqueue a download, and wait for the queue.

    Returns:
        (completed count, failure messages)
    """
    from likes_archive.domain.enums import JobType
    from likes_archive.jobs import create_scheduler
    from likes_archive.services.content_store import ContentStore

    content_store = ContentStore()
    scheduler = create_scheduler(content_store=content_store)

    completed: list[int] = []
    failures: list[str] = []
    scheduler.on_completed(lambda job: completed.append(job.id))
    scheduler.on_failed(lambda job, error: failures.append(f"Job {job.id}: {error}"))

    try:
        resumed = await scheduler.initialize()
        if resumed:
            console.print(f"[dim]Resuming {len(resumed)} unfinished job(s)[/dim]")

        if enqueue_args is not None:
            user_id = enqueue_args["user_id"]
            if scheduler.is_active(
                lambda job: job.type == JobType.USER_LIKES_DOWNLOAD
                and job.args.get("user_id") == user_id
            ):
                console.print(f"[yellow]A download for {user_id} is already queued[/yellow]")
            else:
                job = await scheduler.enqueue(JobType.USER_LIKES_DOWNLOAD, enqueue_args)
                console.print(f"[green]Job enqueued: {job.id}[/green]")

        with console.status("[bold blue]Downloading...", spinner="dots"):
            await scheduler.join()
    finally:
        await scheduler.shutdown()
        await content_store.aclose()

    return len(completed), failures


def _report(completed: int, failures: list[str]) -> None:
    if failures:
        for failure in failures:
            console.print(f"[bold red]✗ {failure}[/bold red]")
        console.print("[dim]Failed jobs resume from their last page on the next run[/dim]")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓ {completed} job(s) completed[/bold green]")


@app.command()
def download(
    user_id: str = typer.Argument(..., help="Account whose likes are archived"),
    session_id: str = typer.Option(..., "--session", "-s", help="Session ID from 'login'"),
) -> None:
    """Archive an account's liked posts and media, then exit."""
    from likes_archive.db.models import SessionModel
    from likes_archive.db.session import get_session_context, init_db
    from likes_archive.domain.models import DownloadLikesArgs

    init_db()

    with get_session_context() as session:
        record = session.get(SessionModel, session_id)
        if record is None or record.user_id != user_id:
            console.print(f"[bold red]No session {session_id} for user {user_id}[/bold red]")
            console.print("[dim]Use 'likes-archive login' to create one[/dim]")
            raise typer.Exit(code=1)

    args = DownloadLikesArgs(user_id=user_id, session_id=session_id)
    completed, failures = asyncio.run(_run_jobs(args.model_dump()))
    _report(completed, failures)


@app.command()
def worker() -> None:
    """Resume unfinished jobs left by a previous run and exit when done."""
    from likes_archive.db.session import init_db

    init_db()
    completed, failures = asyncio.run(_run_jobs())
    _report(completed, failures)


@app.command()
def jobs() -> None:
    """List unfinished jobs."""
    from sqlalchemy import select

    from likes_archive.db.models import JobModel
    from likes_archive.db.session import get_session_context, init_db

    init_db()

    with get_session_context() as session:
        rows = session.execute(select(JobModel).order_by(JobModel.id)).scalars().all()

        if not rows:
            console.print("[dim]No unfinished jobs[/dim]")
            return

        table = Table(title="Unfinished Jobs")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("User")
        table.add_column("Next Page")
        table.add_column("Created")

        for row in rows:
            if row.args.get("exhausted"):
                next_page = "[green]promotion[/green]"
            else:
                next_page = row.args.get("pagination_token") or "[dim]first[/dim]"
            table.add_row(
                str(row.id),
                row.type,
                str(row.args.get("user_id", "")),
                next_page,
                row.created_at.strftime("%Y-%m-%d %H:%M") if row.created_at else "",
            )

    console.print(table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """Start the API server; persisted jobs resume on startup."""
    import uvicorn

    from likes_archive.config import settings

    uvicorn.run(
        "likes_archive.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=settings.api_reload,
    )


if __name__ == "__main__":
    app()
