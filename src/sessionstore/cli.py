"""Maintenance commands for the session store: init, list, last-enter, revoke, purge-user."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Annotated, Any
from uuid import UUID

import structlog
import typer

from sessionstore.config import Config
from sessionstore.core.core import Core
from sessionstore.core.modules.session.models import SessionView
from sessionstore.core.modules.session.service import SessionService
from sessionstore.errors import PartialWriteError, SessionStoreError

app = typer.Typer(help="Session store maintenance", no_args_is_help=True)


def configure_logging(debug: bool) -> None:
    """Send structlog events to stderr, tagged with the running command."""
    logging.basicConfig(level=logging.DEBUG if debug else logging.WARNING, format="%(message)s", stream=sys.stderr)
    logging.getLogger("pymongo").setLevel(logging.WARNING)

    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@app.callback()
def bind_command(ctx: typer.Context) -> None:
    structlog.contextvars.bind_contextvars(command=ctx.invoked_subcommand)


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(1)


def _run[T](action: Callable[[SessionService[UUID, UUID]], Awaitable[T]]) -> T:
    config = Config()
    configure_logging(config.debug)

    async def main() -> T:
        core = Core(config)
        async with core.lifespan():
            return await action(core.services.session)

    try:
        return asyncio.run(main())
    except PartialWriteError as exc:
        causes = "; ".join(str(error) for error in exc.exceptions)
        raise _fail(f"{exc.message}: {causes}") from exc
    except SessionStoreError as exc:
        raise _fail(str(exc)) from exc


@app.command()
def init() -> None:
    """Create the session indexes."""

    async def noop(_: SessionService[UUID, UUID]) -> None:
        return None

    _run(noop)
    typer.echo("Indexes are in place")


@app.command("list")
def list_sessions(user_id: Annotated[UUID, typer.Argument(help="Owner of the sessions")]) -> None:
    """List the sessions of a user."""
    sessions = _run(lambda service: service.get_sessions_by_user(user_id))
    if not sessions:
        typer.echo("No sessions")
        return
    for session in sessions:
        view: dict[str, Any] = SessionView[UUID].from_domain(session).model_dump(mode="json")
        typer.echo(f"{view['id']}  {view['last_usage']}  {view['auth_method'] or '-'}  {view['user_agent'] or '-'}")


@app.command("last-enter")
def last_enter(user_id: Annotated[UUID, typer.Argument(help="User to look up")]) -> None:
    """Show when a user was last seen."""
    timestamp = _run(lambda service: service.get_last_enter_by_user(user_id))
    typer.echo(timestamp.isoformat())


@app.command()
def revoke(session_id: Annotated[UUID, typer.Argument(help="Session to delete")]) -> None:
    """Delete one session."""
    session = _run(lambda service: service.delete_session_by_id(session_id))
    typer.echo(f"Deleted session {session.id} of user {session.user_id}")


@app.command("purge-user")
def purge_user(
    user_id: Annotated[UUID, typer.Argument(help="User whose sessions are deleted")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete all sessions of a user."""
    if not yes:
        typer.confirm(f"Delete all sessions of user {user_id}?", abort=True)
    deleted = _run(lambda service: service.delete_sessions_by_user(user_id))
    typer.echo(f"Deleted {deleted} session(s)")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
