"""CLI entry point for ptyhub."""

from __future__ import annotations

import asyncio
import logging
import sys

import typer

from ptyhub import __version__
from ptyhub.config import PtyHubConfig
from ptyhub.errors import InvalidInputError, SessionNotFoundError
from ptyhub.pty.formatters import format_line, format_session_info
from ptyhub.pty.manager import SessionService
from ptyhub.pty.session import SessionInfo, SpawnOptions

app = typer.Typer(
    name="ptyhub",
    help="Supervised pseudo-terminal sessions with live multi-viewer streaming.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", "-H", help="Address to bind (default: from env/config)."),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind, 0 for any free port."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Serve the REST API and the viewer WebSocket."""
    from ptyhub.web.server import run_server

    setup_logging(verbose)
    config = PtyHubConfig.load(config_file)
    if host:
        config.server.host = host
    if port is not None:
        config.server.port = port

    typer.echo(f"ptyhub v{__version__}")
    typer.echo(f"Listening on {config.server.host}:{config.server.port}")
    run_server(config)


@app.command()
def run(
    command: str = typer.Argument(help="Program to run inside the terminal."),
    args: list[str] | None = typer.Argument(None, help="Arguments passed to the program."),
    cols: int | None = typer.Option(None, "--cols", help="Terminal width."),
    rows: int | None = typer.Option(None, "--rows", help="Terminal height."),
    numbered: bool = typer.Option(
        False, "--numbered", "-n", help="Print numbered lines after exit instead of streaming."
    ),
    grep: str | None = typer.Option(
        None, "--grep", "-g", help="Print only lines matching this regex after exit."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Run one command in a PTY session and report how it ended."""
    setup_logging(verbose)
    config = PtyHubConfig.load(config_file)
    if cols:
        config.terminal.cols = cols
    if rows:
        config.terminal.rows = rows

    try:
        options = SpawnOptions(command=command, args=args or [])
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    try:
        final = asyncio.run(_run_session(options, config, numbered=numbered, grep=grep))
    except InvalidInputError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    typer.echo("\n".join(format_session_info(final)), err=True)
    if final.exit_signal:
        raise typer.Exit(128 + final.exit_signal)
    raise typer.Exit(final.exit_code or 0)


async def _run_session(
    options: SpawnOptions,
    config: PtyHubConfig,
    numbered: bool = False,
    grep: str | None = None,
) -> SessionInfo:
    """Spawn one session, stream or collect its output, and return its final state."""
    service = SessionService(config)
    stream = not numbered and grep is None
    session_id: str | None = None

    def _echo(session: SessionInfo, data: str) -> None:
        if session.id == session_id:
            sys.stdout.write(data)
            sys.stdout.flush()

    try:
        with service.on_raw_output(_echo):
            info = await service.spawn(options)
            if stream:
                # Output can't arrive before spawn() returns, so the id is set in time
                session_id = info.id
            final = await service.wait(info.id)
        if final is None:
            raise SessionNotFoundError(info.id)

        if grep is not None:
            found = service.search(info.id, grep)
            for match in found.matches if found is not None else []:
                typer.echo(format_line(match.text, match.line_number + 1))
        elif numbered:
            result = service.read(info.id)
            for i, line in enumerate(result.lines if result is not None else [], start=1):
                typer.echo(format_line(line, i))
        return final
    finally:
        await service.shutdown()


@app.command()
def version() -> None:
    """Print the ptyhub version."""
    typer.echo(f"ptyhub v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
