"""CLI entry point using typer."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from linechat import __version__
from linechat.config import (
    CONFIG_FILE,
    LOG_FILE,
    PID_FILE,
    AppConfig,
    LoggingConfig,
    ServerConfig,
    TranscriptConfig,
    ensure_config_dir,
    load_config,
    save_config,
)
from linechat.daemon import PidFile, daemonize, stop_process
from linechat.utils.formatting import format_listen_address
from linechat.utils.system import check_port_available, check_transcript_dir

app = typer.Typer(
    name="linechat",
    help="Line-oriented TCP text-protocol server.",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


def _setup_logging(config: AppConfig, daemon: bool) -> None:
    log_path = Path(config.logging.file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(str(log_path)),
            *([] if daemon else [logging.StreamHandler()]),
        ],
    )


@app.command()
def init() -> None:
    """Interactive setup wizard."""
    console.print(f"\n[bold]linechat v{__version__}[/bold]")
    console.print("Interactive Setup\n")

    defaults = ServerConfig()

    # 1. Port
    console.print("[bold]Step 1:[/bold] Listen Port")
    port = typer.prompt("  Port", default=defaults.port, type=int)
    if not 0 < port < 65536:
        console.print("[red]Port must be between 1 and 65535.[/red]")
        raise typer.Exit(1)
    free, detail = check_port_available("", port)
    if not free:
        console.print(f"  [yellow]Warning: {detail}[/yellow]")

    # 2. Idle timeout
    console.print("\n[bold]Step 2:[/bold] Idle Timeout")
    console.print("  Clients that stay silent this long are disconnected.")
    timeout = typer.prompt("  Seconds", default=defaults.timeout, type=int)
    if timeout <= 0:
        console.print("[red]Timeout must be a positive number of seconds.[/red]")
        raise typer.Exit(1)

    # 3. Transcript directory
    console.print("\n[bold]Step 3:[/bold] Transcript Directory")
    directory = typer.prompt("  Path", default=TranscriptConfig().directory)
    valid, resolved = check_transcript_dir(directory)
    if not valid:
        console.print(f"  [yellow]Warning: {resolved}[/yellow]")

    config = AppConfig(
        server=ServerConfig(port=port, timeout=timeout),
        transcript=TranscriptConfig(directory=directory),
        logging=LoggingConfig(),
    )
    save_config(config)

    console.print(f"\n[green]Configuration saved to {CONFIG_FILE}[/green]")
    console.print("\nNext steps:")
    console.print("  [bold]linechat start[/bold]          Start the server")
    console.print("  [bold]linechat start --daemon[/bold] Start in background\n")


@app.command()
def start(
    host: Optional[str] = typer.Option(None, "--host", help="Address to bind (default: all interfaces)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="TCP port to listen on"),
    timeout: Optional[int] = typer.Option(None, "--timeout", "-t", help="Client inactivity timeout in seconds"),
    daemon: bool = typer.Option(False, "--daemon", "-d", help="Run in background"),
) -> None:
    """Start the server."""
    config = load_config()
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port
    if timeout is not None:
        config.server.timeout = timeout

    if config.server.timeout <= 0:
        console.print("[red]Timeout must be a positive number of seconds.[/red]")
        raise typer.Exit(1)

    pid_file = PidFile(PID_FILE)
    existing_pid = pid_file.read()
    if existing_pid is not None:
        console.print(f"[yellow]Server is already running (PID: {existing_pid}).[/yellow]")
        console.print("Use [bold]linechat stop[/bold] to stop it first.")
        raise typer.Exit(1)

    valid, resolved = check_transcript_dir(config.transcript.directory)
    if not valid:
        console.print(f"[red]{resolved}[/red]")
        raise typer.Exit(1)

    ensure_config_dir()
    _setup_logging(config, daemon)

    address = format_listen_address(config.server.host, config.server.port)
    if daemon:
        console.print(f"Starting server on {address} in background...")
        daemonize(Path(config.logging.file).expanduser().resolve())

    pid_file.write()

    if not daemon:
        console.print(f"[green]Listening on {address}[/green] (timeout {config.server.timeout}s)")
        console.print(f"Transcripts: {resolved}")
        console.print("Press Ctrl+C to stop.\n")

    exit_code = 0
    try:
        from linechat.server import run_server

        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        pass
    except OSError as e:
        logger.critical("Error starting server: %s", e)
        if not daemon:
            console.print(f"[red]Error starting server: {e}[/red]")
        exit_code = 1
    finally:
        pid_file.remove()
        if not daemon:
            console.print("\n[dim]Server stopped.[/dim]")

    if exit_code:
        raise typer.Exit(exit_code)


@app.command()
def stop() -> None:
    """Stop the running server."""
    if stop_process(PidFile(PID_FILE)):
        console.print("[green]Server stopped.[/green]")
    else:
        console.print("[yellow]Server is not running.[/yellow]")


@app.command()
def status() -> None:
    """Check server running status."""
    pid = PidFile(PID_FILE).read()
    if pid is not None:
        console.print(f"[green]Server is running[/green] (PID: {pid})")
    else:
        console.print("[dim]Server is not running.[/dim]")

    config = load_config()
    source = str(CONFIG_FILE) if CONFIG_FILE.exists() else "defaults"
    console.print(f"\nConfig: {source}")
    console.print(f"Listen: {format_listen_address(config.server.host, config.server.port)}")
    console.print(f"Timeout: {config.server.timeout}s")
    console.print(f"Transcripts: {Path(config.transcript.directory).expanduser()}")


@app.command()
def config(
    key: str = typer.Argument(None, help="Config key (e.g., server.timeout)"),
    value: str = typer.Argument(None, help="New value"),
) -> None:
    """View or modify configuration."""
    cfg = load_config()

    if key is None:
        table = Table(title="Configuration")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("server.host", cfg.server.host or "(all interfaces)")
        table.add_row("server.port", str(cfg.server.port))
        table.add_row("server.timeout", str(cfg.server.timeout))
        table.add_row("server.max_line", str(cfg.server.max_line))
        table.add_row("server.close_grace", str(cfg.server.close_grace))
        table.add_row("transcript.directory", cfg.transcript.directory)
        table.add_row("logging.level", cfg.logging.level)
        table.add_row("logging.file", cfg.logging.file)

        console.print(table)
        return

    if value is None:
        console.print("[red]Usage: linechat config <key> <value>[/red]")
        raise typer.Exit(1)

    parts = key.split(".")
    if len(parts) != 2:
        console.print("[red]Key format: section.key (e.g., server.timeout)[/red]")
        raise typer.Exit(1)

    section, attr = parts
    section_map = {"server": cfg.server, "transcript": cfg.transcript, "logging": cfg.logging}

    if section not in section_map:
        console.print(f"[red]Unknown section: {section}[/red]")
        raise typer.Exit(1)

    obj = section_map[section]
    if not hasattr(obj, attr):
        console.print(f"[red]Unknown key: {key}[/red]")
        raise typer.Exit(1)

    # Type coercion
    current = getattr(obj, attr)
    try:
        typed_value = int(value) if isinstance(current, int) else value
    except ValueError:
        console.print(f"[red]Invalid value type for {key}[/red]")
        raise typer.Exit(1)

    setattr(obj, attr, typed_value)
    save_config(cfg)
    console.print(f"[green]{key} = {typed_value}[/green]")


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
) -> None:
    """View server logs."""
    log_path = Path(LOG_FILE).expanduser().resolve()
    if not log_path.exists():
        console.print("[dim]No log file found.[/dim]")
        return

    if follow:
        import subprocess

        try:
            subprocess.run(["tail", "-f", "-n", str(lines), str(log_path)])
        except KeyboardInterrupt:
            pass
    else:
        content = log_path.read_text()
        log_lines = content.strip().split("\n")
        for line in log_lines[-lines:]:
            console.print(line, markup=False, highlight=False)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"linechat v{__version__}")
    console.print(f"Python: {sys.version.split()[0]}")
    console.print(f"Config: {CONFIG_FILE}")


if __name__ == "__main__":
    app()
