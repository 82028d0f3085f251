#!/usr/bin/env python3
"""
NFTGATE - Web control plane for nftables
========================================

Main entry point for the NFTGATE rule editor.

LIVE MODE (DEFAULT):
  Reads and changes the kernel ruleset through the nft binary. Needs
  CAP_NET_ADMIN (run as root, or set firewall.use_sudo).

SIMULATION MODE (--simulate):
  Runs the same API against an in-memory kernel seeded from config.
  Nothing touches the host firewall.

Usage:
    sudo python main.py              # Live mode
    python main.py --simulate        # Simulation mode
    python main.py --debug           # Enable debug logging
    python main.py --no-auth         # Disable the API login gate

Author: Team NFTGATE
License: MIT
"""

import sys
import signal
from pathlib import Path

import yaml
import click
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

# Add project root to path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.api_auth import APIAuthManager
from core.engine import FirewallEngine
from core.errors import FirewallError
from api.app import create_app

# Rich console for pretty output
console = Console()


def load_config(config_path: str = "config/config.yaml") -> dict:
    """Load configuration from YAML file."""
    config_file = Path(config_path)
    if not config_file.is_absolute():
        config_file = PROJECT_ROOT / config_path
    if not config_file.exists():
        logger.error(f"Config file not found: {config_file}")
        sys.exit(1)

    with open(config_file, "r") as f:
        config = yaml.safe_load(f) or {}

    for section in ("general", "logging", "api", "auth", "firewall", "audit", "simulation"):
        config.setdefault(section, {})

    return config


def setup_logging(config: dict) -> None:
    """Configure logging based on config."""
    log_config = config.get("logging", {})
    log_level = config.get("general", {}).get("log_level", "INFO")
    log_file = PROJECT_ROOT / log_config.get("file", "data/logs/nftgate.log")

    # Ensure log directory exists
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Remove default logger and add custom configuration
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | <level>{message}</level>"
    )
    logger.add(
        str(log_file),
        level=log_level,
        rotation=log_config.get("max_size", "10 MB"),
        retention=log_config.get("backup_count", 5),
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name} | {message}"
    )


def print_banner():
    """Print NFTGATE banner."""
    banner = """
    ███╗   ██╗███████╗████████╗ ██████╗  █████╗ ████████╗███████╗
    ████╗  ██║██╔════╝╚══██╔══╝██╔════╝ ██╔══██╗╚══██╔══╝██╔════╝
    ██╔██╗ ██║█████╗     ██║   ██║  ███╗███████║   ██║   █████╗
    ██║╚██╗██║██╔══╝     ██║   ██║   ██║██╔══██║   ██║   ██╔══╝
    ██║ ╚████║██║        ██║   ╚██████╔╝██║  ██║   ██║   ███████╗
    ╚═╝  ╚═══╝╚═╝        ╚═╝    ╚═════╝ ╚═╝  ╚═╝   ╚═╝   ╚══════╝
    """

    console.print(Panel(
        Text(banner, style="bold cyan"),
        title="[bold white]nftables rule editor[/bold white]",
        subtitle="[dim]the kernel stays the source of truth[/dim]",
        border_style="cyan"
    ))


@click.command()
@click.option("--config", "-c", default="config/config.yaml", help="Path to config file")
@click.option("--simulate", "-s", is_flag=True, help="Use the in-memory kernel instead of nft")
@click.option("--debug", "-d", is_flag=True, help="Enable debug logging")
@click.option("--host", default=None, help="API bind address")
@click.option("--port", "-p", default=None, type=int, help="API port")
@click.option("--no-auth", is_flag=True, help="Disable API authentication (local use only)")
def main(config: str, simulate: bool, debug: bool, host: str, port: int, no_auth: bool):
    """
    NFTGATE - web control plane for nftables

    Lists the live ruleset as readable rules and lets operators add, edit
    and delete rules by kernel handle.
    """
    print_banner()

    # Load configuration
    cfg = load_config(config)

    # Override config with CLI options
    if simulate:
        cfg["simulation"]["enabled"] = True
        console.print("[yellow]SIMULATION MODE - Using in-memory kernel[/yellow]")
    if debug:
        cfg["general"]["debug"] = True
        cfg["general"]["log_level"] = "DEBUG"
    if host:
        cfg["api"]["host"] = host
    if port:
        cfg["api"]["port"] = port
    if no_auth:
        cfg["auth"]["enabled"] = False
        console.print("[yellow]WARNING: API authentication disabled[/yellow]")

    setup_logging(cfg)

    engine = FirewallEngine(cfg)

    # Probe the kernel once so a broken nft shows up at startup
    try:
        snapshot = engine.get_rules()
        console.print(f"[green]Kernel reachable: {len(snapshot.ruleset)} rules in "
                      f"{len(snapshot.ruleset.tables)} tables[/green]")
        if snapshot.warning:
            console.print(f"[yellow]{snapshot.warning}[/yellow]")
    except FirewallError as e:
        console.print(f"[bold red]WARNING: could not list ruleset: {e.message}[/bold red]")
        console.print("[dim]Run as root, or with --simulate to try the editor without nft[/dim]")

    auth_manager = APIAuthManager.from_config(cfg)
    app = create_app(cfg, engine, auth_manager=auth_manager)

    from api.app import socketio

    api_host = cfg["api"].get("host", "127.0.0.1")
    api_port = cfg["api"].get("port", 5000)

    # Handle shutdown signals
    def signal_handler(signum, frame):
        console.print("\n[yellow]Shutting down NFTGATE...[/yellow]")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    mode = "simulation" if engine.simulation_mode else "live"
    console.print(f"[bold green]NFTGATE started in {mode} mode[/bold green]")
    console.print(f"[dim]API: http://{api_host}:{api_port}/api/firewall[/dim]\n")

    try:
        socketio.run(
            app,
            host=api_host,
            port=api_port,
            debug=cfg["general"].get("debug", False),
            use_reloader=False,
            log_output=False,
            allow_unsafe_werkzeug=True
        )
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
