#!/usr/bin/env python3
"""podkeeper - Resume a RunPod pod and stop it when the GPU goes idle.

Usage:
    python main.py init      # Interactive .env setup
    python main.py watch     # Resume the pod and supervise it until idle
    python main.py stop      # Stop the pod now
    python main.py pods      # List pods in the account
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from podkeeper.api_client import RunPodAPIClient
from podkeeper.config import PodConfig
from podkeeper.errors import PodkeeperError
from podkeeper.init import run_interactive_setup
from podkeeper.pod_manager import PodManager, PodSnapshot

console = Console()


def load_config(args) -> Optional[PodConfig]:
    """Load and validate configuration from --document or the .env file."""
    try:
        if args.document:
            config = PodConfig.from_document(args.document)
        else:
            config = PodConfig.load(args.env)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return None

    is_valid, error = config.validate()
    if not is_valid:
        console.print(f"[red]Configuration error: {error}[/red]")
        console.print("Run [cyan]python main.py init[/cyan] to configure.")
        return None

    return config


def render_status(snapshot: PodSnapshot) -> Group:
    """Render the supervision state as a table."""
    table = Table(title=f"Pod {snapshot.pod_id}", show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")

    table.add_row("Status", str(snapshot.status))
    table.add_row("Monitoring", "yes" if snapshot.is_monitoring else "no")
    table.add_row("GPU Usage", f"{snapshot.last_usage}%" if snapshot.last_usage is not None else "-")
    table.add_row("Idle minutes", str(snapshot.idle_minutes))
    if snapshot.terminal_command:
        table.add_row("Connect", escape(snapshot.terminal_command))

    parts = [table]
    if snapshot.last_error:
        parts.append(f"[red]{escape(snapshot.last_error)}[/red]")
    parts.append("[dim]Press Ctrl+C to stop the pod and exit[/dim]")
    return Group(*parts)


async def watch(manager: PodManager, keep_running: bool) -> int:
    """Start the pod and block until the idle monitor stops it or Ctrl+C."""
    await manager.start()

    interrupted = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, interrupted.set)

    interrupt_wait = asyncio.ensure_future(interrupted.wait())
    monitor_wait = asyncio.ensure_future(manager.wait_closed())
    try:
        with Live(
            get_renderable=lambda: render_status(manager.snapshot()),
            console=console,
            refresh_per_second=1
        ):
            await asyncio.wait({interrupt_wait, monitor_wait}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        interrupt_wait.cancel()
        monitor_wait.cancel()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    if interrupted.is_set():
        console.print("\n[yellow]Received interrupt signal. Cleaning up...[/yellow]")
        if keep_running:
            console.print("[yellow]Leaving pod running (--keep-running)[/yellow]")
        elif manager.status.is_started:
            await manager.stop()

    console.print(render_status(manager.snapshot()))
    return 0


def cmd_init(args):
    """Run interactive setup wizard."""
    return 0 if run_interactive_setup(args.env) else 1


def cmd_watch(args):
    """Resume the pod and supervise it."""
    config = load_config(args)
    if config is None:
        return 1

    manager = PodManager(config)
    if args.no_terminal:
        manager.open_terminal = False

    try:
        return asyncio.run(watch(manager, args.keep_running))
    except PodkeeperError as e:
        console.print(f"[red]Failed: {e}[/red]")
        return 1


def cmd_stop(args):
    """Stop the configured pod."""
    config = load_config(args)
    if config is None:
        return 1

    manager = PodManager(config)
    try:
        asyncio.run(manager.stop())
    except PodkeeperError as e:
        console.print(f"[red]Failed to stop pod (it may still be running): {e}[/red]")
        return 1

    return 0


def cmd_pods(args):
    """List pods in the account."""
    config = load_config(args)
    if config is None:
        return 1

    api_client = RunPodAPIClient(config.api_key, config.api_host)
    try:
        pods = api_client.list_pods()
    except PodkeeperError as e:
        console.print(f"[red]Failed to list pods: {e}[/red]")
        return 1

    table = Table(title="Pods")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("GPU")
    table.add_column("Price/hr", justify="right")
    table.add_column("Endpoint", style="green")

    for pod in pods:
        endpoint = pod.public_endpoint
        table.add_row(
            pod.id + (" *" if pod.id == config.pod_id else ""),
            pod.name,
            pod.desired_status,
            f"{pod.gpu_count}x {pod.machine.gpu_display_name}" if pod.machine else str(pod.gpu_count),
            f"${pod.cost_per_hr:.3f}" if pod.cost_per_hr is not None else "-",
            f"{endpoint.ip}:{endpoint.public_port}" if endpoint else "-"
        )

    console.print(table)
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="podkeeper - Resume a RunPod pod and stop it when the GPU is idle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py init                    # Interactive setup
    python main.py watch                   # Resume, open terminal, stop when idle
    python main.py watch --no-terminal     # Same, without opening a terminal
    python main.py stop                    # Stop the pod now
        """
    )
    parser.add_argument(
        "--env",
        type=Path,
        default=None,
        help="Path to the .env file (default: ./.env)"
    )
    parser.add_argument(
        "--document",
        type=Path,
        default=None,
        help="Load settings from a JSON session document instead of .env"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init", help="Interactive .env setup")

    watch_parser = subparsers.add_parser("watch", help="Resume the pod and stop it when idle")
    watch_parser.add_argument(
        "--no-terminal",
        action="store_true",
        help="Do not open a terminal with the port-forward command"
    )
    watch_parser.add_argument(
        "--keep-running",
        action="store_true",
        help="Leave the pod running when interrupted with Ctrl+C"
    )

    subparsers.add_parser("stop", help="Stop the pod")
    subparsers.add_parser("pods", help="List pods in the account")

    args = parser.parse_args()

    if args.command is None:
        console.print(Panel.fit(
            "[bold cyan]podkeeper[/bold cyan]\n\n"
            "[dim]Commands:[/dim]\n"
            "  init     Interactive configuration setup\n"
            "  watch    Resume the pod and stop it when idle\n"
            "  stop     Stop the pod\n"
            "  pods     List pods in the account\n\n"
            "[dim]Run 'python main.py <command> --help' for details[/dim]"
        ))
        return 0

    commands = {
        "init": cmd_init,
        "watch": cmd_watch,
        "stop": cmd_stop,
        "pods": cmd_pods
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main() or 0)
