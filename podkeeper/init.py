"""Interactive setup wizard for podkeeper configuration."""

from dataclasses import replace
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

from .api_client import RunPodAPIClient
from .config import PodConfig
from .errors import PodkeeperError


console = Console()


def run_interactive_setup(env_path: Optional[Path] = None) -> bool:
    """Run interactive setup wizard to create/update the .env file.

    Returns:
        True if setup completed successfully, False otherwise
    """
    console.clear()
    console.print(Panel.fit(
        "[bold cyan]podkeeper Setup[/bold cyan]"
    ))

    try:
        config = PodConfig.load(env_path)
    except ValueError as e:
        console.print(f"[yellow]Ignoring unreadable settings: {e}[/yellow]")
        config = PodConfig()

    console.print("\n[bold]API Configuration[/bold]")

    # API Key (required)
    console.print("[dim]Get your API key from: https://www.runpod.io/console/user/settings[/dim]")
    api_key = _prompt_with_default(
        "RunPod API Key",
        config.api_key,
        required=True
    )

    pod_id = _prompt_with_default(
        "Pod ID",
        config.pod_id,
        required=True
    )

    # Validate key and pod against the API
    console.print("\n[dim]Checking pod...[/dim]")
    if not _validate_pod(api_key, config.api_host, pod_id):
        console.print("[red]Pod validation failed.[/red]")
        return False
    console.print("[green]✓ Pod found[/green]")

    console.print("\n[bold]Idle Shutdown[/bold]")

    idle_threshold = _prompt_int(
        "GPU idle threshold (%)",
        config.idle_threshold_percent
    )

    idle_timeout = _prompt_int(
        "Idle minutes before stopping",
        config.idle_timeout_minutes
    )

    console.print("\n[bold]Pricing[/bold]")
    console.print("[dim]Leave empty for on-demand pricing[/dim]")
    bid = _prompt_with_default(
        "Spot bid ($/hr)",
        config.bid or "",
        required=False
    )

    config = replace(
        config,
        api_key=api_key,
        pod_id=pod_id,
        idle_threshold_percent=idle_threshold,
        idle_timeout_minutes=idle_timeout,
        bid=bid or None
    )

    is_valid, error = config.validate()
    if not is_valid:
        console.print(f"[red]Configuration error: {error}[/red]")
        return False

    # Save configuration
    saved_path = config.save(env_path)

    console.print(f"\n[green]✓ Configuration saved to {saved_path}[/green]")
    console.print("\n[bold]Setup complete![/bold]")
    console.print("  [cyan]python main.py watch[/cyan]  - Start the pod and stop it when idle")
    console.print("  [cyan]python main.py stop[/cyan]   - Stop the pod now")

    return True


def _prompt_with_default(
    prompt_text: str,
    default: str,
    required: bool = False
) -> str:
    """Prompt user with default value support."""
    effective_default = default.strip() if default else ""

    if effective_default:
        from rich.text import Text
        prompt_display = Text()
        prompt_display.append(prompt_text)
        prompt_display.append(" [")
        prompt_display.append(effective_default, style="dim")
        prompt_display.append("]: ")
        console.print(prompt_display, end="")
        value = input()
    else:
        value = Prompt.ask(prompt_text, default="", show_default=False)

    # Handle empty input - use default if available
    if not value or not value.strip():
        if required and not effective_default:
            console.print("[red]This field is required[/red]")
            return _prompt_with_default(prompt_text, default, required)
        return effective_default

    return value.strip()


def _prompt_int(prompt_text: str, default: int) -> int:
    value = _prompt_with_default(prompt_text, str(default))
    try:
        return int(value)
    except ValueError:
        console.print("[red]Please enter a whole number[/red]")
        return _prompt_int(prompt_text, default)


def _validate_pod(api_key: str, api_host: str, pod_id: str) -> bool:
    """Check that the key works and the pod exists in the account."""
    try:
        pods = RunPodAPIClient(api_key, api_host).list_pods()
    except PodkeeperError as e:
        console.print(f"[red]Validation error: {e}[/red]")
        return False

    if not any(p.id == pod_id for p in pods):
        console.print(f"[red]Pod {pod_id} not found. Available: {', '.join(p.id for p in pods) or 'none'}[/red]")
        return False

    return True
