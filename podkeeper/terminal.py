"""Opening an operator terminal for a started pod."""

import subprocess
import sys
from abc import ABC, abstractmethod

from rich.console import Console
from rich.markup import escape

from .errors import AppleScriptError

console = Console()


class TerminalLauncher(ABC):
    """Opens an interactive terminal that runs a shell command."""

    @abstractmethod
    def open(self, command: str) -> None:
        """Run command in a terminal the operator can interact with."""


class AppleScriptTerminal(TerminalLauncher):
    """Runs the command in a new Terminal.app window (macOS)."""

    def __init__(self, osascript: str = "osascript"):
        self.osascript = osascript

    @staticmethod
    def build_script(command: str) -> str:
        escaped = command.replace("\\", "\\\\").replace('"', '\\"')
        return (
            'tell application "Terminal"\n'
            "    activate\n"
            f'    do script "{escaped}"\n'
            "end tell"
        )

    def open(self, command: str) -> None:
        try:
            result = subprocess.run(
                [self.osascript, "-e", self.build_script(command)],
                capture_output=True,
                text=True
            )
        except OSError as e:
            raise AppleScriptError(f"Unable to run {self.osascript}: {e}")

        if result.returncode != 0:
            raise AppleScriptError(f"AppleScript error: {result.stderr.strip()}")


class ConsoleTerminal(TerminalLauncher):
    """Prints the command for the operator to run by hand."""

    def open(self, command: str) -> None:
        console.print("[cyan]Connect with:[/cyan]")
        console.print(f"  [bold]{escape(command)}[/bold]", highlight=False)


def default_terminal() -> TerminalLauncher:
    """Pick the terminal integration for this platform."""
    if sys.platform == "darwin":
        return AppleScriptTerminal()
    return ConsoleTerminal()
