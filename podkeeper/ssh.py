"""Remote and local command execution for podkeeper."""

import subprocess
from typing import List, Optional, Sequence

from rich.console import Console

from .errors import ExecutionError

console = Console()


class CommandRunner:
    """Runs one command per call, either on a pod over SSH or locally.

    Every remote call opens a fresh SSH connection. Pods get a new host key
    each time they are resumed, so host-key checking is disabled.
    """

    def __init__(
        self,
        username: str = "root",
        ssh_key_path: Optional[str] = None,
        ssh_binary: str = "ssh",
        verbose: bool = False
    ):
        self.username = username
        self.ssh_key_path = ssh_key_path
        self.ssh_binary = ssh_binary
        self.verbose = verbose

    def build_ssh_command(self, host: str, port: int, command: str) -> List[str]:
        """Build the ssh argument list for a single non-interactive command."""
        ssh_cmd = [
            self.ssh_binary,
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", "LogLevel=ERROR",
            "-o", "BatchMode=yes",
        ]

        if self.ssh_key_path:
            ssh_cmd.extend(["-i", self.ssh_key_path])

        ssh_cmd.extend([
            f"{self.username}@{host}",
            "-p", str(port),
            command
        ])
        return ssh_cmd

    def run(self, host: str, port: int, command: str, capture_stderr: bool = False) -> str:
        """Run a command on the remote host and return its stdout."""
        return self._execute(self.build_ssh_command(host, port, command), capture_stderr)

    def run_local(self, args: Sequence[str], capture_stderr: bool = False) -> str:
        """Run a separate local executable and return its stdout."""
        return self._execute(list(args), capture_stderr)

    def _execute(self, args: List[str], capture_stderr: bool) -> str:
        if self.verbose:
            console.print(f"[dim]Command: {' '.join(args)}[/dim]")

        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if capture_stderr else subprocess.DEVNULL,
                stdin=subprocess.DEVNULL
            )
        except OSError as e:
            raise ExecutionError(f"Unable to start '{args[0]}': {e}")

        stdout, stderr = process.communicate()
        stdout_text = stdout.decode("utf-8", errors="ignore")
        stderr_text = stderr.decode("utf-8", errors="ignore") if stderr else ""

        if process.returncode != 0:
            message = f"'{args[0]}' exited with code {process.returncode}"
            if stderr_text.strip():
                message += f": {stderr_text.strip()[:200]}"
            raise ExecutionError(message, returncode=process.returncode, stderr=stderr_text)

        return stdout_text
