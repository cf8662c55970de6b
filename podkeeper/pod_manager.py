"""Pod lifecycle management for podkeeper."""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from .api_client import PortEndpoint, RunPodAPIClient
from .config import PodConfig
from .errors import PodNotFoundError, StartTimeoutError
from .gpu_usage import GPUUsageSampler
from .idle_monitor import SAMPLE_INTERVAL_SECONDS, IdleMonitor, IdleState
from .ssh import CommandRunner
from .terminal import TerminalLauncher, default_terminal

console = Console()

POLL_INTERVAL_SECONDS = 5
SSH_GRACE_SECONDS = 10
FORWARD_PORT = 8188


class StatusKind(Enum):
    NOT_STARTED = "not started"
    STARTING = "starting"
    STARTED = "started"


@dataclass(frozen=True)
class ConnectionStatus:
    """Connection state of the supervised pod.

    ip and port are only set for STARTED.
    """
    kind: StatusKind
    ip: Optional[str] = None
    port: Optional[int] = None

    @classmethod
    def not_started(cls) -> "ConnectionStatus":
        return cls(StatusKind.NOT_STARTED)

    @classmethod
    def starting(cls) -> "ConnectionStatus":
        return cls(StatusKind.STARTING)

    @classmethod
    def started(cls, ip: str, port: int) -> "ConnectionStatus":
        return cls(StatusKind.STARTED, ip, port)

    @property
    def is_started(self) -> bool:
        return self.kind is StatusKind.STARTED

    def __str__(self) -> str:
        if self.is_started:
            return f"started ({self.ip}:{self.port})"
        return self.kind.value


@dataclass(frozen=True)
class PodSnapshot:
    """Read-only view of the controller for display."""
    pod_id: str
    status: ConnectionStatus
    is_monitoring: bool
    last_usage: Optional[int]
    idle_minutes: int
    terminal_command: Optional[str]
    last_error: Optional[str]


def port_forward_command(ip: str, port: int, forward_port: int = FORWARD_PORT) -> str:
    """SSH command that forwards the pod's web UI port to localhost."""
    return (
        f"ssh -L 127.0.0.1:{forward_port}:127.0.0.1:{forward_port} "
        f"-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null "
        f"root@{ip} -p {port}"
    )


class PodManager:
    """Starts, supervises and stops a single pod.

    All state changes happen on the event loop that drives start() and stop();
    blocking API and SSH calls run in worker threads. start() and stop() must
    not be called concurrently.
    """

    def __init__(
        self,
        config: PodConfig,
        api_client: Optional[RunPodAPIClient] = None,
        sampler: Optional[GPUUsageSampler] = None,
        terminal: Optional[TerminalLauncher] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        grace_period: float = SSH_GRACE_SECONDS,
        sample_interval: float = SAMPLE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep
    ):
        runner = CommandRunner(ssh_key_path=config.ssh_key_path)
        self.config = config
        self.api_client = api_client or RunPodAPIClient(config.api_key, config.api_host, runner=runner)
        self.sampler = sampler or GPUUsageSampler(runner)
        self.terminal = terminal or default_terminal()
        self.open_terminal = config.open_terminal
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self.sample_interval = sample_interval
        self.clock = clock
        self.sleep = sleep

        self.status = ConnectionStatus.not_started()
        self.terminal_command: Optional[str] = None
        self.last_error: Optional[str] = None
        self._monitor: Optional[IdleMonitor] = None
        self._monitor_task: Optional["asyncio.Task[None]"] = None

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None

    @property
    def idle_state(self) -> IdleState:
        return self._monitor.state if self._monitor else IdleState()

    def snapshot(self) -> PodSnapshot:
        idle = self.idle_state
        return PodSnapshot(
            pod_id=self.config.pod_id,
            status=self.status,
            is_monitoring=self.is_monitoring,
            last_usage=idle.last_usage,
            idle_minutes=idle.idle_minutes,
            terminal_command=self.terminal_command,
            last_error=self.last_error
        )

    async def start(self) -> ConnectionStatus:
        """Resume the pod, wait for its public endpoint and start supervision.

        Any failure resets the status to NOT_STARTED and is re-raised.
        """
        pod_id = self.config.pod_id
        self._cancel_monitor()
        self.status = ConnectionStatus.starting()

        try:
            if self.config.bid is not None:
                console.print(f"[cyan]Resuming pod {pod_id} (bid ${self.config.bid}/hr)...[/cyan]")
            else:
                console.print(f"[cyan]Resuming pod {pod_id}...[/cyan]")
            await asyncio.to_thread(self.api_client.resume, pod_id, self.config.bid)

            endpoint = await self._wait_for_endpoint()

            # sshd inside the container comes up after the port is published
            await self.sleep(self.grace_period)

            self.status = ConnectionStatus.started(endpoint.ip, endpoint.public_port)
            self.terminal_command = port_forward_command(endpoint.ip, endpoint.public_port)
            self._start_monitor(endpoint.ip, endpoint.public_port)
            console.print(f"[green]Pod is running at {endpoint.ip}:{endpoint.public_port}[/green]")

            if self.open_terminal:
                await asyncio.to_thread(self.terminal.open, self.terminal_command)

        except Exception as e:
            self._reset()
            self.last_error = str(e)
            raise

        self.last_error = None
        return self.status

    async def _wait_for_endpoint(self) -> PortEndpoint:
        """Poll the pod listing until the pod publishes a public port."""
        pod_id = self.config.pod_id
        timeout = self.config.start_timeout_seconds
        start_time = self.clock()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True
        ) as progress:
            task = progress.add_task("Waiting for pod to start...", total=None)

            while True:
                pods = await asyncio.to_thread(self.api_client.list_pods)
                pod = next((p for p in pods if p.id == pod_id), None)
                if pod is None:
                    raise PodNotFoundError(pod_id)

                endpoint = pod.public_endpoint
                if endpoint:
                    progress.update(task, description="[green]Pod endpoint is up[/green]")
                    return endpoint

                progress.update(
                    task,
                    description=f"Waiting for pod... (status: {pod.desired_status or 'unknown'}) [dim]waiting for public port[/dim]"
                )

                if timeout is not None and self.clock() - start_time >= timeout:
                    raise StartTimeoutError(
                        f"Pod {pod_id} exposed no public port within {timeout:g}s"
                    )

                await self.sleep(self.poll_interval)

    async def stop(self) -> None:
        """Stop the pod and tear down supervision.

        On failure the error is re-raised and local state is left as it was;
        the pod may still be running.
        """
        console.print(f"[cyan]Stopping pod {self.config.pod_id}...[/cyan]")
        try:
            await asyncio.to_thread(self.api_client.stop, self.config.pod_id)
        except Exception as e:
            self.last_error = str(e)
            raise

        self._reset()
        self.last_error = None
        console.print("[green]Pod stopped[/green]")

    async def wait_closed(self) -> None:
        """Block until supervision ends."""
        task = self._monitor_task
        if task is not None:
            await asyncio.wait({task})

    def _start_monitor(self, ip: str, port: int) -> None:
        self._cancel_monitor()
        self._monitor = IdleMonitor(
            self.sampler,
            ip,
            port,
            threshold_percent=self.config.idle_threshold_percent,
            timeout_minutes=self.config.idle_timeout_minutes,
            on_idle=self.stop,
            interval=self.sample_interval,
            clock=self.clock,
            sleep=self.sleep
        )
        self._monitor_task = asyncio.create_task(self._monitor.run())
        self._monitor_task.add_done_callback(self._on_monitor_done)

    def _on_monitor_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            console.print(f"[red]Idle monitor crashed: {error}[/red]")
            self.last_error = str(error)
        if task is self._monitor_task:
            self._monitor_task = None
            self._monitor = None

    def _cancel_monitor(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        self._monitor = None
        # stop() may run inside the monitor itself after an idle timeout
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _reset(self) -> None:
        self._cancel_monitor()
        self.status = ConnectionStatus.not_started()
        self.terminal_command = None
