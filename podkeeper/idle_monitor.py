"""GPU idle supervision for a started pod."""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from rich.console import Console

from .errors import ExecutionError, PodkeeperError, UnknownError
from .gpu_usage import GPUUsageSampler

console = Console()

SAMPLE_INTERVAL_SECONDS = 60


@dataclass
class IdleState:
    """Idle accumulation for one monitoring session."""
    idle_start: Optional[float] = None
    idle_minutes: int = 0
    last_usage: Optional[int] = None

    def observe(self, usage: int, now: float, threshold_percent: int) -> int:
        """Fold one usage sample into the state and return the idle minutes.

        Any sample at or above the threshold resets the accumulation.
        """
        self.last_usage = usage
        if usage < threshold_percent:
            if self.idle_start is None:
                self.idle_start = now
            self.idle_minutes = int((now - self.idle_start) // 60)
        else:
            self.idle_start = None
            self.idle_minutes = 0
        return self.idle_minutes


class IdleMonitor:
    """Samples GPU usage on a fixed cadence and calls on_idle after a timeout.

    Runs as a task on the controller's event loop. Sampling happens in a
    worker thread; the idle state is only touched on the loop.
    """

    def __init__(
        self,
        sampler: GPUUsageSampler,
        ip: str,
        port: int,
        threshold_percent: int,
        timeout_minutes: int,
        on_idle: Callable[[], Awaitable[object]],
        interval: float = SAMPLE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep
    ):
        self.sampler = sampler
        self.ip = ip
        self.port = port
        self.threshold_percent = threshold_percent
        self.timeout_minutes = timeout_minutes
        self.on_idle = on_idle
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.state = IdleState()

    async def run(self) -> None:
        """Supervise until the idle timeout stops the pod or the task is cancelled."""
        while True:
            try:
                usage = await asyncio.to_thread(self.sampler.sample, self.ip, self.port)
            except (ExecutionError, UnknownError) as e:
                # A failed sample leaves the idle state untouched
                console.print(f"[yellow]Unable to check GPU usage: {e}[/yellow]")
            else:
                idle_minutes = self.state.observe(usage, self.clock(), self.threshold_percent)

                if idle_minutes > self.timeout_minutes:
                    console.print(
                        f"[yellow]GPU below {self.threshold_percent}% for {idle_minutes} min, "
                        f"stopping pod...[/yellow]"
                    )
                    try:
                        await self.on_idle()
                        return
                    except PodkeeperError as e:
                        console.print(f"[red]Idle stop failed, will retry next cycle: {e}[/red]")

            await self.sleep(self.interval)
