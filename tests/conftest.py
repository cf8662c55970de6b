"""Shared fakes for podkeeper tests."""

import asyncio
from typing import List, Optional, Sequence, Union

import pytest

from podkeeper.api_client import Machine, PodRecord, PortEndpoint
from podkeeper.config import PodConfig

POD_ID = "pod-abc123"


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StopLoop(Exception):
    """Raised by test sleeps to break out of an endless loop."""


class FakeAPIClient:
    """Records lifecycle calls and replays scripted pod listings."""

    def __init__(self, listings: Sequence[Union[List[PodRecord], Exception]] = ()):
        self.listings = list(listings)
        self.list_calls = 0
        self.resume_calls: List[tuple] = []
        self.stop_calls: List[str] = []
        self.resume_error: Optional[Exception] = None
        self.stop_errors: List[Exception] = []

    def list_pods(self) -> List[PodRecord]:
        self.list_calls += 1
        # The last scripted listing repeats forever
        listing = self.listings.pop(0) if len(self.listings) > 1 else self.listings[0]
        if isinstance(listing, Exception):
            raise listing
        return listing

    def resume(self, pod_id: str, bid: Optional[str] = None) -> None:
        self.resume_calls.append((pod_id, bid))
        if self.resume_error:
            raise self.resume_error

    def stop(self, pod_id: str) -> None:
        self.stop_calls.append(pod_id)
        if self.stop_errors:
            raise self.stop_errors.pop(0)


class FakeSampler:
    """Returns scripted usage values; exceptions in the script are raised."""

    def __init__(self, values: Sequence[Union[int, Exception]], repeat_last: bool = True):
        self.values = list(values)
        self.repeat_last = repeat_last
        self.calls: List[tuple] = []

    def sample(self, ip: str, port: int) -> int:
        self.calls.append((ip, port))
        value = self.values.pop(0) if len(self.values) > 1 or not self.repeat_last else self.values[0]
        if isinstance(value, Exception):
            raise value
        return value


class FakeTerminal:
    def __init__(self, error: Optional[Exception] = None):
        self.commands: List[str] = []
        self.error = error

    def open(self, command: str) -> None:
        self.commands.append(command)
        if self.error:
            raise self.error


def make_pod(
    pod_id: str = POD_ID,
    ip: str = "203.0.113.7",
    public_port: Optional[int] = 40222,
    desired_status: str = "RUNNING"
) -> PodRecord:
    """Build a pod record; public_port=None gives a pod without a public endpoint."""
    ports = []
    if public_port is not None:
        ports = [
            PortEndpoint(ip="10.0.0.5", is_public=False, private_port=8188, public_port=8188, protocol_type="http"),
            PortEndpoint(ip=ip, is_public=True, private_port=22, public_port=public_port, protocol_type="tcp"),
        ]
    return PodRecord(
        id=pod_id,
        name="comfy",
        desired_status=desired_status,
        cost_per_hr=0.44,
        gpu_count=1,
        machine=Machine(gpu_display_name="RTX 4090", location="EU-RO-1"),
        ports=ports
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> PodConfig:
    return PodConfig(
        api_key="rpa_test",
        pod_id=POD_ID,
        idle_threshold_percent=10,
        idle_timeout_minutes=1
    )


@pytest.fixture
def fake_terminal() -> FakeTerminal:
    return FakeTerminal()


def make_sleep(clock: FakeClock, record: List[float], park_after: Optional[float] = None):
    """Sleep that advances the fake clock instead of waiting.

    Sleeps of exactly park_after seconds never return, which parks the idle
    monitor until it is cancelled.
    """
    async def sleep(seconds: float) -> None:
        record.append(seconds)
        clock.advance(seconds)
        if park_after is not None and seconds == park_after:
            await asyncio.Event().wait()
        await asyncio.sleep(0)

    return sleep
