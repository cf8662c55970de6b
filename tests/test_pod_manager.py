"""Tests for the pod lifecycle controller."""

import asyncio
import threading
from dataclasses import replace
from typing import List

import pytest

from conftest import POD_ID, FakeAPIClient, FakeClock, FakeSampler, FakeTerminal, make_pod, make_sleep
from podkeeper.config import PodConfig
from podkeeper.errors import (
    AppleScriptError,
    PodNotFoundError,
    StartTimeoutError,
    TransportError,
    UnknownError,
)
from podkeeper.idle_monitor import IdleState
from podkeeper.pod_manager import (
    ConnectionStatus,
    PodManager,
    StatusKind,
    port_forward_command,
)

POLL = 5
GRACE = 10
SAMPLE = 60

EXPECTED_COMMAND = (
    "ssh -L 127.0.0.1:8188:127.0.0.1:8188 -o StrictHostKeyChecking=no "
    "-o UserKnownHostsFile=/dev/null root@203.0.113.7 -p 40222"
)


def build_manager(
    config: PodConfig,
    api: FakeAPIClient,
    clock: FakeClock,
    sleeps: List[float],
    sampler: FakeSampler = None,
    terminal: FakeTerminal = None,
    park_monitor: bool = True
) -> PodManager:
    return PodManager(
        config,
        api_client=api,
        sampler=sampler or FakeSampler([50]),
        terminal=terminal or FakeTerminal(),
        poll_interval=POLL,
        grace_period=GRACE,
        sample_interval=SAMPLE,
        clock=clock,
        sleep=make_sleep(clock, sleeps, park_after=SAMPLE if park_monitor else None)
    )


async def shutdown(manager: PodManager) -> None:
    """Cancel a still-running monitor so the test loop closes cleanly."""
    task = manager._monitor_task
    if task is not None:
        task.cancel()
        await asyncio.wait({task})


class TestConnectionStatus:

    def test_variants(self) -> None:
        assert ConnectionStatus.not_started().kind is StatusKind.NOT_STARTED
        assert ConnectionStatus.starting().ip is None
        started = ConnectionStatus.started("203.0.113.7", 40222)
        assert started.is_started
        assert (started.ip, started.port) == ("203.0.113.7", 40222)
        assert str(started) == "started (203.0.113.7:40222)"
        assert started == ConnectionStatus.started("203.0.113.7", 40222)

    def test_port_forward_command(self) -> None:
        assert port_forward_command("203.0.113.7", 40222) == EXPECTED_COMMAND


class TestStart:

    @pytest.mark.asyncio
    async def test_start_reaches_started(self, config: PodConfig, clock: FakeClock, fake_terminal: FakeTerminal) -> None:
        api = FakeAPIClient([[make_pod()]])
        sleeps: List[float] = []
        manager = build_manager(config, api, clock, sleeps, terminal=fake_terminal)

        status = await manager.start()

        assert status == ConnectionStatus.started("203.0.113.7", 40222)
        assert manager.status == status
        assert api.resume_calls == [(POD_ID, None)]
        assert manager.is_monitoring
        assert manager.terminal_command == EXPECTED_COMMAND
        assert fake_terminal.commands == [EXPECTED_COMMAND]
        assert sleeps[0] == GRACE
        assert manager.last_error is None
        await shutdown(manager)

    @pytest.mark.asyncio
    async def test_start_with_bid(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        manager = build_manager(replace(config, bid="0.3"), api, clock, [])

        await manager.start()

        assert api.resume_calls == [(POD_ID, "0.3")]
        await shutdown(manager)

    @pytest.mark.asyncio
    async def test_start_polls_until_public_port(self, config: PodConfig, clock: FakeClock) -> None:
        statuses: List[ConnectionStatus] = []
        api = FakeAPIClient([
            [make_pod(public_port=None, desired_status="RUNNING")],
            [make_pod(public_port=None)],
            [make_pod()],
        ])
        sleeps: List[float] = []
        manager = build_manager(config, api, clock, sleeps)

        original_list = api.list_pods

        def list_pods():
            statuses.append(manager.status)
            return original_list()

        api.list_pods = list_pods

        await manager.start()

        assert api.list_calls == 3
        assert all(s.kind is StatusKind.STARTING for s in statuses)
        assert sleeps[:3] == [POLL, POLL, GRACE]
        assert manager.status.is_started
        await shutdown(manager)

    @pytest.mark.asyncio
    async def test_pod_missing_from_listing(self, config: PodConfig, clock: FakeClock, fake_terminal: FakeTerminal) -> None:
        api = FakeAPIClient([[make_pod(pod_id="someone-else")]])
        manager = build_manager(config, api, clock, [], terminal=fake_terminal)

        with pytest.raises(PodNotFoundError):
            await manager.start()

        assert manager.status == ConnectionStatus.not_started()
        assert not manager.is_monitoring
        assert api.list_calls == 1
        assert fake_terminal.commands == []
        assert "not found" in manager.last_error

    @pytest.mark.asyncio
    async def test_resume_failure_resets_status(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        api.resume_error = TransportError("GraphQL request failed (500)", body="boom")
        manager = build_manager(config, api, clock, [])

        with pytest.raises(TransportError):
            await manager.start()

        assert manager.status == ConnectionStatus.not_started()
        assert api.list_calls == 0

    @pytest.mark.asyncio
    async def test_listing_failure_resets_status(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([TransportError("GraphQL request failed: refused")])
        manager = build_manager(config, api, clock, [])

        with pytest.raises(TransportError):
            await manager.start()

        assert manager.status == ConnectionStatus.not_started()

    @pytest.mark.asyncio
    async def test_terminal_failure_rolls_back(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        terminal = FakeTerminal(error=AppleScriptError("AppleScript error: not authorized"))
        manager = build_manager(config, api, clock, [], terminal=terminal)

        with pytest.raises(UnknownError):
            await manager.start()

        assert manager.status == ConnectionStatus.not_started()
        assert not manager.is_monitoring
        assert manager.terminal_command is None
        assert manager.last_error == "AppleScript error: not authorized"

    @pytest.mark.asyncio
    async def test_open_terminal_disabled(self, config: PodConfig, clock: FakeClock, fake_terminal: FakeTerminal) -> None:
        api = FakeAPIClient([[make_pod()]])
        manager = build_manager(replace(config, open_terminal=False), api, clock, [], terminal=fake_terminal)

        await manager.start()

        assert fake_terminal.commands == []
        assert manager.terminal_command == EXPECTED_COMMAND
        await shutdown(manager)

    @pytest.mark.asyncio
    async def test_start_timeout(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod(public_port=None)]])
        manager = build_manager(replace(config, start_timeout_seconds=12), api, clock, [])

        with pytest.raises(StartTimeoutError):
            await manager.start()

        # Polls at t=0, 5, 10 and 15; the last one is past the deadline
        assert api.list_calls == 4
        assert manager.status == ConnectionStatus.not_started()

    @pytest.mark.asyncio
    async def test_previous_error_cleared_by_success(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        api.resume_error = TransportError("GraphQL request failed (500)")
        manager = build_manager(config, api, clock, [])

        with pytest.raises(TransportError):
            await manager.start()
        assert manager.last_error is not None

        api.resume_error = None
        await manager.start()

        assert manager.last_error is None
        await shutdown(manager)

    @pytest.mark.asyncio
    async def test_restart_stops_old_monitor_before_polling(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        manager = build_manager(config, api, clock, [])
        await manager.start()
        old_task = manager._monitor_task

        observed: List[tuple] = []
        api.listings = [[make_pod(public_port=None)], [make_pod(public_port=None)], [make_pod()]]
        original_list = api.list_pods

        def list_pods():
            observed.append((manager.status.kind, manager.is_monitoring))
            return original_list()

        api.list_pods = list_pods

        await manager.start()

        assert observed == [(StatusKind.STARTING, False)] * 3
        await asyncio.wait({old_task})
        assert old_task.cancelled()
        assert manager._monitor_task is not old_task
        assert manager.status.is_started and manager.is_monitoring
        await shutdown(manager)


class TestStop:

    @pytest.mark.asyncio
    async def test_start_then_stop_clears_everything(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        manager = build_manager(config, api, clock, [])

        await manager.start()
        monitor_task = manager._monitor_task
        await manager.stop()

        assert api.stop_calls == [POD_ID]
        assert manager.status == ConnectionStatus.not_started()
        assert not manager.is_monitoring
        assert manager.terminal_command is None
        idle = manager.idle_state
        assert (idle.idle_start, idle.idle_minutes, idle.last_usage) == (None, 0, None)

        await asyncio.wait({monitor_task})
        assert monitor_task.cancelled()

    @pytest.mark.asyncio
    async def test_stop_discards_sample_in_flight(self, config: PodConfig, clock: FakeClock) -> None:
        entered = threading.Event()
        release = threading.Event()

        class BlockingSampler:
            def sample(self, ip: str, port: int) -> int:
                entered.set()
                release.wait(5)
                return 5

        api = FakeAPIClient([[make_pod()]])
        manager = build_manager(config, api, clock, [], sampler=BlockingSampler())

        await manager.start()
        monitor = manager._monitor
        monitor_task = manager._monitor_task
        for _ in range(200):
            if entered.is_set():
                break
            await asyncio.sleep(0.01)
        assert entered.is_set()

        await manager.stop()
        release.set()
        await asyncio.wait({monitor_task})
        # Give the worker thread time to hand back its now-unwanted result
        await asyncio.sleep(0.05)

        assert monitor_task.cancelled()
        assert monitor.state == IdleState()
        idle = manager.idle_state
        assert (idle.idle_start, idle.idle_minutes, idle.last_usage) == (None, 0, None)

    @pytest.mark.asyncio
    async def test_stop_failure_keeps_state(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        manager = build_manager(config, api, clock, [])
        await manager.start()
        api.stop_errors = [TransportError("GraphQL request failed (503)", body="unavailable")]

        with pytest.raises(TransportError):
            await manager.stop()

        assert manager.status.is_started
        assert manager.is_monitoring
        assert manager.terminal_command == EXPECTED_COMMAND
        assert "503" in manager.last_error
        await shutdown(manager)

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        manager = build_manager(config, api, clock, [])

        await manager.stop()

        assert api.stop_calls == [POD_ID]
        assert manager.status == ConnectionStatus.not_started()


class TestSupervision:

    @pytest.mark.asyncio
    async def test_idle_pod_is_stopped_once(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        sampler = FakeSampler([5])
        manager = build_manager(config, api, clock, [], sampler=sampler, park_monitor=False)

        await manager.start()
        await asyncio.wait_for(manager.wait_closed(), timeout=5)

        assert api.stop_calls == [POD_ID]
        assert len(sampler.calls) == 3
        assert sampler.calls[0] == ("203.0.113.7", 40222)
        assert manager.status == ConnectionStatus.not_started()
        assert not manager.is_monitoring
        assert manager.last_error is None

    @pytest.mark.asyncio
    async def test_busy_pod_keeps_running(self, config: PodConfig, clock: FakeClock) -> None:
        api = FakeAPIClient([[make_pod()]])
        sampler = FakeSampler([5, 40])
        manager = build_manager(config, api, clock, [], sampler=sampler)

        await manager.start()
        # Let the monitor take its first sample and park in its sleep
        for _ in range(20):
            await asyncio.sleep(0.01)
            if manager.idle_state.last_usage is not None:
                break

        snapshot = manager.snapshot()
        assert snapshot.is_monitoring
        assert snapshot.last_usage == 5
        assert snapshot.idle_minutes == 0
        assert api.stop_calls == []
        await shutdown(manager)

    @pytest.mark.asyncio
    async def test_wait_closed_without_monitor(self, config: PodConfig, clock: FakeClock) -> None:
        manager = build_manager(config, FakeAPIClient([[make_pod()]]), clock, [])

        await asyncio.wait_for(manager.wait_closed(), timeout=1)
