"""podkeeper - RunPod pod lifecycle and idle shutdown."""

from .config import PodConfig
from .api_client import RunPodAPIClient, PodRecord, PortEndpoint, Machine
from .errors import (
    PodkeeperError,
    TransportError,
    DecodeError,
    PodNotFoundError,
    ExecutionError,
    UnknownError,
    ParseError,
    AppleScriptError,
    StartTimeoutError,
)
from .ssh import CommandRunner
from .gpu_usage import GPUUsageSampler
from .idle_monitor import IdleMonitor, IdleState
from .pod_manager import PodManager, ConnectionStatus, StatusKind, PodSnapshot
from .terminal import TerminalLauncher, AppleScriptTerminal, ConsoleTerminal, default_terminal

__all__ = [
    "PodConfig",
    "RunPodAPIClient",
    "PodRecord",
    "PortEndpoint",
    "Machine",
    "PodkeeperError",
    "TransportError",
    "DecodeError",
    "PodNotFoundError",
    "ExecutionError",
    "UnknownError",
    "ParseError",
    "AppleScriptError",
    "StartTimeoutError",
    "CommandRunner",
    "GPUUsageSampler",
    "IdleMonitor",
    "IdleState",
    "PodManager",
    "ConnectionStatus",
    "StatusKind",
    "PodSnapshot",
    "TerminalLauncher",
    "AppleScriptTerminal",
    "ConsoleTerminal",
    "default_terminal",
]
