"""Error types raised by the pod lifecycle code."""

from typing import Optional


class PodkeeperError(Exception):
    """Base class for all podkeeper errors."""
    pass


class TransportError(PodkeeperError):
    """Raised when the control API cannot be reached or answers with a failure."""

    def __init__(self, message: str, body: Optional[str] = None):
        super().__init__(message)
        self.body = body


class DecodeError(PodkeeperError):
    """Raised when a control API response does not have the expected shape."""
    pass


class PodNotFoundError(PodkeeperError):
    """Raised when the configured pod is missing from the pod listing."""

    def __init__(self, pod_id: str):
        super().__init__(f"Pod {pod_id} not found in account")
        self.pod_id = pod_id


class ExecutionError(PodkeeperError):
    """Raised when a local or remote command cannot run or exits abnormally."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class UnknownError(PodkeeperError):
    """Raised for unexpected output or integration failures."""
    pass


class ParseError(UnknownError):
    """Raised when command output cannot be parsed."""
    pass


class AppleScriptError(UnknownError):
    """Raised when Terminal.app could not be driven through AppleScript."""
    pass


class StartTimeoutError(PodkeeperError):
    """Raised when a pod exposes no public endpoint before the start deadline."""
    pass
