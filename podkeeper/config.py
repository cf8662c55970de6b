"""Configuration management for podkeeper."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from dotenv import dotenv_values

DEFAULT_API_HOST = "https://api.runpod.io/graphql"
ENV_FILENAME = ".env"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class PodConfig:
    """Settings for supervising a single pod.

    Immutable once loaded; a controller keeps the instance it was built with.
    """

    api_key: str = ""
    pod_id: str = ""
    api_host: str = DEFAULT_API_HOST
    idle_threshold_percent: int = 10
    idle_timeout_minutes: int = 60
    bid: Optional[str] = None
    open_terminal: bool = True
    ssh_key_path: Optional[str] = None
    start_timeout_seconds: Optional[float] = None

    @classmethod
    def load(cls, env_path: Optional[Path] = None) -> "PodConfig":
        """Load configuration from a .env file.

        Values in the file override shell environment variables.
        """
        path = Path(env_path) if env_path else Path.cwd() / ENV_FILENAME
        values: Dict[str, Optional[str]] = dict(os.environ)
        if path.exists():
            values.update(dotenv_values(path))
        return cls.from_mapping(values)

    @classmethod
    def from_mapping(cls, values: Dict[str, Optional[str]]) -> "PodConfig":
        """Build a config from environment-style KEY=value pairs."""
        timeout = _optional(values.get("START_TIMEOUT_SECONDS"))
        open_terminal = _optional(values.get("OPEN_TERMINAL"))
        return cls(
            api_key=_optional(values.get("RUNPOD_API_KEY")) or "",
            pod_id=_optional(values.get("RUNPOD_POD_ID")) or "",
            api_host=_optional(values.get("RUNPOD_API_HOST")) or DEFAULT_API_HOST,
            idle_threshold_percent=int(_optional(values.get("IDLE_THRESHOLD_PERCENT")) or "10"),
            idle_timeout_minutes=int(_optional(values.get("IDLE_TIMEOUT_MINUTES")) or "60"),
            bid=_optional(values.get("RUNPOD_BID")),
            open_terminal=open_terminal.lower() in _TRUE_VALUES if open_terminal else True,
            ssh_key_path=_optional(values.get("SSH_KEY_PATH")),
            start_timeout_seconds=float(timeout) if timeout else None,
        )

    @classmethod
    def from_document(cls, path: Union[str, Path]) -> "PodConfig":
        """Load a JSON session document.

        Expected keys: apiHost, apiKey, podId, idleTimeMins, idleThreshold and
        an optional bid.
        """
        try:
            data: Dict[str, Any] = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            raise ValueError(f"Unable to read session document {path}: {e}")

        bid = data.get("bid")
        return cls(
            api_key=data.get("apiKey", ""),
            pod_id=data.get("podId", ""),
            api_host=data.get("apiHost") or DEFAULT_API_HOST,
            idle_threshold_percent=int(data.get("idleThreshold", 10)),
            idle_timeout_minutes=int(data.get("idleTimeMins", 60)),
            bid=str(bid) if bid is not None else None,
        )

    def validate(self) -> Tuple[bool, str]:
        """Validate configuration and return (is_valid, error_message)."""
        if not self.api_key:
            return False, "RUNPOD_API_KEY is required. Run 'python main.py init' to configure."

        if not self.pod_id:
            return False, "RUNPOD_POD_ID is required. Run 'python main.py init' to configure."

        if not 0 <= self.idle_threshold_percent <= 100:
            return False, "IDLE_THRESHOLD_PERCENT must be between 0 and 100."

        if self.idle_timeout_minutes < 1:
            return False, "IDLE_TIMEOUT_MINUTES must be at least 1."

        if self.bid is not None:
            try:
                bid_value = float(self.bid)
            except ValueError:
                return False, f"RUNPOD_BID must be a number, got '{self.bid}'."
            if bid_value <= 0:
                return False, "RUNPOD_BID must be greater than 0."

        if self.start_timeout_seconds is not None and self.start_timeout_seconds <= 0:
            return False, "START_TIMEOUT_SECONDS must be greater than 0."

        return True, ""

    def save(self, env_path: Optional[Path] = None) -> Path:
        """Save configuration to a .env file and return its path."""
        path = Path(env_path) if env_path else Path.cwd() / ENV_FILENAME

        lines = [
            "# Required: RunPod API Key (get from https://www.runpod.io/console/user/settings)",
            f"RUNPOD_API_KEY={self.api_key}",
            "",
            "# Required: ID of the pod to resume and supervise",
            f"RUNPOD_POD_ID={self.pod_id}",
            "",
            "# Optional: GraphQL endpoint",
            f"RUNPOD_API_HOST={self.api_host}",
            "",
            "# Optional: stop the pod after the GPU stays below the threshold this long",
            f"IDLE_THRESHOLD_PERCENT={self.idle_threshold_percent}",
            f"IDLE_TIMEOUT_MINUTES={self.idle_timeout_minutes}",
            "",
            "# Optional: spot bid price per GPU (leave empty for on-demand)",
            f"RUNPOD_BID={self.bid if self.bid is not None else ''}",
            "",
            "# Optional: open a Terminal window with the port-forward command",
            f"OPEN_TERMINAL={'true' if self.open_terminal else 'false'}",
            "",
            "# Optional: SSH private key used for remote commands",
            f"SSH_KEY_PATH={self.ssh_key_path or ''}",
            "",
            "# Optional: give up waiting for the pod after this many seconds",
            f"START_TIMEOUT_SECONDS={self.start_timeout_seconds if self.start_timeout_seconds is not None else ''}",
        ]

        with open(path, "w") as f:
            f.write("\n".join(lines) + "\n")

        return path
