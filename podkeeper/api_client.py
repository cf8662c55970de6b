"""RunPod GraphQL client for pod inventory and lifecycle commands."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from rich.console import Console

from .config import DEFAULT_API_HOST
from .errors import DecodeError, TransportError
from .ssh import CommandRunner

console = Console()

BID_EXECUTABLE = "runpodctl"

LIST_PODS_QUERY = """
query myPods {
  myself {
    pods {
      id
      name
      desiredStatus
      costPerHr
      gpuCount
      imageName
      uptimeSeconds
      machine {
        gpuDisplayName
        location
      }
      runtime {
        ports {
          ip
          isIpPublic
          privatePort
          publicPort
          type
        }
      }
    }
  }
}
"""

RESUME_MUTATION = """
mutation podResume($podId: String!) {
  podResume(input: {podId: $podId}) {
    id
    costPerHr
    desiredStatus
    lastStatusChange
  }
}
"""

STOP_MUTATION = """
mutation stopPod($podId: String!) {
  podStop(input: {podId: $podId}) {
    id
    desiredStatus
    lastStatusChange
  }
}
"""


@dataclass
class PortEndpoint:
    """One port mapping of a running pod."""
    ip: str
    is_public: bool
    private_port: int
    public_port: int
    protocol_type: str


@dataclass
class Machine:
    """Host machine details of a pod."""
    gpu_display_name: str
    location: str


@dataclass
class PodRecord:
    """Snapshot of a pod as returned by the pod listing."""
    id: str
    name: str
    desired_status: str
    cost_per_hr: Optional[float] = None
    gpu_count: int = 0
    image_name: str = ""
    uptime_seconds: int = 0
    machine: Optional[Machine] = None
    ports: List[PortEndpoint] = field(default_factory=list)

    @property
    def public_endpoint(self) -> Optional[PortEndpoint]:
        """First public port mapping, if the pod exposes one yet."""
        return next((p for p in self.ports if p.is_public), None)


class RunPodAPIClient:
    """RunPod GraphQL client.

    Every call sends exactly one request and never retries.
    """

    def __init__(
        self,
        api_key: str,
        api_host: str = DEFAULT_API_HOST,
        runner: Optional[CommandRunner] = None,
        bid_executable: str = BID_EXECUTABLE,
        timeout: int = 30
    ):
        self.api_key = api_key
        self.api_host = api_host
        self.runner = runner or CommandRunner()
        self.bid_executable = bid_executable
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json"
        })

    def _query_graphql(self, query: str, variables: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Execute GraphQL query."""
        # RunPod GraphQL expects api_key as a query parameter
        params = {"api_key": self.api_key}
        payload: Dict[str, Any] = {"query": query, "variables": variables or {}}

        try:
            response = self.session.post(
                self.api_host, params=params, json=payload, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"GraphQL request failed: {e}")

        if not 200 <= response.status_code < 300:
            error_body = response.text or ""
            raise TransportError(
                f"GraphQL request failed ({response.status_code}): {error_body[:200] or 'No error body'}",
                body=error_body
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(f"GraphQL response is not JSON: {e}")

        if not isinstance(data, dict):
            raise DecodeError(f"GraphQL response is not an object: {type(data).__name__}")

        if data.get("errors"):
            raise TransportError(f"GraphQL errors: {data['errors']}", body=response.text)

        return data

    def list_pods(self) -> List[PodRecord]:
        """Get all pods of the account."""
        data = self._query_graphql(LIST_PODS_QUERY)
        try:
            pods = data["data"]["myself"]["pods"]
            return [self._parse_pod(p) for p in pods]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Unexpected pod listing shape: {e!r}")

    def _parse_pod(self, data: Dict[str, Any]) -> PodRecord:
        """Parse pod data from the listing."""
        machine = data.get("machine")
        runtime = data.get("runtime") or {}

        return PodRecord(
            id=data["id"],
            name=data.get("name") or "",
            desired_status=data.get("desiredStatus") or "",
            cost_per_hr=data.get("costPerHr"),
            gpu_count=data.get("gpuCount") or 0,
            image_name=data.get("imageName") or "",
            uptime_seconds=data.get("uptimeSeconds") or 0,
            machine=Machine(
                gpu_display_name=machine.get("gpuDisplayName") or "",
                location=machine.get("location") or ""
            ) if machine else None,
            ports=[
                PortEndpoint(
                    ip=p["ip"],
                    is_public=bool(p.get("isIpPublic")),
                    private_port=int(p["privatePort"]),
                    public_port=int(p["publicPort"]),
                    protocol_type=p.get("type") or ""
                )
                for p in runtime.get("ports") or []
            ]
        )

    def resume(self, pod_id: str, bid: Optional[str] = None) -> None:
        """Resume a stopped pod.

        With a bid the pod is started as a spot instance through the
        runpodctl executable; without one the on-demand resume mutation is used.
        """
        if bid is not None:
            console.print(f"[dim]Starting pod {pod_id} with bid ${bid}/hr[/dim]")
            self.runner.run_local(
                [self.bid_executable, "start", "pod", pod_id, "--bid", str(bid)],
                capture_stderr=True
            )
            return

        self._query_graphql(RESUME_MUTATION, {"podId": pod_id})

    def stop(self, pod_id: str) -> None:
        """Stop a running pod."""
        self._query_graphql(STOP_MUTATION, {"podId": pod_id})
