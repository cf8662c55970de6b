"""GPU utilization sampling over SSH."""

from .errors import ParseError
from .ssh import CommandRunner

GPU_QUERY_COMMAND = "nvidia-smi --query-gpu=utilization.gpu --format=csv,noheader,nounits"


class GPUUsageSampler:
    """Reads the instantaneous GPU utilization of a pod."""

    def __init__(self, runner: CommandRunner, command: str = GPU_QUERY_COMMAND):
        self.runner = runner
        self.command = command

    def sample(self, ip: str, port: int) -> int:
        """Return GPU utilization in percent.

        Raises ParseError when nvidia-smi prints anything other than a single
        integer; runner errors propagate unchanged.
        """
        output = self.runner.run(ip, port, self.command).strip()
        try:
            return int(output)
        except ValueError:
            raise ParseError(f"Unexpected GPU usage output: {output[:100]!r}")
