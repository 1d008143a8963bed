"""
Console output for debug mode and status reporting.
"""

import sys
import time
from typing import Any, Dict, Optional, TextIO

from .transform import PoseSample


def format_sample(sample: PoseSample) -> str:
    return (
        f"Position: [{sample.x}, {sample.y}, {sample.z}], "
        f"Rotation: [{sample.yaw}°, {sample.pitch}°, {sample.roll}°]"
    )


def format_status(summary: Dict[str, Any]) -> str:
    """One-line status from a MetricsCollector summary."""
    samples = summary.get("samples", {})
    broadcast = summary.get("broadcast", {})
    drops = sum(summary.get("drops", {}).values())
    return (
        f"samples={samples.get('total', 0)} "
        f"rate={samples.get('rate_hz', 0.0):.1f}Hz "
        f"clients={broadcast.get('clients', 0)} "
        f"sent={broadcast.get('packets_sent', 0)} "
        f"drops={drops}"
    )


class SampleConsole:
    """
    Prints tracking samples and status lines.

    Usage:
        console = SampleConsole()
        pipeline.set_sample_callback(console.print_sample)
    """

    def __init__(self, stream: Optional[TextIO] = None, every: int = 1):
        """
        Args:
            stream: Output stream (default: stdout)
            every: Print one of every N samples
        """
        self.stream = stream or sys.stdout
        self.every = max(1, int(every))
        self._count = 0
        self._last_status: Optional[float] = None

    def print_sample(self, sample: PoseSample) -> None:
        self._count += 1
        if (self._count - 1) % self.every:
            return
        print(f"OpenTrack debugging...{format_sample(sample)}", file=self.stream)

    def print_status(self, summary: Dict[str, Any], interval: float = 0.0) -> bool:
        """
        Print a status line, at most once per interval seconds.

        Returns:
            True if a line was printed
        """
        now = time.monotonic()
        if interval > 0 and self._last_status is not None and now - self._last_status < interval:
            return False
        self._last_status = now
        print(f"[{time.strftime('%H:%M:%S')}] {format_status(summary)}", file=self.stream)
        return True
