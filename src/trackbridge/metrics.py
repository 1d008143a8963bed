"""
Metrics module for monitoring the bridge at runtime.

Provides functionality to:
- Track tracking-sample rate and totals
- Count broadcast rounds, pad data frames sent and send errors
- Count dropped input by reason
- Export metrics (JSON, Prometheus text format)
"""

import json
import threading
import time
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Dict


class MetricsCollector:
    """
    Thread-safe metrics collector for the bridge.

    Usage:
        metrics = MetricsCollector()
        metrics.record_sample()
        metrics.record_broadcast(recipients=2, sent=2)
        metrics.record_drop("undersized")
        summary = metrics.get_summary()
    """

    def __init__(self, history_size: int = 120):
        """
        Args:
            history_size: Number of samples kept for the rolling rate
        """
        self.history_size = history_size
        self._lock = threading.Lock()
        self._start_time = time.time()

        self._sample_count = 0
        self._sample_times: deque = deque(maxlen=history_size)

        self._broadcast_count = 0
        self._packets_sent = 0
        self._send_errors = 0
        self._last_recipients = 0

        self._drops: Dict[str, int] = defaultdict(int)

    def record_sample(self) -> None:
        """Record one sample taken off the queue."""
        with self._lock:
            self._sample_count += 1
            self._sample_times.append(time.monotonic())

    def record_broadcast(self, recipients: int, sent: int) -> None:
        """Record one broadcast round."""
        with self._lock:
            self._broadcast_count += 1
            self._packets_sent += sent
            self._send_errors += max(recipients - sent, 0)
            self._last_recipients = recipients

    def record_drop(self, reason: str, count: int = 1) -> None:
        with self._lock:
            self._drops[reason] += count

    def set_drop_total(self, reason: str, total: int) -> None:
        """Overwrite a drop counter with a total maintained elsewhere."""
        with self._lock:
            self._drops[reason] = total

    def _sample_rate(self) -> float:
        if len(self._sample_times) < 2:
            return 0.0
        time_span = self._sample_times[-1] - self._sample_times[0]
        if time_span <= 0:
            return 0.0
        return (len(self._sample_times) - 1) / time_span

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a complete metrics summary.

        Returns:
            Dictionary containing all metrics
        """
        with self._lock:
            return {
                "timestamp": datetime.now().isoformat(),
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "samples": {
                    "total": self._sample_count,
                    "rate_hz": round(self._sample_rate(), 2),
                },
                "broadcast": {
                    "rounds": self._broadcast_count,
                    "packets_sent": self._packets_sent,
                    "send_errors": self._send_errors,
                    "clients": self._last_recipients,
                },
                "drops": dict(self._drops),
            }

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        summary = self.get_summary()

        lines = [
            "# HELP trackbridge_samples_total Tracking samples processed",
            "# TYPE trackbridge_samples_total counter",
            f"trackbridge_samples_total {summary['samples']['total']}",
            "",
            "# HELP trackbridge_sample_rate_hz Current tracking sample rate",
            "# TYPE trackbridge_sample_rate_hz gauge",
            f"trackbridge_sample_rate_hz {summary['samples']['rate_hz']}",
            "",
            "# HELP trackbridge_packets_sent_total Pad data frames sent",
            "# TYPE trackbridge_packets_sent_total counter",
            f"trackbridge_packets_sent_total {summary['broadcast']['packets_sent']}",
            "",
            "# HELP trackbridge_clients DSU clients in the last broadcast round",
            "# TYPE trackbridge_clients gauge",
            f"trackbridge_clients {summary['broadcast']['clients']}",
            "",
            "# HELP trackbridge_drops_total Dropped datagrams by reason",
            "# TYPE trackbridge_drops_total counter",
        ]

        for reason, count in sorted(summary["drops"].items()):
            lines.append(f'trackbridge_drops_total{{reason="{reason}"}} {count}')

        return "\n".join(lines)

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._sample_count = 0
            self._sample_times.clear()
            self._broadcast_count = 0
            self._packets_sent = 0
            self._send_errors = 0
            self._last_recipients = 0
            self._drops.clear()
            self._start_time = time.time()


class MetricsExporter:
    """
    Export metrics to file.
    """

    @staticmethod
    def to_json(metrics: Dict[str, Any], filepath: str) -> None:
        """Write metrics to JSON file."""
        with open(filepath, 'w') as f:
            json.dump(metrics, f, indent=2)

    @staticmethod
    def to_jsonl(metrics: Dict[str, Any], filepath: str) -> None:
        """Append metrics as JSONL line."""
        with open(filepath, 'a') as f:
            f.write(json.dumps(metrics) + '\n')

    @staticmethod
    def to_prometheus_file(metrics: MetricsCollector, filepath: str) -> None:
        """Write Prometheus-format metrics to file."""
        with open(filepath, 'w') as f:
            f.write(metrics.export_prometheus())
