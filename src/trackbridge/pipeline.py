"""
Bridge pipeline that integrates all components.

Provides the complete processing chain:
- Tracking UDP reception → Pose transform → Queue → Broadcast worker → DSU clients
- DSU client requests are handled independently on the DSU receive thread
"""

import queue
import threading
import time
from typing import Any, Callable, Dict, Optional

from .config import BridgeConfig
from .logger import SampleLogger
from .metrics import MetricsCollector
from .receiver import DSUServer, TrackingReceiver
from .transform import PoseSample, PoseTransform


class BridgePipeline:
    """
    Complete bridge from tracking samples to DSU pad data.

    In debug mode no DSU socket is opened and samples are forwarded unchanged
    to the sample callback instead.

    Usage:
        pipeline = BridgePipeline(config)
        pipeline.start()
        # ... running ...
        pipeline.stop()
    """

    def __init__(
        self,
        config: BridgeConfig,
        recorder: Optional[SampleLogger] = None,
        poll_interval: float = 0.1
    ):
        """
        Args:
            config: Validated bridge configuration
            recorder: Optional logger receiving every raw sample
            poll_interval: Socket timeout / queue wait used to observe stop()
        """
        self.config = config
        self.recorder = recorder
        self.poll_interval = poll_interval

        self.receiver = TrackingReceiver(
            host=config.tracking_host,
            port=config.tracking_port,
            poll_interval=poll_interval,
        )
        self.server: Optional[DSUServer] = None
        if not config.debug:
            self.server = DSUServer(
                host=config.dsu_host,
                port=config.dsu_port,
                session_timeout=config.session_timeout,
                poll_interval=poll_interval,
            )

        # Debug mode always shows the absolute sample
        self.transform = PoseTransform(relative=config.relative_transform and not config.debug)
        self.metrics = MetricsCollector()

        self._queue: "queue.Queue[PoseSample]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._running = False

        self._sample_callback: Optional[Callable[[PoseSample], None]] = None
        self._error_callback: Optional[Callable[[Exception], None]] = None

        self.samples_processed = 0
        self.start_time: Optional[float] = None

    def set_sample_callback(self, callback: Callable[[PoseSample], None]) -> None:
        """Set callback for every processed (transformed) sample."""
        self._sample_callback = callback

    def set_error_callback(self, callback: Callable[[Exception], None]) -> None:
        self._error_callback = callback
        self.receiver.set_error_callback(callback)
        if self.server:
            self.server.set_error_callback(callback)

    def start(self) -> None:
        """
        Bind both sockets and start the receive and broadcast threads.

        Raises:
            OSError: If a socket cannot be bound
        """
        if self._running:
            return

        self._running = True
        self.start_time = time.time()

        self.receiver.set_sample_callback(self._on_raw_sample)
        self.receiver.set_socket_error_callback(self._on_tracking_socket_error)

        self._worker = threading.Thread(target=self._process_loop, name="broadcast", daemon=True)
        self._worker.start()

        try:
            if self.server:
                self.server.start()
            self.receiver.start()
        except OSError:
            self.stop()
            raise

    def stop(self) -> Dict[str, Any]:
        """Stop all threads and close sockets."""
        self._running = False

        self.receiver.stop()
        if self._worker:
            self._worker.join(timeout=2.0)
            self._worker = None
        if self.server:
            self.server.stop()

        self._sync_drop_counters()
        log_metadata = {}
        if self.recorder and self.recorder.is_recording:
            log_metadata = self.recorder.stop_recording()

        return {
            "samples_processed": self.samples_processed,
            "duration_seconds": time.time() - self.start_time if self.start_time else 0,
            "metrics": self.metrics.get_summary(),
            "log_metadata": log_metadata
        }

    def submit(self, sample: PoseSample) -> PoseSample:
        """
        Feed one absolute sample as if it came from the tracking socket.

        Returns:
            The transformed sample that was queued
        """
        if self.recorder and self.recorder.is_recording:
            self.recorder.log_sample(sample.to_dict())

        transformed = self.transform.apply(sample)
        self._queue.put(transformed)
        return transformed

    def _on_raw_sample(self, sample: PoseSample) -> None:
        self.submit(sample)

    def _on_tracking_socket_error(self, error: OSError) -> None:
        self.transform.zero_memory()
        self.metrics.record_drop("socket_error")
        if self.recorder and self.recorder.is_recording:
            self.recorder.log_event("transform_zeroed", {"error": str(error)})

    def _process_loop(self) -> None:
        """Drain the queue and broadcast each sample, one at a time."""
        while self._running:
            try:
                sample = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            try:
                self._process_sample(sample)
            except Exception as e:
                if self._error_callback:
                    self._error_callback(e)

    def _process_sample(self, sample: PoseSample) -> None:
        self.metrics.record_sample()

        if self.server:
            sent = self.server.broadcast(sample)
            self.metrics.record_broadcast(recipients=self.server.last_recipient_count, sent=sent)

        if self._sample_callback:
            self._sample_callback(sample)

        self.samples_processed += 1

    def get_status(self) -> Dict[str, Any]:
        """Get current pipeline status."""
        self._sync_drop_counters()
        status: Dict[str, Any] = {
            "running": self._running,
            "debug": self.server is None,
            "relative_transform": self.transform.relative,
            "samples_processed": self.samples_processed,
            "queue_depth": self._queue.qsize(),
            "uptime_seconds": time.time() - self.start_time if self.start_time else 0,
            "receiver": self.receiver.stats,
            "metrics": self.metrics.get_summary(),
        }
        if self.server:
            status["server"] = self.server.stats
        return status

    def _sync_drop_counters(self) -> None:
        """Copy listener drop counters into the metrics collector."""
        self.metrics.set_drop_total("undersized_sample", self.receiver.stats["dropped_undersized"])
        if self.server:
            for reason, count in self.server.dispatcher.stats["rejected"].items():
                self.metrics.set_drop_total(reason, count)

    @property
    def is_running(self) -> bool:
        return self._running
