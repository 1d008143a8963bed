"""
Recorder for raw tracking samples.

Provides functionality to:
- Append absolute samples to a JSONL recording without blocking the receive thread
- Stamp each sample with its offset from the start of the recording
- Note bridge events (client joined, transform reset, ...) between samples

Every line is a JSON object with a ``kind`` of header, sample, event or footer.
"""

import json
import queue
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, TextIO


RECORDING_SCHEMA = "trackbridge/1"
RECORDING_SUFFIX = ".jsonl"


def _write_line(stream: TextIO, entry: Mapping[str, Any]) -> None:
    stream.write(json.dumps(entry, separators=(",", ":")) + "\n")


class SampleLogger:
    """
    Records tracking samples to a JSONL file from a background writer.

    Sample lines look like ``{"kind": "sample", "t": 0.0167, "pose": {...}}``
    where ``t`` is seconds since start_recording().

    Usage:
        recorder = SampleLogger(log_dir="./recordings")
        recorder.start_recording(metadata={"tracking_port": 4242})
        recorder.log_sample(sample.to_dict())
        recorder.stop_recording()
    """

    def __init__(self, log_dir: str = "./recordings", clock: Optional[Callable[[], float]] = None):
        """
        Args:
            log_dir: Directory for recordings (created on first recording)
            clock: Monotonic time source for sample offsets
        """
        self.log_dir = Path(log_dir)
        self._clock = clock or time.monotonic

        self._lock = threading.Lock()
        self._pending: "queue.Queue[Optional[Dict[str, Any]]]" = queue.Queue()
        self._writer: Optional[threading.Thread] = None
        self._stream: Optional[TextIO] = None
        self._path: Optional[Path] = None

        self._opened_at = 0.0
        self._started: Optional[str] = None
        self._samples = 0
        self._events = 0

    def start_recording(
        self,
        session_name: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None
    ) -> str:
        """
        Open a new recording.

        Args:
            session_name: File stem (default: ``bridge_<timestamp>``)
            metadata: Extra values stored in the header line

        Returns:
            Path of the recording

        Raises:
            RuntimeError: If a recording is already open
        """
        with self._lock:
            if self._stream is not None:
                raise RuntimeError("Recording already in progress")

            self.log_dir.mkdir(parents=True, exist_ok=True)
            started = datetime.now()
            name = session_name or started.strftime("bridge_%Y%m%d_%H%M%S")
            path = self.log_dir / f"{name}{RECORDING_SUFFIX}"

            stream = open(path, "w", encoding="utf-8")
            _write_line(stream, {
                "kind": "header",
                "schema": RECORDING_SCHEMA,
                "started": started.isoformat(),
                "metadata": dict(metadata or {}),
            })

            self._stream = stream
            self._path = path
            self._started = started.isoformat()
            self._opened_at = self._clock()
            self._samples = 0
            self._events = 0

            self._writer = threading.Thread(
                target=self._drain, args=(stream,), name="recorder", daemon=True
            )
            self._writer.start()
            return str(path)

    def stop_recording(self) -> Dict[str, Any]:
        """
        Flush pending lines, write the footer and close the file.

        Returns:
            Summary of the recording, or an empty dict if none was open
        """
        with self._lock:
            stream = self._stream
            if stream is None:
                return {}

            self._stream = None
            self._pending.put(None)
            if self._writer:
                self._writer.join(timeout=5.0)
                self._writer = None

            duration = round(self._clock() - self._opened_at, 6)
            _write_line(stream, {
                "kind": "footer",
                "duration": duration,
                "samples": self._samples,
                "events": self._events,
            })
            stream.close()

            return {
                "log_file": str(self._path),
                "started": self._started,
                "duration_seconds": duration,
                "total_samples": self._samples,
                "total_events": self._events,
            }

    def log_sample(self, pose: Mapping[str, float]) -> None:
        """
        Queue one absolute sample (channel name -> value).

        Raises:
            RuntimeError: If no recording is open
        """
        with self._lock:
            self._enqueue({"kind": "sample", "pose": dict(pose)})
            self._samples += 1

    def log_event(self, name: str, data: Optional[Mapping[str, Any]] = None) -> None:
        with self._lock:
            self._enqueue({"kind": "event", "name": name, "data": dict(data or {})})
            self._events += 1

    def _enqueue(self, entry: Dict[str, Any]) -> None:
        # Caller holds _lock, so nothing is queued after the stop marker
        if self._stream is None:
            raise RuntimeError("Not currently recording")
        entry["t"] = round(self._clock() - self._opened_at, 6)
        self._pending.put(entry)

    def _drain(self, stream: TextIO) -> None:
        """Writer thread: one line per queued entry until the None marker."""
        while True:
            entry = self._pending.get()
            if entry is None:
                break
            _write_line(stream, entry)
        stream.flush()

    @property
    def is_recording(self) -> bool:
        return self._stream is not None

    @property
    def current_log_file(self) -> Optional[str]:
        return str(self._path) if self._stream is not None else None


def list_recordings(log_dir: str = "./recordings") -> List[Dict[str, Any]]:
    """
    Describe the recordings in a directory, newest first.

    Files whose first line is not a recording header are still listed, with
    ``schema`` set to None.
    """
    root = Path(log_dir)
    if not root.is_dir():
        return []

    found = []
    for path in sorted(root.glob(f"*{RECORDING_SUFFIX}"), key=lambda p: p.stat().st_mtime, reverse=True):
        info: Dict[str, Any] = {
            "path": str(path),
            "name": path.stem,
            "size_bytes": path.stat().st_size,
            "schema": None,
            "started": None,
            "metadata": {},
        }
        with open(path, "r", encoding="utf-8") as fp:
            first = fp.readline()
        try:
            header = json.loads(first)
        except json.JSONDecodeError:
            header = None
        if isinstance(header, dict) and header.get("kind") == "header":
            info["schema"] = header.get("schema")
            info["started"] = header.get("started")
            info["metadata"] = header.get("metadata", {})
        found.append(info)

    return found
