"""
Playback of sample recordings written by SampleLogger.

Provides functionality to:
- Load a recording into samples, events and header/footer metadata
- Replay samples at maximum speed or paced by their recorded offsets
- Check a recording for truncation and ordering problems before use
"""

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from .logger import RECORDING_SCHEMA
from .transform import CHANNELS, PoseSample


@dataclass(frozen=True)
class RecordedSample:
    """One recorded absolute sample and its offset in seconds."""
    t: float
    sample: PoseSample


@dataclass(frozen=True)
class RecordedEvent:
    t: float
    name: str
    data: Dict[str, Any]


@dataclass
class Recording:
    path: Path
    schema: Optional[str] = None
    started: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    samples: List[RecordedSample] = field(default_factory=list)
    events: List[RecordedEvent] = field(default_factory=list)
    footer: Optional[Dict[str, Any]] = None

    @property
    def duration_seconds(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        return self.samples[-1].t - self.samples[0].t


def load_recording(path: Union[str, Path]) -> Recording:
    """
    Parse a recording file.

    Missing pose channels read as 0.0. Lines of unknown kind are skipped.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a line is not a JSON object
    """
    recording = Recording(path=Path(path))
    with open(recording.path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{recording.path}:{lineno}: {e}") from e
            if not isinstance(entry, dict):
                raise ValueError(f"{recording.path}:{lineno}: expected a JSON object")

            kind = entry.get("kind")
            if kind == "sample":
                pose = entry.get("pose", {})
                recording.samples.append(RecordedSample(
                    t=float(entry.get("t", 0.0)),
                    sample=PoseSample.from_values([pose.get(name, 0.0) for name in CHANNELS]),
                ))
            elif kind == "event":
                recording.events.append(RecordedEvent(
                    t=float(entry.get("t", 0.0)),
                    name=entry.get("name", ""),
                    data=entry.get("data", {}),
                ))
            elif kind == "header":
                recording.schema = entry.get("schema")
                recording.started = entry.get("started")
                recording.metadata = entry.get("metadata", {})
            elif kind == "footer":
                recording.footer = entry

    return recording


class SampleReplay:
    """
    Replays a recording, optionally keeping its recorded pacing.

    Usage:
        replay = SampleReplay("recordings/bridge_20260101_120000.jsonl")
        for entry in replay.replay(speed=2.0):
            emit(entry.sample)

        replay.start_realtime_replay(callback=lambda e: emit(e.sample))
        replay.stop()
    """

    def __init__(self, log_file: Union[str, Path]):
        self.recording = load_recording(log_file)
        self._stop_flag = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def sample_count(self) -> int:
        return len(self.recording.samples)

    @property
    def events(self) -> List[RecordedEvent]:
        return list(self.recording.events)

    def get_duration_seconds(self) -> float:
        return self.recording.duration_seconds

    def replay(
        self,
        realtime: bool = True,
        speed: float = 1.0,
        start: int = 0,
        end: Optional[int] = None
    ) -> Iterator[RecordedSample]:
        """
        Yield recorded samples in order.

        Args:
            realtime: Wait until each sample's offset (scaled by speed) is due
            speed: Playback speed multiplier; 2.0 plays twice as fast
            start: First sample index
            end: Stop before this index (None = to the end)
        """
        entries = self.recording.samples[start:end]
        if not realtime or not entries:
            yield from entries
            return

        origin = entries[0].t
        started = time.perf_counter()
        for entry in entries:
            due = started + (entry.t - origin) / speed
            wait_s = due - time.perf_counter()
            if wait_s > 0 and self._stop_flag.wait(wait_s):
                return
            if self._stop_flag.is_set():
                return
            yield entry

    def start_realtime_replay(
        self,
        callback: Callable[[RecordedSample], None],
        speed: float = 1.0,
        on_complete: Optional[Callable[[], None]] = None
    ) -> None:
        """Replay paced samples on a background thread."""
        self._stop_flag.clear()

        def _run() -> None:
            try:
                for entry in self.replay(realtime=True, speed=speed):
                    callback(entry)
            finally:
                if on_complete:
                    on_complete()

        self._thread = threading.Thread(target=_run, name="replay", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop a background replay."""
        self._stop_flag.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None


def validate_recording(log_file: Union[str, Path]) -> Dict[str, Any]:
    """
    Check a recording before replaying it.

    Errors make the recording unusable; warnings flag recordings that were cut
    short or written by another schema version.

    Returns:
        {"valid": bool, "errors": [...], "warnings": [...], "stats": {...}}
    """
    errors: List[str] = []
    warnings: List[str] = []
    stats: Dict[str, Any] = {}

    try:
        recording = load_recording(log_file)
    except (OSError, ValueError) as e:
        return {"valid": False, "errors": [str(e)], "warnings": warnings, "stats": stats}

    if recording.schema is None:
        errors.append("Missing header")
    elif recording.schema != RECORDING_SCHEMA:
        warnings.append(f"Unknown schema: {recording.schema}")

    if recording.footer is None:
        warnings.append("Missing footer (recording may be incomplete)")
    elif recording.footer.get("samples") != len(recording.samples):
        warnings.append(
            f"Footer reports {recording.footer.get('samples')} samples, "
            f"found {len(recording.samples)}"
        )

    offsets = [entry.t for entry in recording.samples]
    if any(b < a for a, b in zip(offsets, offsets[1:])):
        errors.append("Sample offsets go backwards")

    stats = {
        "total_samples": len(recording.samples),
        "duration_seconds": recording.duration_seconds,
        "events_count": len(recording.events),
    }
    return {"valid": not errors, "errors": errors, "warnings": warnings, "stats": stats}
