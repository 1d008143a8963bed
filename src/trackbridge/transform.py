"""
Pose transform for bridging absolute head-tracking samples to motion rates.

The tracking source reports an absolute pose (position and yaw/pitch/roll in
degrees). DSU consumers expect gyro-like rates, so each sample is turned into
the per-second change since the previous sample, taking the shortest way
around the circle for the angular channels.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np


CHANNELS = ("x", "y", "z", "yaw", "pitch", "roll")
ANGULAR = slice(3, 6)

HALF_TURN = 180.0
FULL_TURN = 360.0

# Used when no previous sample time exists
DEFAULT_ELAPSED_SECONDS = 1.0
# Floor for elapsed time when the clock did not advance between samples
MIN_ELAPSED_SECONDS = 1e-6


@dataclass(frozen=True)
class PoseSample:
    """Six-axis pose: position x/y/z and orientation yaw/pitch/roll."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    @classmethod
    def from_values(cls, values: Sequence[float]) -> "PoseSample":
        if len(values) != len(CHANNELS):
            raise ValueError(f"expected {len(CHANNELS)} values, got {len(values)}")
        return cls(*(float(v) for v in values))

    def as_array(self) -> np.ndarray:
        return np.array(
            [self.x, self.y, self.z, self.yaw, self.pitch, self.roll],
            dtype=np.float64,
        )

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in CHANNELS}

    @property
    def is_zero(self) -> bool:
        """True when every channel is exactly 0.0 (the tracker's stop marker)."""
        return not np.any(self.as_array())


ZERO_SAMPLE = PoseSample()


def wrap_angle_delta(diff: np.ndarray) -> np.ndarray:
    """
    Map angular differences onto the shortest signed arc.

    Any |diff| > 180 is shifted by a full turn towards zero, e.g. a raw
    difference of -358 becomes +2.
    """
    diff = np.asarray(diff, dtype=np.float64).copy()
    over = np.abs(diff) > HALF_TURN
    diff[over] -= np.copysign(FULL_TURN, diff[over])
    return diff


class PoseTransform:
    """
    Stateful absolute-to-rate transform.

    Usage:
        transform = PoseTransform()
        rate = transform.apply(PoseSample(yaw=10.0))

    In absolute mode (relative=False) samples are forwarded unchanged.
    """

    def __init__(
        self,
        relative: bool = True,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            relative: Emit per-second rates (True) or pass samples through
            clock: Monotonic time source in seconds (default: time.monotonic)
        """
        self.relative = relative
        self._clock = clock or time.monotonic
        self._last_values = np.zeros(len(CHANNELS), dtype=np.float64)
        self._last_time: Optional[float] = None

    @property
    def last_values(self) -> np.ndarray:
        return self._last_values.copy()

    @property
    def last_time(self) -> Optional[float]:
        return self._last_time

    def reset(self) -> None:
        """Forget the previous sample and its time."""
        self._last_values[:] = 0.0
        self._last_time = None

    def zero_memory(self) -> None:
        """Zero the previous sample values but keep its time."""
        self._last_values[:] = 0.0

    def apply(self, sample: PoseSample, now: Optional[float] = None) -> PoseSample:
        """
        Transform one absolute sample.

        Args:
            sample: Absolute reading from the tracking source
            now: Sample time in seconds (default: the transform's clock)

        Returns:
            The rate sample, the zero sample for a stop marker, or the input
            itself in absolute mode
        """
        if not self.relative:
            return sample

        if sample.is_zero:
            self.reset()
            return ZERO_SAMPLE

        if now is None:
            now = self._clock()

        current = sample.as_array()
        diffs = current - self._last_values
        diffs[ANGULAR] = wrap_angle_delta(diffs[ANGULAR])

        if self._last_time is None:
            elapsed = DEFAULT_ELAPSED_SECONDS
        else:
            elapsed = max(now - self._last_time, MIN_ELAPSED_SECONDS)

        self._last_time = now
        self._last_values = current

        return PoseSample.from_values(diffs / elapsed)
