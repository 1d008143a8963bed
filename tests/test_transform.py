from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from trackbridge.transform import ZERO_SAMPLE, PoseSample, PoseTransform, wrap_angle_delta


def test_wrap_angle_delta() -> None:
    diffs = np.array([-358.0, 358.0, 180.0, -180.0, 181.0, 10.0])
    wrapped = wrap_angle_delta(diffs)

    np.testing.assert_allclose(wrapped, [2.0, -2.0, 180.0, -180.0, -179.0, 10.0])


def test_yaw_crossing_seam_is_short_arc() -> None:
    transform = PoseTransform()
    transform.apply(PoseSample(yaw=179.0), now=10.0)

    rate = transform.apply(PoseSample(yaw=-179.0), now=11.0)

    assert rate.yaw == pytest.approx(2.0)


def test_position_channels_are_not_wrapped() -> None:
    transform = PoseTransform()
    transform.apply(PoseSample(x=-200.0, yaw=1.0), now=0.0)

    rate = transform.apply(PoseSample(x=200.0, yaw=1.0), now=1.0)

    assert rate.x == pytest.approx(400.0)


def test_first_sample_uses_one_second() -> None:
    transform = PoseTransform()
    sample = PoseSample(x=3.0, y=-1.0, z=0.5, yaw=10.0, pitch=-20.0, roll=5.0)

    rate = transform.apply(sample, now=123.0)

    assert rate == sample


def test_rate_is_divided_by_elapsed_time() -> None:
    transform = PoseTransform()
    transform.apply(PoseSample(yaw=10.0, x=1.0), now=0.0)

    rate = transform.apply(PoseSample(yaw=20.0, x=2.0), now=0.5)

    assert rate.yaw == pytest.approx(20.0)
    assert rate.x == pytest.approx(2.0)
    assert transform.last_time == 0.5


def test_zero_sample_resets_memory() -> None:
    transform = PoseTransform()
    transform.apply(PoseSample(x=5.0, yaw=90.0), now=1.0)

    assert transform.apply(ZERO_SAMPLE, now=2.0) == ZERO_SAMPLE
    assert transform.last_time is None
    assert not transform.last_values.any()

    # Next diff is taken against zero over the default second
    sample = PoseSample(x=3.0, yaw=10.0)
    assert transform.apply(sample, now=50.0) == sample


def test_repeated_timestamp_is_clamped() -> None:
    transform = PoseTransform()
    transform.apply(PoseSample(yaw=1.0), now=5.0)

    rate = transform.apply(PoseSample(yaw=2.0), now=5.0)

    assert np.isfinite(rate.yaw)
    assert rate.yaw == pytest.approx(1e6)


def test_zero_memory_keeps_time() -> None:
    transform = PoseTransform()
    transform.apply(PoseSample(yaw=30.0), now=1.0)

    transform.zero_memory()

    assert transform.last_time == 1.0
    rate = transform.apply(PoseSample(yaw=31.0), now=2.0)
    assert rate.yaw == pytest.approx(31.0)


def test_absolute_mode_passes_through() -> None:
    transform = PoseTransform(relative=False)
    sample = PoseSample(x=1.0, yaw=179.0)

    assert transform.apply(sample) is sample
    assert transform.apply(ZERO_SAMPLE) is ZERO_SAMPLE
    assert transform.last_time is None


def test_default_clock() -> None:
    ticks = iter([10.0, 10.25])
    transform = PoseTransform(clock=lambda: next(ticks))
    transform.apply(PoseSample(pitch=1.0))

    rate = transform.apply(PoseSample(pitch=2.0))

    assert rate.pitch == pytest.approx(4.0)


def test_sample_helpers() -> None:
    sample = PoseSample.from_values([1, 2, 3, 4, 5, 6])

    assert sample.to_dict() == {"x": 1.0, "y": 2.0, "z": 3.0, "yaw": 4.0, "pitch": 5.0, "roll": 6.0}
    assert not sample.is_zero
    assert ZERO_SAMPLE.is_zero
    with pytest.raises(ValueError):
        PoseSample.from_values([1.0, 2.0])
