#!/usr/bin/env python3
"""
Stand-in tracking source that sends pose datagrams over UDP.

Useful for exercising the bridge without a real head tracker: emits either a
synthetic head motion or a recorded session, in the same 48-byte format.
"""
from __future__ import annotations

import argparse
import socket
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import numpy as np

from .config import parse_endpoint
from .receiver import encode_tracking_datagram
from .replay import SampleReplay
from .transform import PoseSample


@dataclass
class SyntheticMotionConfig:
    yaw_amplitude: float = 200.0  # degrees; > 180 crosses the ±180 seam
    pitch_amplitude: float = 20.0
    roll_amplitude: float = 10.0
    position_amplitude: float = 5.0  # centimeters
    period_seconds: float = 4.0
    noise: float = 0.0
    seed: int = 0


class SyntheticHeadMotion:
    """
    Smooth head sway with yaw wrapped into [-180, 180).

    Each call returns the absolute pose at the next time step.
    """

    def __init__(self, config: SyntheticMotionConfig | None = None, rate_hz: float = 60.0):
        self.config = config or SyntheticMotionConfig()
        self.rate_hz = float(rate_hz)
        self._rng = np.random.default_rng(self.config.seed)
        self._step = 0

    def pose_at(self, t: float) -> PoseSample:
        cfg = self.config
        phase = 2.0 * np.pi * t / cfg.period_seconds
        values = np.array([
            cfg.position_amplitude * np.sin(phase),
            cfg.position_amplitude * 0.5 * np.sin(2.0 * phase),
            cfg.position_amplitude * 0.25 * np.cos(phase),
            cfg.yaw_amplitude * np.sin(phase),
            cfg.pitch_amplitude * np.sin(phase + np.pi / 3.0),
            cfg.roll_amplitude * np.sin(phase + np.pi / 2.0),
        ])
        if cfg.noise > 0.0:
            values += self._rng.normal(0.0, cfg.noise, size=values.shape)
        values[3:] = (values[3:] + 180.0) % 360.0 - 180.0
        # An all-zero pose means "stopped" to the bridge
        if not np.any(values):
            values[0] = 1e-9
        return PoseSample.from_values(values)

    def __call__(self) -> PoseSample:
        t = self._step / self.rate_hz
        self._step += 1
        return self.pose_at(t)


def replay_source(replay: SampleReplay, loop: bool = False) -> Callable[[], PoseSample | None]:
    """Sample source that walks a recording; returns None when exhausted."""
    def _entries() -> Iterator[PoseSample]:
        while True:
            for entry in replay.replay(realtime=False):
                yield entry.sample
            if not loop or replay.sample_count == 0:
                return

    iterator = _entries()

    def _next() -> PoseSample | None:
        return next(iterator, None)

    return _next


class TrackingEmitter:
    """
    Sends samples from a source to the bridge's tracking port at a fixed rate.

    The send thread ends by itself once the source returns None or
    max_samples datagrams have gone out.

    Usage:
        emitter = TrackingEmitter(udp_host="127.0.0.1", udp_port=4242,
                                  rate_hz=60.0, source=SyntheticHeadMotion())
        emitter.start()
        emitter.join()
    """

    def __init__(
        self,
        *,
        udp_host: str,
        udp_port: int,
        rate_hz: float,
        source: Callable[[], PoseSample | None],
        max_samples: int | None = None,
    ):
        self.destination = (udp_host, int(udp_port))
        self.period = 1.0 / rate_hz if rate_hz > 0 else 0.0
        self.max_samples = max_samples
        self._source = source

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.sent = 0
        self.send_errors = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("tracking emitter already running")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="tracking-emitter", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop_event.set()
        self.join(timeout)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        family = socket.AF_INET6 if ":" in self.destination[0] else socket.AF_INET
        started = time.perf_counter()
        attempts = 0
        with socket.socket(family, socket.SOCK_DGRAM) as sock:
            while not self._stop_event.is_set():
                if self.max_samples is not None and attempts >= self.max_samples:
                    return
                sample = self._source()
                if sample is None:
                    return

                attempts += 1
                try:
                    sock.sendto(encode_tracking_datagram(sample), self.destination)
                    self.sent += 1
                except OSError:
                    self.send_errors += 1

                # Sends are scheduled from the start time, not from the last send
                wait_s = started + attempts * self.period - time.perf_counter()
                if wait_s > 0 and self._stop_event.wait(wait_s):
                    return


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="trackbridge-emitter", description="Send test tracking datagrams")
    _ = parser.add_argument("--dest", default="127.0.0.1:4242", help="Bridge tracking endpoint as host:port")
    _ = parser.add_argument("--rate", type=float, default=60.0, help="Samples per second (default 60)")
    _ = parser.add_argument("--count", type=int, default=None, help="Stop after this many samples")
    _ = parser.add_argument("--replay", default=None, help="Recording (JSONL) to send instead of synthetic motion")
    _ = parser.add_argument("--loop", action="store_true", help="Repeat the recording")
    _ = parser.add_argument("--noise", type=float, default=0.0, help="Gaussian noise stddev on every channel")
    _ = parser.add_argument("--seed", type=int, default=0, help="RNG seed")
    args = parser.parse_args(argv)

    try:
        host, port = parse_endpoint(args.dest)
    except ValueError as exc:
        parser.error(f"--dest invalid: {exc}")

    if args.replay:
        try:
            source = replay_source(SampleReplay(args.replay), loop=args.loop)
        except (OSError, ValueError) as exc:
            print(f"error: {exc}")
            return 1
    else:
        source = SyntheticHeadMotion(SyntheticMotionConfig(noise=args.noise, seed=args.seed), rate_hz=args.rate)

    emitter = TrackingEmitter(udp_host=host, udp_port=port, rate_hz=args.rate, source=source, max_samples=args.count)
    emitter.start()
    print(f"sending tracking samples to {host}:{port} at {args.rate:g} Hz")
    try:
        emitter.join()
    except KeyboardInterrupt:
        pass
    finally:
        emitter.stop()
    print(f"sent {emitter.sent} samples")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
