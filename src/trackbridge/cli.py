"""
Command line entry point: ``trackbridge`` / ``python -m trackbridge``.
"""
from __future__ import annotations

import argparse
import sys
import time

from .config import DEFAULT_CONFIG_FILE, BridgeConfig, ConfigError, load_config, parse_endpoint
from .console import SampleConsole, format_status
from .logger import SampleLogger
from .metrics import MetricsExporter
from .pipeline import BridgePipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trackbridge",
        description="Bridge head-tracking UDP poses to DSU motion data",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help=f"Settings file (default {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--opentrack", default=None, help="Tracking bind address as host:port (overrides config)")
    parser.add_argument("--dsu", default=None, help="DSU bind address as host:port (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Disable DSU and print raw tracking samples")
    parser.add_argument("--absolute", action="store_true", help="Send absolute values instead of rates")
    parser.add_argument("--record", default=None, metavar="DIR", help="Record raw samples to DIR (JSONL)")
    parser.add_argument("--status-interval", type=float, default=5.0, help="Seconds between status lines (0 = off)")
    parser.add_argument("--metrics-file", default=None, help="Write final metrics JSON here on exit")
    return parser


def resolve_config(args: argparse.Namespace) -> BridgeConfig:
    """Load the settings file and apply command line overrides."""
    config = load_config(args.config, validate=False)

    try:
        if args.opentrack:
            config.tracking_host, config.tracking_port = parse_endpoint(args.opentrack)
        if args.dsu:
            config.dsu_host, config.dsu_port = parse_endpoint(args.dsu)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    if args.debug:
        config.debug = True
    if args.absolute:
        config.relative_transform = False
    return config.validate()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(args)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    if config.gravity_adjust:
        print("warning: DivideByGravity is not supported and will be ignored", file=sys.stderr)

    recorder = SampleLogger(log_dir=args.record) if args.record else None
    pipeline = BridgePipeline(config, recorder=recorder)
    console = SampleConsole()
    if config.debug:
        pipeline.set_sample_callback(console.print_sample)
    pipeline.set_error_callback(lambda e: print(f"error: {e}", file=sys.stderr))

    try:
        pipeline.start()
    except OSError as e:
        print(f"error: failed to bind: {e}", file=sys.stderr)
        return 1

    if recorder:
        path = recorder.start_recording(metadata={
            "tracking": f"{config.tracking_host}:{config.tracking_port}",
            "relative_transform": pipeline.transform.relative,
        })
        print(f"Recording samples to {path}")
    if pipeline.server:
        print(f"DSUServer listening for clients on ip '{config.dsu_host}' and port '{config.dsu_port}'")
    print(f"OpenTrack receiver listening on ip '{config.tracking_host}' and port '{config.tracking_port}'")
    print("Press Ctrl+C to stop...")

    try:
        while True:
            time.sleep(0.5)
            if args.status_interval > 0 and not config.debug:
                console.print_status(pipeline.get_status()["metrics"], interval=args.status_interval)
    except KeyboardInterrupt:
        pass

    result = pipeline.stop()
    print(f"Stopped: {format_status(result['metrics'])}")
    if args.metrics_file:
        MetricsExporter.to_json(result["metrics"], args.metrics_file)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
