"""
Head-tracking to DSU motion bridge.

Modules:
- protocol: DSU header codec (validation, CRC, header building)
- packets: Version / Port / PadData response builders
- sessions: DSU client session registry
- dispatcher: Request routing
- transform: Pose samples and the absolute-to-rate transform
- receiver: UDP listeners (tracking source, DSU server)
- pipeline: Complete bridge pipeline
- config: Settings file and endpoint parsing
- metrics: Runtime metrics collection and export
- logger: Raw sample recording
- replay: Recording playback
- console: Console output
- emitter: Test tracking source
"""

from .protocol import (
    MessageType, Header, DecodedFrame, FrameError,
    decode_frame, parse_frame, build_header, write_crc, build_frame, build_request,
    MAX_PROTOCOL_VERSION
)
from .packets import (
    ControllerInfo, ControllerData,
    build_version_response, build_port_response, build_pad_data_response
)
from .sessions import ClientSession, SessionRegistry
from .dispatcher import MessageDispatcher
from .transform import PoseSample, PoseTransform, wrap_angle_delta
from .receiver import UDPListener, TrackingReceiver, DSUServer
from .pipeline import BridgePipeline
from .config import BridgeConfig, ConfigError, load_config, parse_endpoint
from .metrics import MetricsCollector, MetricsExporter
from .logger import SampleLogger, list_recordings
from .replay import SampleReplay, RecordedSample, load_recording, validate_recording
from .console import SampleConsole
from .emitter import TrackingEmitter, SyntheticHeadMotion

__all__ = [
    # Protocol
    "MessageType",
    "Header",
    "DecodedFrame",
    "FrameError",
    "decode_frame",
    "parse_frame",
    "build_header",
    "write_crc",
    "build_frame",
    "build_request",
    "MAX_PROTOCOL_VERSION",
    # Packets
    "ControllerInfo",
    "ControllerData",
    "build_version_response",
    "build_port_response",
    "build_pad_data_response",
    # Sessions / dispatch
    "ClientSession",
    "SessionRegistry",
    "MessageDispatcher",
    # Transform
    "PoseSample",
    "PoseTransform",
    "wrap_angle_delta",
    # Transport
    "UDPListener",
    "TrackingReceiver",
    "DSUServer",
    # Pipeline
    "BridgePipeline",
    # Config
    "BridgeConfig",
    "ConfigError",
    "load_config",
    "parse_endpoint",
    # Metrics
    "MetricsCollector",
    "MetricsExporter",
    # Recording
    "SampleLogger",
    "list_recordings",
    "SampleReplay",
    "RecordedSample",
    "load_recording",
    "validate_recording",
    # Tools
    "SampleConsole",
    "TrackingEmitter",
    "SyntheticHeadMotion",
]
