from __future__ import annotations

import socket
import sys
import threading
import time
from pathlib import Path
from typing import Callable, Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from trackbridge.config import BridgeConfig
from trackbridge.logger import SampleLogger
from trackbridge.packets import CONTROLLER_INFO_SIZE, ControllerData
from trackbridge.pipeline import BridgePipeline
from trackbridge.protocol import MAGIC_SERVER, MessageType, build_request, parse_frame
from trackbridge.receiver import encode_tracking_datagram
from trackbridge.replay import load_recording
from trackbridge.transform import PoseSample


def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _make_config(**overrides: object) -> BridgeConfig:
    config = BridgeConfig(
        tracking_host="127.0.0.1",
        tracking_port=0,
        dsu_host="127.0.0.1",
        dsu_port=0,
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config.validate()


@pytest.fixture()
def udp_socket() -> Iterator[socket.socket]:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    try:
        yield sock
    finally:
        sock.close()


@pytest.fixture()
def bridge() -> Iterator[BridgePipeline]:
    pipeline = BridgePipeline(_make_config(), poll_interval=0.05)
    pipeline.start()
    try:
        yield pipeline
    finally:
        pipeline.stop()


def _subscribe(pipeline: BridgePipeline, client: socket.socket) -> None:
    assert pipeline.server is not None
    request = build_request(MessageType.PAD_DATA, client_id=0x42, payload=bytes(8))
    client.sendto(request, pipeline.server.address)
    assert _wait_for(lambda: len(pipeline.server.registry) == 1)


def _receive_pad_data(client: socket.socket) -> ControllerData:
    data, _addr = client.recvfrom(1024)
    frame = parse_frame(data, magic=MAGIC_SERVER)
    assert frame is not None
    assert frame.message_type == MessageType.PAD_DATA
    return ControllerData.unpack_from(frame.payload, CONTROLLER_INFO_SIZE)


def test_version_request_over_udp(bridge: BridgePipeline, udp_socket: socket.socket) -> None:
    udp_socket.sendto(build_request(MessageType.VERSION, client_id=1), bridge.server.address)

    data, _addr = udp_socket.recvfrom(1024)

    frame = parse_frame(data, magic=MAGIC_SERVER)
    assert frame is not None
    assert frame.message_type == MessageType.VERSION
    assert frame.sender_id == bridge.server.server_id


def test_subscribed_client_receives_pad_data(bridge: BridgePipeline, udp_socket: socket.socket) -> None:
    _subscribe(bridge, udp_socket)

    tracker = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        for yaw in (10.0, 11.0, 12.0):
            tracker.sendto(encode_tracking_datagram(PoseSample(x=2.0, yaw=yaw)), bridge.receiver.address)
        reports = [_receive_pad_data(udp_socket) for _ in range(3)]
    finally:
        tracker.close()

    assert [r.packet_number for r in reports] == [0, 1, 2]
    # First sample: no previous time, so the rate is the raw value over one second
    assert reports[0].gyro[1] == pytest.approx(10.0)
    assert reports[0].accel[0] == pytest.approx(2.0)
    assert all(r.motion_timestamp > 0 for r in reports)

    assert _wait_for(lambda: bridge.samples_processed == 3)
    status = bridge.get_status()
    assert status["metrics"]["broadcast"]["packets_sent"] == 3
    assert status["server"]["sessions"]["active_sessions"] == 1


def test_no_pad_data_without_subscription(bridge: BridgePipeline, udp_socket: socket.socket) -> None:
    udp_socket.sendto(build_request(MessageType.PORTS, client_id=1), bridge.server.address)
    data, _addr = udp_socket.recvfrom(1024)
    assert parse_frame(data, magic=MAGIC_SERVER).message_type == MessageType.PORTS

    bridge.submit(PoseSample(yaw=5.0))
    assert _wait_for(lambda: bridge.samples_processed == 1)

    udp_socket.settimeout(0.2)
    with pytest.raises(socket.timeout):
        udp_socket.recvfrom(1024)


def test_absolute_mode_forwards_raw_values(udp_socket: socket.socket) -> None:
    pipeline = BridgePipeline(_make_config(relative_transform=False), poll_interval=0.05)
    pipeline.start()
    try:
        _subscribe(pipeline, udp_socket)
        pipeline.submit(PoseSample(yaw=-170.0))
        pipeline.submit(PoseSample(yaw=170.0))
        first = _receive_pad_data(udp_socket)
        second = _receive_pad_data(udp_socket)
    finally:
        pipeline.stop()

    assert first.gyro[1] == pytest.approx(-170.0)
    assert second.gyro[1] == pytest.approx(170.0)


def test_debug_mode_prints_raw_samples(udp_socket: socket.socket) -> None:
    pipeline = BridgePipeline(_make_config(debug=True, dsu_host=None, dsu_port=None), poll_interval=0.05)
    received: list[PoseSample] = []
    got_sample = threading.Event()

    def on_sample(sample: PoseSample) -> None:
        received.append(sample)
        got_sample.set()

    pipeline.set_sample_callback(on_sample)
    pipeline.start()
    try:
        assert pipeline.server is None
        sample = PoseSample(x=1.0, y=2.0, z=3.0, yaw=4.0, pitch=5.0, roll=6.0)
        udp_socket.sendto(b"\x00" * 10, pipeline.receiver.address)
        udp_socket.sendto(encode_tracking_datagram(sample), pipeline.receiver.address)
        assert got_sample.wait(timeout=2.0)
    finally:
        result = pipeline.stop()

    assert received == [sample]
    assert pipeline.receiver.stats["dropped_undersized"] == 1
    assert result["metrics"]["drops"]["undersized_sample"] == 1


def test_socket_error_zeroes_transform_memory(bridge: BridgePipeline) -> None:
    bridge.submit(PoseSample(yaw=45.0))
    assert bridge.transform.last_values[3] == 45.0

    bridge.receiver._on_socket_error(ConnectionResetError("port unreachable"))

    assert not bridge.transform.last_values.any()
    assert bridge.transform.last_time is not None
    assert bridge.metrics.get_summary()["drops"]["socket_error"] == 1


def test_recorder_captures_raw_samples(tmp_path: Path) -> None:
    recorder = SampleLogger(log_dir=str(tmp_path))
    pipeline = BridgePipeline(_make_config(), recorder=recorder, poll_interval=0.05)
    log_file = recorder.start_recording(session_name="bridge")
    pipeline.start()
    try:
        pipeline.submit(PoseSample(yaw=1.0))
        pipeline.receiver._on_socket_error(ConnectionResetError("port unreachable"))
        pipeline.submit(PoseSample(yaw=2.0))
        assert _wait_for(lambda: pipeline.samples_processed == 2)
    finally:
        result = pipeline.stop()

    assert result["samples_processed"] == 2
    assert result["log_metadata"]["total_samples"] == 2
    assert not recorder.is_recording

    recording = load_recording(log_file)
    assert [entry.sample.yaw for entry in recording.samples] == [1.0, 2.0]
    assert [event.name for event in recording.events] == ["transform_zeroed"]


def test_bind_failure_raises(udp_socket: socket.socket) -> None:
    _host, taken_port = udp_socket.getsockname()
    pipeline = BridgePipeline(_make_config(dsu_port=taken_port), poll_interval=0.05)

    # Some platforms let SO_REUSEADDR share the port, so a successful start is allowed
    try:
        pipeline.start()
    except OSError:
        assert not pipeline.is_running
    else:
        pipeline.stop()
