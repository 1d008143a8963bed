from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from trackbridge.cli import build_parser, main, resolve_config
from trackbridge.config import ConfigError, config_from_mapping, load_config, parse_endpoint


SETTINGS = {
    "OpenTrackIp": "127.0.0.1",
    "OpenTrackPort": 4242,
    "DSUServerIp": "0.0.0.0",
    "DSUServerPort": 26760,
}


def _write(tmp_path: Path, settings: object) -> Path:
    path = tmp_path / "appsettings.json"
    path.write_text(json.dumps(settings), encoding="utf-8")
    return path


def test_load_config(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, SETTINGS))

    assert config.tracking_host == "127.0.0.1"
    assert config.tracking_port == 4242
    assert config.dsu_host == "0.0.0.0"
    assert config.dsu_port == 26760
    assert config.debug is False
    assert config.relative_transform is True
    assert config.gravity_adjust is False
    assert config.session_timeout == 5.0


def test_repository_settings_file_is_valid() -> None:
    config = load_config(ROOT / "appsettings.json")
    assert config.dsu_port == 26760


def test_missing_dsu_address_is_fatal() -> None:
    settings = {"OpenTrackIp": "127.0.0.1", "OpenTrackPort": 4242}

    with pytest.raises(ConfigError, match="DSUServerIp"):
        config_from_mapping(settings)


def test_debug_mode_does_not_need_dsu() -> None:
    settings = {"OpenTrackIp": "127.0.0.1", "OpenTrackPort": 4242, "DebugOpenTrack": "true"}

    config = config_from_mapping(settings)

    assert config.debug is True
    assert config.dsu_host is None


@pytest.mark.parametrize("key", ["OpenTrackIp", "OpenTrackPort"])
def test_tracking_address_is_required(key: str) -> None:
    settings = dict(SETTINGS)
    del settings[key]

    with pytest.raises(ConfigError, match=key):
        config_from_mapping(settings)


def test_boolean_and_numeric_options() -> None:
    settings = dict(
        SETTINGS,
        RelativeTransform=False,
        DivideByGravity="True",
        SessionTimeoutSeconds=2.5,
        DSUServerPort="26761",
    )

    config = config_from_mapping(settings)

    assert config.relative_transform is False
    assert config.gravity_adjust is True
    assert config.session_timeout == 2.5
    assert config.dsu_port == 26761


@pytest.mark.parametrize(
    "override",
    [
        {"OpenTrackPort": 70000},
        {"DSUServerPort": "not-a-port"},
        {"DebugOpenTrack": "maybe"},
        {"SessionTimeoutSeconds": 0},
        {"DSUServerIp": ""},
    ],
)
def test_invalid_values(override: dict) -> None:
    with pytest.raises(ConfigError):
        config_from_mapping(dict(SETTINGS, **override))


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.json")


def test_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "appsettings.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigError, match="invalid JSON"):
        load_config(path)


def test_non_object_json(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, [1, 2, 3]))


@pytest.mark.parametrize(
    "value, expected",
    [
        ("127.0.0.1:4242", ("127.0.0.1", 4242)),
        ("localhost:26760", ("localhost", 26760)),
        ("[::1]:9000", ("::1", 9000)),
        (" 0.0.0.0:1 ", ("0.0.0.0", 1)),
    ],
)
def test_parse_endpoint(value: str, expected: tuple[str, int]) -> None:
    assert parse_endpoint(value) == expected


@pytest.mark.parametrize("value", ["", "127.0.0.1", ":4242", "host:0", "host:99999", "host:abc", "[::1]9000"])
def test_parse_endpoint_rejects(value: str) -> None:
    with pytest.raises(ValueError):
        parse_endpoint(value)


def test_command_line_overrides(tmp_path: Path) -> None:
    path = _write(tmp_path, {"OpenTrackIp": "127.0.0.1", "OpenTrackPort": 4242})
    args = build_parser().parse_args([
        "--config", str(path),
        "--dsu", "127.0.0.1:26761",
        "--opentrack", "0.0.0.0:5000",
        "--absolute",
    ])

    config = resolve_config(args)

    assert (config.dsu_host, config.dsu_port) == ("127.0.0.1", 26761)
    assert (config.tracking_host, config.tracking_port) == ("0.0.0.0", 5000)
    assert config.relative_transform is False


def test_bad_override_is_config_error(tmp_path: Path) -> None:
    args = build_parser().parse_args(["--config", str(_write(tmp_path, SETTINGS)), "--dsu", "nope"])

    with pytest.raises(ConfigError):
        resolve_config(args)


def test_main_exits_nonzero_on_bad_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["--config", str(tmp_path / "missing.json")])

    assert code == 2
    assert "configuration file not found" in capsys.readouterr().err


def test_main_reports_missing_dsu_address(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write(tmp_path, {"OpenTrackIp": "127.0.0.1", "OpenTrackPort": 4242})

    assert main(["--config", str(path)]) == 2
    assert "DSUServerIp configuration is not found or invalid" in capsys.readouterr().err
