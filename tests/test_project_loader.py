from __future__ import annotations

from pathlib import Path

import pytest

from telemctl.core.errors import ProjectLoadError, ProjectValidationError
from telemctl.core.model import (
    BleConfig,
    DecoderMethod,
    FrameDetection,
    NetworkConfig,
    SocketType,
    UartConfig,
)
from telemctl.core.project_loader import load_project, loads_project, transport_config_from_dict


def _write_project(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


def test_load_yaml_project(tmp_path: Path) -> None:
    path = _write_project(
        tmp_path / "weather.yaml",
        """
title: Weather station
decoder: plain_text
frameDetection: start_and_end_delimiter
frameStart: "/*"
frameEnd: "*/"
separator: ";"
groups:
  - title: Ambient
    datasets:
      - {title: Temperature, index: 0, units: C, alarm: 40}
      - {title: Humidity, index: 1, units: "%"}
""",
    )
    project = load_project(path)
    assert project.title == "Weather station"
    assert project.frame_detection is FrameDetection.START_AND_END_DELIMITER
    assert project.frame_start == b"/*"
    assert project.frame_end == b"*/"
    assert project.separator == ";"
    assert project.field_count == 2
    assert project.datasets[0].alarm == 40.0


def test_legacy_integer_codes_and_hex_delimiters() -> None:
    project = loads_project(
        """
{
  "title": "Binary",
  "decoder": 1,
  "frameDetection": 1,
  "frameStart": "AA 55",
  "frameEnd": "0x0d0a",
  "hexadecimalDelimiters": true,
  "groups": []
}
"""
    )
    assert project.decoder is DecoderMethod.HEXADECIMAL
    assert project.frame_detection is FrameDetection.START_AND_END_DELIMITER
    assert project.frame_start == b"\xaa\x55"
    assert project.frame_end == b"\r\n"
    assert project.max_index == -1


def test_bad_hex_delimiter_rejected() -> None:
    with pytest.raises(ProjectValidationError, match="frameEnd"):
        loads_project('{"title": "T", "frameEnd": "0g", "hexadecimalDelimiters": true, "groups": []}')


def test_missing_required_delimiter_rejected() -> None:
    with pytest.raises(ProjectValidationError, match="frameStart"):
        loads_project('{"title": "T", "frameDetection": "start_delimiter_only", "groups": []}')


def test_negative_index_rejected() -> None:
    with pytest.raises(ProjectValidationError):
        loads_project(
            '{"title": "T", "frameEnd": "\\n", "groups": [{"title": "G", "datasets": [{"title": "D", "index": -1}]}]}'
        )


def test_duplicate_yaml_keys_rejected() -> None:
    with pytest.raises(ProjectValidationError, match="Duplicate key"):
        loads_project("title: A\ntitle: B\ngroups: []\n")


def test_on_stays_a_string_in_yaml() -> None:
    project = loads_project(
        "title: on\nframeEnd: ';'\ngroups:\n  - title: G\n    datasets:\n      - {title: yes, index: 0}\n"
    )
    assert project.title == "on"
    assert project.datasets[0].title == "yes"


def test_missing_project_file(tmp_path: Path) -> None:
    with pytest.raises(ProjectLoadError):
        load_project(tmp_path / "missing.json")


def test_transport_variants() -> None:
    uart = transport_config_from_dict({"kind": "uart", "port": "/dev/ttyUSB0", "baud_rate": 115200})
    assert isinstance(uart, UartConfig)
    assert uart.baud_rate == 115200

    network = transport_config_from_dict(
        {"kind": "network", "remote_address": "239.0.0.1", "remote_port": 5000, "socket_type": "udp", "multicast": True}
    )
    assert isinstance(network, NetworkConfig)
    assert network.socket_type is SocketType.UDP

    ble = transport_config_from_dict(
        {"kind": "ble", "device_id": "AA:BB:CC:DD:EE:FF", "service_id": "180D", "characteristic_id": "2A37"}
    )
    assert isinstance(ble, BleConfig)
    assert ble.service_id == "180d"


def test_multicast_over_tcp_rejected() -> None:
    with pytest.raises(ProjectValidationError, match="UDP"):
        transport_config_from_dict(
            {"kind": "network", "remote_address": "239.0.0.1", "remote_port": 5000, "multicast": True}
        )
