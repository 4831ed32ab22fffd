from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from telemctl.api import Client, DataFrame, ScriptValidationError, SessionError, Settings


class FakeDriver:
    def __init__(self) -> None:
        self.on_reconnect = None
        self.is_open = False
        self.written: list[bytes] = []

    async def open(self) -> None:
        self.is_open = True

    async def read(self):
        yield b"$21.5,48*"
        yield b"$21.6,47*"

    async def write(self, data: bytes) -> int:
        self.written.append(data)
        return len(data)

    async def close(self) -> None:
        self.is_open = False


def _project_file(tmp_path: Path) -> Path:
    path = tmp_path / "station.json"
    path.write_text(
        """
{
  "title": "Station",
  "frameDetection": "start_and_end_delimiter",
  "frameStart": "$",
  "frameEnd": "*",
  "groups": [
    {"title": "Air", "datasets": [{"title": "Temp", "index": 0}, {"title": "RH", "index": 1}]}
  ]
}
""",
        encoding="utf-8",
    )
    return path


def test_public_client_feed(tmp_path: Path) -> None:
    client = Client(_project_file(tmp_path), settings=Settings())
    frames = client.feed(b"$1,2*$3,")
    assert [frame.fields for frame in frames] == [("1", "2")]
    assert client.stats.frames_published == 1


def test_public_client_connect_with_driver(tmp_path: Path) -> None:
    client = Client(_project_file(tmp_path), settings=Settings())
    received: list[DataFrame] = []
    client.subscribe(received.append)

    asyncio.run(
        client.connect(
            {"kind": "network", "remote_address": "127.0.0.1", "remote_port": 7000},
            driver=FakeDriver(),
        )
    )

    assert [frame.values[0].value for frame in received] == ["21.5", "21.6"]
    assert not client.is_active


def test_public_client_send_requires_session(tmp_path: Path) -> None:
    client = Client(_project_file(tmp_path), settings=Settings())
    with pytest.raises(SessionError):
        asyncio.run(client.send(b"reset\n"))


def test_public_client_replay(tmp_path: Path) -> None:
    recording = tmp_path / "rec.csv"
    recording.write_text("Temp,RH\n20.0,50\n20.5,49\n21.0,48\n", encoding="utf-8")
    client = Client(_project_file(tmp_path), settings=Settings())
    received: list[DataFrame] = []
    client.subscribe(received.append)

    asyncio.run(client.replay(recording, interval_ms=0, max_frames=2))
    assert len(received) == 2


def test_public_client_validate_script(tmp_path: Path) -> None:
    client = Client(_project_file(tmp_path), settings=Settings())
    script = client.validate_script("def parse(frame):\n    return frame.split('|')\n", sample="1|2")
    assert script.parse(b"3|4") == ["3", "4"]
    with pytest.raises(ScriptValidationError):
        client.validate_script("import os\n")
