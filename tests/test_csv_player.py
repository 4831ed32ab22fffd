from __future__ import annotations

import asyncio
import time
from datetime import datetime
from pathlib import Path

import pytest

from telemctl.core.csv_player import CSVPlayer, parse_timestamp
from telemctl.core.errors import InsufficientDataError, ReplayError


def _write_csv(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


def _collect(player: CSVPlayer) -> list[tuple[float, tuple[str, ...]]]:
    async def _play() -> list[tuple[float, tuple[str, ...]]]:
        emitted = []
        async for row in player.play():
            emitted.append((time.monotonic(), row.fields))
        return emitted

    return asyncio.run(_play())


def test_fixed_interval_spacing(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "two.csv", "a,b\n1,2\n3,4\n")
    player = CSVPlayer.open(path, interval_ms=100)

    emitted = _collect(player)
    assert [fields for _, fields in emitted] == [("1", "2"), ("3", "4")]
    assert emitted[1][0] - emitted[0][0] >= 0.1
    assert player.progress == 1.0


def test_single_row_file_rejected(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "one.csv", "a,b\n1,2\n")
    with pytest.raises(InsufficientDataError, match="at least two frames"):
        CSVPlayer.open(path, interval_ms=100)


def test_empty_file_rejected(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "empty.csv", "")
    with pytest.raises(ReplayError, match="does not contain any data"):
        CSVPlayer.open(path, interval_ms=100)


def test_pacing_mode_required(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "rows.csv", "a\n1\n2\n")
    with pytest.raises(ReplayError, match="interval"):
        CSVPlayer.open(path)


def test_unknown_timestamp_column_rejected(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "rows.csv", "time,a\n0,1\n1,2\n")
    with pytest.raises(ReplayError, match="Invalid date/time column"):
        CSVPlayer.open(path, timestamp_column="stamp")


def test_unparsable_timestamp_rejected(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "rows.csv", "time,a\nyesterday,1\ntoday,2\n")
    with pytest.raises(ReplayError, match="cannot parse"):
        CSVPlayer.open(path, timestamp_column="time")


def test_short_first_row_reports_missing_timestamp(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "rows.csv", "a,time\n1\n2,2024-01-01 00:00:01\n")
    with pytest.raises(ReplayError, match="cannot parse ''"):
        CSVPlayer.open(path, timestamp_column="time")


def test_timestamp_deltas_are_clamped(tmp_path: Path) -> None:
    path = _write_csv(
        tmp_path / "stamped.csv",
        "RX Date/Time,v\n"
        "2024-01-01 00:00:00.000,1\n"
        "2024-01-01 00:00:00.250,2\n"
        "2024-01-01 00:00:00.100,3\n"
        "2024-01-01 01:00:00.000,4\n",
    )
    player = CSVPlayer.open(path, timestamp_column="RX Date/Time", max_delay_ms=500)

    assert player.field_names == ["v"]
    assert player.fields_for(0) == ("1",)
    assert [player.delay_before(row) for row in range(4)] == [0.0, 250.0, 0.0, 500.0]


def test_seek_and_stop(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "rows.csv", "v\n1\n2\n3\n4\n")
    player = CSVPlayer.open(path, interval_ms=0)
    player.seek(2)

    assert [fields for _, fields in _collect(player)] == [("3",), ("4",)]
    with pytest.raises(ReplayError):
        player.seek(4)


def test_pause_then_step(tmp_path: Path) -> None:
    path = _write_csv(tmp_path / "rows.csv", "v\n1\n2\n3\n")
    player = CSVPlayer.open(path, interval_ms=10)

    async def _play() -> list[tuple[str, ...]]:
        emitted = []
        async for row in player.play():
            emitted.append(row.fields)
            if row.row == 0:
                player.pause()
                player.next_frame()
            elif row.row == 1:
                player.stop()
        return emitted

    assert asyncio.run(_play()) == [("1",), ("2",)]


def test_parse_timestamp_formats() -> None:
    assert parse_timestamp("2024/01/31 13:45:10::250") == datetime(2024, 1, 31, 13, 45, 10, 250000)
    assert parse_timestamp("12.5") == 12.5
    assert parse_timestamp("31.01.2024", "%d.%m.%Y") == datetime(2024, 1, 31)
    assert parse_timestamp("bogus") is None
