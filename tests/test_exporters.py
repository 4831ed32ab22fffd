from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path

import pytest

from telemctl.core.csv_player import CSVPlayer
from telemctl.core.errors import ExportError
from telemctl.core.model import Dataset, DecoderMethod, FrameDetection, Group, Project
from telemctl.core.service import PipelineService
from telemctl.core.settings import Settings
from telemctl.exporters.console import ConsoleExport
from telemctl.exporters.csv_export import TIMESTAMP_COLUMN, CSVExport, header_for


def _project() -> Project:
    return Project(
        title="Bench",
        decoder=DecoderMethod.PLAIN_TEXT,
        frame_detection=FrameDetection.END_DELIMITER_ONLY,
        frame_start=b"",
        frame_end=b"\n",
        hex_delimiters=False,
        groups=(Group(title="G", widget="", datasets=(Dataset(title="Temp", index=0), Dataset(title="RH", index=2))),),
    )


def test_console_export_text_and_hex() -> None:
    stream = io.StringIO()

    def clock() -> datetime:
        return datetime(2024, 1, 1, 9, 30, 5, 123456)

    ConsoleExport(stream, clock=clock)(b"21.5,40\r\n")
    ConsoleExport(stream, hex_view=True, timestamps=False)(b"\x01\xff")

    assert stream.getvalue().splitlines() == ["09:30:05.123 -> 21.5,40", "01 FF"]


def test_csv_header_fills_unnamed_positions() -> None:
    assert header_for(_project()) == [TIMESTAMP_COLUMN, "Temp", "Field 1", "RH"]


def test_csv_export_can_be_replayed(tmp_path: Path) -> None:
    path = tmp_path / "session.csv"
    service = PipelineService(_project(), settings=Settings())
    with CSVExport(path, service.project) as exporter:
        service.subscribe(exporter)
        service.process_chunk(b"21.5,x,40\n21.7,y,41,extra\n")
        assert exporter.rows_written == 2

    player = CSVPlayer.open(path, timestamp_column=TIMESTAMP_COLUMN)
    assert player.row_count == 2
    assert player.fields_for(1) == ("21.7", "y", "41")
    assert player.delay_before(1) >= 0.0


def test_csv_export_unwritable_target(tmp_path: Path) -> None:
    with pytest.raises(ExportError):
        CSVExport(tmp_path / "missing" / "out.csv", _project())


def test_quick_plot_csv_export_writes_every_field() -> None:
    stream = io.StringIO()
    service = PipelineService.for_quick_plot(settings=Settings())
    exporter = CSVExport(stream, None)
    service.subscribe(exporter)
    service.process_chunk(b"1,2,3\n4,5,6\n")

    lines = stream.getvalue().splitlines()
    assert lines[0] == "RX Date/Time,Channel 1,Channel 2,Channel 3"
    assert lines[2].endswith(",4,5,6")
    assert exporter.rows_written == 2


def test_csv_export_write_failure_is_export_error() -> None:
    class FullDisk(io.StringIO):
        def write(self, text: str) -> int:
            raise OSError("No space left on device")

    service = PipelineService.for_quick_plot(settings=Settings())
    frame = service.process_chunk(b"1,2\n")[0]
    with pytest.raises(ExportError, match="No space left"):
        CSVExport(FullDisk(), None)(frame)
