"""CSV export of published frames, replayable with CSVPlayer."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import TextIO

from telemctl.core.errors import ExportError
from telemctl.core.model import DataFrame, Project

LOGGER = logging.getLogger(__name__)

TIMESTAMP_COLUMN = "RX Date/Time"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def header_for(project: Project) -> list[str]:
    titles: dict[int, str] = {}
    for dataset in project.datasets:
        titles.setdefault(dataset.index, dataset.title)
    return [TIMESTAMP_COLUMN, *(titles.get(i, f"Field {i}") for i in range(project.field_count))]


class CSVExport:
    """Writes one row per frame: timestamp, then fields 0..max_index.

    Without a project (quick plot) every field is written and the header is
    taken from the dataset titles of the first frame.
    """

    def __init__(self, target: Path | TextIO, project: Project | None) -> None:
        self.project = project
        self.rows_written = 0
        self._owned: TextIO | None = None
        if isinstance(target, Path):
            try:
                self._owned = target.open("w", newline="", encoding="utf-8")
            except OSError as exc:
                raise ExportError(f"Cannot open CSV file {target} for writing: {exc}") from exc
            stream: TextIO = self._owned
            LOGGER.info("Writing CSV export to %s", target)
        else:
            stream = target
        self._writer = csv.writer(stream)
        self._stream = stream
        self._header_written = False
        if project is not None:
            self._write([header_for(project)])

    def _write(self, rows: list[list[str]]) -> None:
        try:
            self._writer.writerows(rows)
        except OSError as exc:
            raise ExportError(f"CSV export failed: {exc}") from exc
        self._header_written = True

    def __call__(self, frame: DataFrame) -> None:
        stamp = frame.timestamp.astimezone().replace(tzinfo=None).strftime(TIMESTAMP_FORMAT)
        rows = []
        if not self._header_written:
            rows.append([TIMESTAMP_COLUMN, *(value.title for value in frame.values)])
        fields = frame.fields if self.project is None else frame.fields[: self.project.field_count]
        rows.append([stamp, *fields])
        self._write(rows)
        self.rows_written += 1

    def close(self) -> None:
        self._stream.flush()
        if self._owned is not None:
            self._owned.close()
            self._owned = None

    def __enter__(self) -> CSVExport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
