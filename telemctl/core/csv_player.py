"""Replay of recorded CSV frames with interval or timestamp pacing."""

from __future__ import annotations

import asyncio
import csv
import logging
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path

from telemctl.core.errors import InsufficientDataError, ReplayError
from telemctl.core.model import ReplayRow

LOGGER = logging.getLogger(__name__)

# Export format of the desktop tool: 2024/01/31 13:45:10::250
_LEGACY_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"


def parse_timestamp(value: str, fmt: str | None = None) -> datetime | float | None:
    """Return a datetime, a number of seconds, or None when unparsable."""
    text = value.strip()
    if not text:
        return None
    if fmt:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    if "::" in text:
        stamp, _, millis = text.rpartition("::")
        try:
            parsed = datetime.strptime(stamp, _LEGACY_TIMESTAMP_FORMAT)
            return parsed.replace(microsecond=int(millis) * 1000)
        except ValueError:
            return None
    try:
        return float(text)
    except ValueError:
        return None


def _delta_ms(previous: datetime | float | None, current: datetime | float | None) -> float | None:
    if previous is None or current is None:
        return None
    if isinstance(previous, datetime) and isinstance(current, datetime):
        if (previous.tzinfo is None) != (current.tzinfo is None):
            return None
        return (current - previous).total_seconds() * 1000.0
    if isinstance(previous, float) and isinstance(current, float):
        return (current - previous) * 1000.0
    return None


class CSVPlayer:
    """Paced playback of the data rows of a CSV file.

    Use :meth:`open` to build a player; all validation happens there so a bad
    file is reported before playback starts. :meth:`play` yields
    :class:`ReplayRow` objects, sleeping between rows according to the fixed
    interval or the timestamp column deltas.
    """

    def __init__(
        self,
        path: Path,
        header: list[str],
        rows: list[list[str]],
        delays_ms: list[float],
        *,
        timestamp_column: int | None,
        timestamps: list[datetime | float | None],
    ) -> None:
        self.path = path
        self.header = header
        self._rows = rows
        self._delays_ms = delays_ms
        self._timestamp_column = timestamp_column
        self._timestamps = timestamps
        self._position = 0
        self._resume = asyncio.Event()
        self._resume.set()
        self._stopped = False
        self._wakeup = asyncio.Event()
        self._clock_reset = True
        self._last_emit = 0.0
        self._pending: list[int] = []

    @classmethod
    def open(
        cls,
        path: Path,
        *,
        interval_ms: float | None = None,
        timestamp_column: str | int | None = None,
        timestamp_format: str | None = None,
        max_delay_ms: float = 10_000.0,
    ) -> CSVPlayer:
        header, rows = _read_csv(path)

        if interval_ms is None and timestamp_column is None:
            raise ReplayError("Choose a fixed replay interval or a date/time column")
        if interval_ms is not None and interval_ms < 0:
            raise ReplayError("Replay interval must not be negative")

        column: int | None = None
        timestamps: list[datetime | float | None] = [None] * len(rows)
        if timestamp_column is not None:
            column = _resolve_column(header, timestamp_column)
            timestamps = [
                parse_timestamp(row[column], timestamp_format) if column < len(row) else None
                for row in rows
            ]
            if timestamps[0] is None:
                first = rows[0][column] if column < len(rows[0]) else ""
                raise ReplayError(f"Invalid date/time column '{header[column]}': cannot parse {first!r}")

        if interval_ms is not None:
            delays = [0.0] + [float(interval_ms)] * (len(rows) - 1)
        else:
            delays = [0.0]
            for previous, current in zip(timestamps, timestamps[1:]):
                delta = _delta_ms(previous, current)
                if delta is None:
                    delays.append(0.0)
                else:
                    delays.append(min(max(delta, 0.0), max_delay_ms))

        LOGGER.info("Loaded %d rows from %s", len(rows), path)
        return cls(
            path,
            header,
            rows,
            delays,
            timestamp_column=column,
            timestamps=timestamps,
        )

    @property
    def row_count(self) -> int:
        return len(self._rows)

    @property
    def position(self) -> int:
        return self._position

    @property
    def progress(self) -> float:
        return self._position / len(self._rows)

    @property
    def is_paused(self) -> bool:
        return not self._resume.is_set()

    @property
    def field_names(self) -> list[str]:
        return [name for i, name in enumerate(self.header) if i != self._timestamp_column]

    def delay_before(self, row: int) -> float:
        return self._delays_ms[row]

    def fields_for(self, row: int) -> tuple[str, ...]:
        values = self._rows[row]
        return tuple(value for i, value in enumerate(values) if i != self._timestamp_column)

    def pause(self) -> None:
        self._resume.clear()

    def resume(self) -> None:
        self._clock_reset = True
        self._resume.set()

    def stop(self) -> None:
        self._stopped = True
        self._resume.set()
        self._wakeup.set()

    def seek(self, row: int) -> None:
        """Continue from ``row``; it is emitted without waiting for its delay."""
        if not 0 <= row < len(self._rows):
            raise ReplayError(f"Row {row} is out of range (0-{len(self._rows) - 1})")
        self._position = row
        self._clock_reset = True
        self._wakeup.set()

    def next_frame(self) -> None:
        """Emit the next row immediately while paused."""
        if self._position < len(self._rows):
            self._pending.append(self._position)
            self._position += 1
            self._wakeup.set()

    def previous_frame(self) -> None:
        """Step back one row and emit it immediately while paused."""
        row = max(self._position - 2, 0)
        self._pending.append(row)
        self._position = row + 1
        self._wakeup.set()

    def _row(self, row: int) -> ReplayRow:
        stamp = self._timestamps[row]
        return ReplayRow(
            row=row,
            fields=self.fields_for(row),
            timestamp=stamp if isinstance(stamp, datetime) else None,
        )

    async def _sleep_until(self, due: float) -> bool:
        """Sleep until ``due`` (loop time). False when interrupted by seek/stop."""
        loop = asyncio.get_running_loop()
        self._wakeup.clear()
        while not self._stopped:
            remaining = due - loop.time()
            if remaining <= 0:
                return True
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            return False
        return False

    async def play(self) -> AsyncIterator[ReplayRow]:
        loop = asyncio.get_running_loop()
        self._stopped = False
        self._clock_reset = True
        while not self._stopped:
            while self._pending:
                yield self._row(self._pending.pop(0))

            if self._position >= len(self._rows):
                LOGGER.info("Replay of %s finished", self.path)
                return

            if self.is_paused:
                self._wakeup.clear()
                waiters = {
                    asyncio.ensure_future(self._resume.wait()),
                    asyncio.ensure_future(self._wakeup.wait()),
                }
                _, still_pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                for waiter in still_pending:
                    waiter.cancel()
                continue

            row = self._position
            if not self._clock_reset:
                if not await self._sleep_until(self._last_emit + self._delays_ms[row] / 1000.0):
                    continue
                if self.is_paused:
                    continue
            self._clock_reset = False
            self._position = row + 1
            yield self._row(row)
            # Measured once the consumer is done with the row.
            self._last_emit = loop.time()


def _read_csv(path: Path) -> tuple[list[str], list[list[str]]]:
    try:
        with path.open(newline="", encoding="utf-8") as handle:
            records = [record for record in csv.reader(handle) if any(cell.strip() for cell in record)]
    except OSError as exc:
        raise ReplayError(f"Cannot read CSV file {path}: {exc}") from exc
    except (csv.Error, UnicodeDecodeError) as exc:
        raise ReplayError(f"Invalid CSV file {path}: {exc}") from exc

    if len(records) < 2:
        if not records:
            raise ReplayError("The CSV file does not contain any data or headers.")
        raise InsufficientDataError(
            "The CSV file must contain at least two frames (data rows) to proceed."
        )
    header, rows = records[0], records[1:]
    if len(rows) < 2:
        raise InsufficientDataError(
            "The CSV file must contain at least two frames (data rows) to proceed."
        )
    return header, rows


def _resolve_column(header: list[str], column: str | int) -> int:
    if isinstance(column, int):
        if not 0 <= column < len(header):
            raise ReplayError(f"Invalid date/time column index {column}")
        return column
    names = [name.strip() for name in header]
    if column.strip() not in names:
        raise ReplayError(f"Invalid date/time column '{column}'. Available: {', '.join(names)}")
    return names.index(column.strip())
