"""Delimiter-based frame extraction from a continuous byte stream.

The reader owns a single ``bytearray`` that is reused for the whole session and
runs an explicit state machine:

- ``SEARCHING``: no confirmed frame start (or, in end-only mode, accumulating
  until the end delimiter shows up).
- ``CAPTURING``: a start delimiter was seen, waiting for the end delimiter or
  the next start delimiter.
- ``IDLE``: no delimiters configured, every chunk is passed through as a frame.

When the buffer grows past ``max_buffer_bytes`` without producing a frame the
buffer is discarded, the state returns to ``SEARCHING`` and a
:class:`FramingError` is reported alongside any frames from the same chunk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from telemctl.core.errors import FramingError
from telemctl.core.model import FrameDetection, Project
from telemctl.core.settings import DEFAULT_MAX_BUFFER_BYTES

LOGGER = logging.getLogger(__name__)


class ReaderState(Enum):
    SEARCHING = "searching"
    CAPTURING = "capturing"
    IDLE = "idle"


@dataclass
class FeedResult:
    frames: list[bytes] = field(default_factory=list)
    errors: list[FramingError] = field(default_factory=list)


class FrameReader:
    def __init__(
        self,
        mode: FrameDetection,
        *,
        start: bytes = b"",
        end: bytes = b"",
        max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES,
    ) -> None:
        if mode in (FrameDetection.START_DELIMITER_ONLY, FrameDetection.START_AND_END_DELIMITER) and not start:
            raise ValueError(f"{mode.value} requires a start delimiter")
        if mode in (FrameDetection.END_DELIMITER_ONLY, FrameDetection.START_AND_END_DELIMITER) and not end:
            raise ValueError(f"{mode.value} requires an end delimiter")
        if max_buffer_bytes <= 0:
            raise ValueError("max_buffer_bytes must be positive")

        self.mode = mode
        self.start = bytes(start)
        self.end = bytes(end)
        self.max_buffer_bytes = max_buffer_bytes
        self.overflows = 0
        self._buffer = bytearray()
        self._state = self._initial_state()

    @classmethod
    def for_project(cls, project: Project, *, max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES) -> FrameReader:
        return cls(
            project.frame_detection,
            start=project.frame_start,
            end=project.frame_end,
            max_buffer_bytes=max_buffer_bytes,
        )

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        """Drop any partial frame and return to the initial state."""
        self._buffer.clear()
        self._state = self._initial_state()

    def feed(self, chunk: bytes) -> FeedResult:
        result = FeedResult()
        if not chunk:
            return result

        if self.mode is FrameDetection.NO_DELIMITERS:
            result.frames.append(bytes(chunk))
            return result

        self._buffer.extend(chunk)
        if self.mode is FrameDetection.END_DELIMITER_ONLY:
            self._scan_end_only(result.frames)
        elif self.mode is FrameDetection.START_DELIMITER_ONLY:
            self._scan_start_only(result.frames)
        else:
            self._scan_start_and_end(result.frames)

        if len(self._buffer) > self.max_buffer_bytes:
            discarded = len(self._buffer)
            self.reset()
            self.overflows += 1
            error = FramingError(
                f"Frame buffer exceeded {self.max_buffer_bytes} bytes without a delimiter; "
                f"discarded {discarded} bytes"
            )
            LOGGER.warning("%s", error)
            result.errors.append(error)
        return result

    def _initial_state(self) -> ReaderState:
        if self.mode is FrameDetection.NO_DELIMITERS:
            return ReaderState.IDLE
        return ReaderState.SEARCHING

    def _emit(self, frames: list[bytes], frame: bytes) -> None:
        if frame:
            frames.append(frame)

    def _scan_end_only(self, frames: list[bytes]) -> None:
        while True:
            end_at = self._buffer.find(self.end)
            if end_at < 0:
                return
            self._emit(frames, bytes(self._buffer[:end_at]))
            del self._buffer[: end_at + len(self.end)]

    def _scan_start_only(self, frames: list[bytes]) -> None:
        while True:
            if self._state is ReaderState.SEARCHING:
                start_at = self._buffer.find(self.start)
                if start_at < 0:
                    self._keep_partial_delimiter(self.start)
                    return
                del self._buffer[: start_at + len(self.start)]
                self._state = ReaderState.CAPTURING
                continue

            next_start = self._buffer.find(self.start)
            if next_start < 0:
                return
            self._emit(frames, bytes(self._buffer[:next_start]))
            del self._buffer[: next_start + len(self.start)]

    def _scan_start_and_end(self, frames: list[bytes]) -> None:
        while True:
            if self._state is ReaderState.SEARCHING:
                start_at = self._buffer.find(self.start)
                if start_at < 0:
                    self._keep_partial_delimiter(self.start)
                    return
                del self._buffer[: start_at + len(self.start)]
                self._state = ReaderState.CAPTURING
                continue

            end_at = self._buffer.find(self.end)
            if end_at < 0:
                return
            # Start bytes inside a frame are payload; binary frames carry arbitrary values.
            self._emit(frames, bytes(self._buffer[:end_at]))
            del self._buffer[: end_at + len(self.end)]
            self._state = ReaderState.SEARCHING

    def _keep_partial_delimiter(self, delimiter: bytes) -> None:
        """While searching, only a possible delimiter prefix at the tail matters."""
        keep = len(delimiter) - 1
        if len(self._buffer) > keep:
            del self._buffer[: len(self._buffer) - keep]
