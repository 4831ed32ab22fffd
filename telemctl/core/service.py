"""Session layer used by the CLI, the public API and future UI frontends."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence

from telemctl.core.csv_player import CSVPlayer
from telemctl.core.decoder import decode, payload_text
from telemctl.core.errors import (
    DecodeError,
    FrameError,
    FramingError,
    MappingError,
    ScriptRuntimeError,
    SessionError,
)
from telemctl.core.frame_builder import FrameBuilder, quick_plot_project, split_fields
from telemctl.core.frame_reader import FrameReader
from telemctl.core.model import DataFrame, DecoderMethod, Project
from telemctl.core.script_engine import ParseScript, ScriptEngine
from telemctl.core.settings import Settings, load_settings
from telemctl.transports.base import TransportDriver

LOGGER = logging.getLogger(__name__)

_END = object()
_RESET = object()

FrameCallback = Callable[[DataFrame], None]
PayloadCallback = Callable[[bytes], None]


@dataclass
class PipelineStats:
    bytes_received: int = 0
    frames_received: int = 0
    frames_published: int = 0
    dropped_framing: int = 0
    dropped_decode: int = 0
    dropped_script: int = 0
    dropped_mapping: int = 0
    subscriber_errors: int = 0

    @property
    def dropped(self) -> int:
        return self.dropped_framing + self.dropped_decode + self.dropped_script + self.dropped_mapping

    def count(self, error: FrameError) -> None:
        if isinstance(error, FramingError):
            self.dropped_framing += 1
        elif isinstance(error, DecodeError):
            self.dropped_decode += 1
        elif isinstance(error, ScriptRuntimeError):
            self.dropped_script += 1
        elif isinstance(error, MappingError):
            self.dropped_mapping += 1


class PipelineService:
    """Runs one frame source at a time through the parsing pipeline.

    The project is fixed while a source is active; :meth:`load_project`
    rebuilds the reader, script and dataset mappings between sessions.
    """

    def __init__(
        self,
        project: Project,
        *,
        settings: Settings | None = None,
        script_engine: ScriptEngine | None = None,
        sample: str | bytes | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.script_engine = script_engine or ScriptEngine(step_limit=self.settings.script_step_limit)
        self.stats = PipelineStats()
        self._frame_callbacks: list[FrameCallback] = []
        self._payload_callbacks: list[PayloadCallback] = []
        self._active = False
        self._stopping = False
        self._queue: asyncio.Queue | None = None
        self._pump_task: asyncio.Task | None = None
        self._driver: TransportDriver | None = None
        self._player: CSVPlayer | None = None
        self._source_error: BaseException | None = None
        self.quick_plot = False
        self._reconnected = False
        self.load_project(project, sample=sample)

    @classmethod
    def for_quick_plot(cls, *, settings: Settings | None = None, separator: str = ",") -> PipelineService:
        """Service for newline-terminated CSV lines without a project file.

        Datasets "Channel 1".."Channel N" follow the field count of the
        incoming lines; the mapping is rebuilt whenever that count changes.
        """
        service = cls(quick_plot_project(1, separator=separator), settings=settings)
        service.quick_plot = True
        return service

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def warnings(self) -> tuple[str, ...]:
        if self.script is not None and self.script.legacy:
            first, second = self.script.parameters
            return (
                f"The 'parse' function has two arguments ('{first}', '{second}'), indicating use of "
                "the old format. Please update it to take only the frame data.",
            )
        return ()

    def load_project(self, project: Project, *, sample: str | bytes | None = None) -> None:
        if self._active:
            raise SessionError("Disconnect before loading a different project")

        script: ParseScript | None = None
        if project.frame_parser:
            script = self.script_engine.load(
                project.frame_parser,
                separator=project.separator,
                text_input=project.decoder is DecoderMethod.PLAIN_TEXT,
                field_count=project.field_count,
                sample=sample,
            )
        self.project = project
        self.script = script
        self.quick_plot = False
        self.builder = FrameBuilder(project)
        self.reader = FrameReader.for_project(project, max_buffer_bytes=self.settings.max_buffer_bytes)
        LOGGER.info(
            "Loaded project '%s' (%d datasets, %s)",
            project.title,
            len(project.datasets),
            "parser script" if script else f"split on {project.separator!r}",
        )

    def subscribe(self, callback: FrameCallback) -> None:
        self._frame_callbacks.append(callback)

    def subscribe_payloads(self, callback: PayloadCallback) -> None:
        self._payload_callbacks.append(callback)

    def unsubscribe(self, callback: Callable) -> None:
        for callbacks in (self._frame_callbacks, self._payload_callbacks):
            if callback in callbacks:
                callbacks.remove(callback)

    def reset_stats(self) -> None:
        self.stats = PipelineStats()

    def _drop(self, error: FrameError) -> None:
        self.stats.count(error)
        LOGGER.debug("Dropped frame: %s", error)

    def _notify(self, callbacks: list, item: DataFrame | bytes) -> None:
        for callback in list(callbacks):
            try:
                callback(item)
            except Exception:
                self.stats.subscriber_errors += 1
                LOGGER.warning("Subscriber %r failed; the session continues", callback, exc_info=True)

    def _publish(self, frame: DataFrame) -> DataFrame:
        self.stats.frames_published += 1
        self._notify(self._frame_callbacks, frame)
        return frame

    def _fit_quick_plot(self, fields: Sequence[str]) -> None:
        if not self.quick_plot:
            return
        if len(fields) == 1 and not fields[0]:
            raise MappingError("Empty line")
        if len(fields) == self.builder.required_fields:
            return
        LOGGER.info("Quick plot now has %d channel(s)", len(fields))
        self.project = quick_plot_project(len(fields), separator=self.project.separator)
        self.builder = FrameBuilder(self.project)

    def fields_for(self, payload: bytes) -> list[str]:
        if self.script is not None:
            return self.script.parse(payload)
        return split_fields(payload_text(payload), self.project.separator)

    def process_frame(self, frame: bytes) -> DataFrame | None:
        """Decode, parse and map a single raw frame; None when it was dropped."""
        self.stats.frames_received += 1
        try:
            payload = decode(frame, self.project.decoder)
            self._notify(self._payload_callbacks, payload)
            fields = self.fields_for(payload)
            self._fit_quick_plot(fields)
            snapshot = self.builder.build(fields)
        except FrameError as exc:
            self._drop(exc)
            return None
        return self._publish(snapshot)

    def process_chunk(self, chunk: bytes, *, limit: int | None = None) -> list[DataFrame]:
        """Feed ``chunk`` through the reader and publish complete frames.

        With ``limit``, frames after the ``limit``-th published one are left
        unprocessed.
        """
        self.stats.bytes_received += len(chunk)
        result = self.reader.feed(chunk)
        for error in result.errors:
            self._drop(error)

        published = []
        for frame in result.frames:
            if limit is not None and len(published) >= limit:
                break
            snapshot = self.process_frame(frame)
            if snapshot is not None:
                published.append(snapshot)
        return published

    def process_fields(self, fields: Sequence[str], timestamp: datetime | None = None) -> DataFrame | None:
        """Map an already split field list, as replay does."""
        self.stats.frames_received += 1
        try:
            self._fit_quick_plot(fields)
            snapshot = self.builder.build(fields, timestamp)
        except FrameError as exc:
            self._drop(exc)
            return None
        return self._publish(snapshot)

    def _begin(self) -> None:
        if self._active:
            raise SessionError("Another source is active. Stop it before starting a new one.")
        self._active = True
        self._stopping = False
        self._source_error = None
        self._reconnected = False
        self.reader.reset()

    async def _pump(self, driver: TransportDriver, queue: asyncio.Queue) -> None:
        try:
            async for chunk in driver.read():
                if self._reconnected:
                    self._reconnected = False
                    await queue.put(_RESET)
                await queue.put(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._source_error = exc
        await queue.put(_END)

    async def run(self, driver: TransportDriver, *, max_frames: int | None = None) -> None:
        """Open ``driver`` and process its stream until it ends or :meth:`stop`.

        Transport failures are re-raised once the session has been torn down.
        """
        self._begin()
        self._driver = driver
        self._queue = asyncio.Queue(maxsize=self.settings.queue_size)
        driver.on_reconnect = self._on_reconnect
        try:
            await driver.open()
            self._pump_task = asyncio.create_task(self._pump(driver, self._queue))
            published = 0
            while not self._stopping:
                item = await self._queue.get()
                if item is _END or self._stopping:
                    break
                if item is _RESET:
                    self.reader.reset()
                    continue
                remaining = None if max_frames is None else max_frames - published
                published += len(self.process_chunk(item, limit=remaining))
                if max_frames is not None and published >= max_frames:
                    break
        finally:
            await self._teardown()

        if self._source_error is not None:
            raise self._source_error

    async def replay(self, player: CSVPlayer, *, max_frames: int | None = None) -> None:
        self._begin()
        self._player = player
        try:
            published = 0
            async for row in player.play():
                if self._stopping:
                    break
                if self.process_fields(row.fields) is not None:
                    published += 1
                if max_frames is not None and published >= max_frames:
                    break
        finally:
            player.stop()
            self._player = None
            self.reader.reset()
            self._active = False

    async def send(self, data: bytes) -> int:
        if self._driver is None:
            raise SessionError("No transport is connected")
        return await self._driver.write(data)

    def stop(self) -> None:
        """Request the active source to stop; queued chunks are discarded."""
        if not self._active:
            return
        self._stopping = True
        if self._player is not None:
            self._player.stop()
        if self._pump_task is not None:
            self._pump_task.cancel()
        if self._queue is not None:
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_END)

    def _on_reconnect(self) -> None:
        # Chunks read before the drop may still be queued; the reader is reset
        # in stream order once the consumer reaches the marker.
        LOGGER.info("Link re-established; discarding partial frame")
        self._reconnected = True

    async def _teardown(self) -> None:
        pump, self._pump_task = self._pump_task, None
        if pump is not None:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        driver, self._driver = self._driver, None
        if driver is not None:
            driver.on_reconnect = None
            await driver.close()
        self._queue = None
        self.reader.reset()
        self._active = False
