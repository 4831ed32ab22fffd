"""Stable public API for building tooling on top of telemctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from telemctl.core.csv_player import CSVPlayer
from telemctl.core.errors import (
    DecodeError,
    ExportError,
    FrameError,
    FramingError,
    InsufficientDataError,
    MappingError,
    ProjectLoadError,
    ProjectValidationError,
    ReplayError,
    ScriptError,
    ScriptRuntimeError,
    ScriptValidationError,
    SessionError,
    SettingsError,
    TelemctlError,
    TransportConnectError,
    TransportError,
    TransportPermissionError,
    TransportSendError,
    TransportTimeoutError,
    TransportUnavailableError,
)
from telemctl.core.model import (
    BleConfig,
    CompositeValue,
    DataFrame,
    Dataset,
    DatasetValue,
    DecoderMethod,
    FrameDetection,
    Group,
    GroupValues,
    NetworkConfig,
    Project,
    TransportConfig,
    UartConfig,
)
from telemctl.core.project_loader import load_project, transport_config_from_dict
from telemctl.core.script_engine import ParseScript
from telemctl.core.service import PipelineService, PipelineStats
from telemctl.core.settings import Settings
from telemctl.transports.base import TransportDriver
from telemctl.transports.factory import create_driver

__all__ = [
    "TelemctlError",
    "ProjectLoadError",
    "ProjectValidationError",
    "SettingsError",
    "SessionError",
    "TransportError",
    "TransportConnectError",
    "TransportPermissionError",
    "TransportSendError",
    "TransportTimeoutError",
    "TransportUnavailableError",
    "ScriptError",
    "ScriptValidationError",
    "ScriptRuntimeError",
    "FrameError",
    "FramingError",
    "DecodeError",
    "MappingError",
    "ReplayError",
    "InsufficientDataError",
    "ExportError",
    "BleConfig",
    "CompositeValue",
    "DataFrame",
    "Dataset",
    "DatasetValue",
    "DecoderMethod",
    "FrameDetection",
    "Group",
    "GroupValues",
    "NetworkConfig",
    "Project",
    "TransportConfig",
    "UartConfig",
    "PipelineStats",
    "Settings",
    "TransportDriver",
    "Client",
]


class Client:
    """Public client wrapping project loading, sessions and replay.

    A `Client` owns one :class:`PipelineService`; only one live transport or
    replay runs at a time.
    """

    def __init__(
        self,
        project: Project | Path,
        *,
        settings: Settings | None = None,
        sample: str | bytes | None = None,
    ) -> None:
        if isinstance(project, Path):
            project = load_project(project)
        self._service = PipelineService(project, settings=settings, sample=sample)

    @property
    def project(self) -> Project:
        return self._service.project

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._service.warnings

    @property
    def stats(self) -> PipelineStats:
        return self._service.stats

    @property
    def is_active(self) -> bool:
        return self._service.is_active

    def load_project(self, project: Project | Path, *, sample: str | bytes | None = None) -> None:
        if isinstance(project, Path):
            project = load_project(project)
        self._service.load_project(project, sample=sample)

    def validate_script(self, source: str, *, sample: str | bytes | None = None) -> ParseScript:
        """Check a parser script against the current project without loading it."""
        project = self._service.project
        return self._service.script_engine.load(
            source,
            separator=project.separator,
            text_input=project.decoder is DecoderMethod.PLAIN_TEXT,
            field_count=project.field_count,
            sample=sample,
        )

    def subscribe(self, callback: Callable[[DataFrame], None]) -> None:
        self._service.subscribe(callback)

    def subscribe_payloads(self, callback: Callable[[bytes], None]) -> None:
        self._service.subscribe_payloads(callback)

    def feed(self, chunk: bytes) -> list[DataFrame]:
        """Run raw bytes through the pipeline without a transport."""
        return self._service.process_chunk(chunk)

    async def connect(
        self,
        config: TransportConfig | dict,
        *,
        driver: TransportDriver | None = None,
        max_frames: int | None = None,
    ) -> None:
        if isinstance(config, dict):
            config = transport_config_from_dict(config)
        await self._service.run(
            driver or create_driver(config, self._service.settings),
            max_frames=max_frames,
        )

    async def replay(
        self,
        path: Path,
        *,
        interval_ms: float | None = None,
        timestamp_column: str | int | None = None,
        timestamp_format: str | None = None,
        max_frames: int | None = None,
    ) -> None:
        player = CSVPlayer.open(
            path,
            interval_ms=interval_ms,
            timestamp_column=timestamp_column,
            timestamp_format=timestamp_format,
            max_delay_ms=self._service.settings.replay_max_delay_ms,
        )
        await self._service.replay(player, max_frames=max_frames)

    async def send(self, data: bytes) -> int:
        return await self._service.send(data)

    def stop(self) -> None:
        self._service.stop()
