"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable

import typer

from telemctl.core.csv_player import CSVPlayer
from telemctl.core.errors import TelemctlError
from telemctl.core.model import (
    BleConfig,
    DataFrame,
    FlowControl,
    NetworkConfig,
    Parity,
    SocketType,
    TransportConfig,
    UartConfig,
)
from telemctl.core.project_loader import load_project
from telemctl.core.script_engine import migrate_legacy
from telemctl.core.service import PipelineService
from telemctl.core.settings import load_settings
from telemctl.exporters.console import ConsoleExport
from telemctl.exporters.csv_export import CSVExport
from telemctl.transports.factory import create_driver
from telemctl.transports.uart import list_serial_ports

app = typer.Typer(help="Frame acquisition and decoding for serial, network and BLE telemetry")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def _build_service(project_path: Path | None, sample: str | None = None) -> PipelineService:
    settings = load_settings()
    if project_path is None:
        typer.echo("No project given; quick plot mode (comma separated lines)", err=True)
        return PipelineService.for_quick_plot(settings=settings)
    service = PipelineService(load_project(project_path), settings=settings, sample=sample)
    for warning in service.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _format_frame(frame: DataFrame) -> str:
    parts = []
    for value in frame.values:
        units = f" {value.units}" if value.units else ""
        alarm = " [ALARM]" if value.alarm else ""
        parts.append(f"{value.title}={value.value}{units}{alarm}")
    return f"{frame.title}: " + ", ".join(parts)


def _run(
    service: PipelineService,
    session: Callable[[], Awaitable[None]],
    *,
    csv_path: Path | None,
    raw: bool,
    hex_view: bool,
    quiet: bool,
) -> None:
    exporter: CSVExport | None = None
    if csv_path is not None:
        exporter = CSVExport(csv_path, None if service.quick_plot else service.project)
        service.subscribe(exporter)
    if raw:
        service.subscribe_payloads(ConsoleExport(sys.stdout, hex_view=hex_view))
    if not quiet:
        service.subscribe(lambda frame: typer.echo(_format_frame(frame)))

    try:
        asyncio.run(session())
    except KeyboardInterrupt:
        typer.echo("Interrupted", err=True)
    finally:
        if exporter is not None:
            exporter.close()
        stats = service.stats
        typer.echo(
            f"Frames: published={stats.frames_published} dropped={stats.dropped} "
            f"(framing={stats.dropped_framing} decode={stats.dropped_decode} "
            f"script={stats.dropped_script} mapping={stats.dropped_mapping})",
            err=True,
        )


def _connect(
    project: Path | None,
    config: TransportConfig,
    *,
    frames: int | None,
    csv_path: Path | None,
    raw: bool,
    hex_view: bool,
    quiet: bool,
) -> None:
    try:
        service = _build_service(project)
        driver = create_driver(config, service.settings)
        _run(
            service,
            lambda: service.run(driver, max_frames=frames),
            csv_path=csv_path,
            raw=raw,
            hex_view=hex_view,
            quiet=quiet,
        )
    except TelemctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("validate")
def validate(
    project: Path = typer.Argument(..., help="Project file (JSON or YAML)"),
    sample: str | None = typer.Option(None, "--sample", help="Frame used to test the parser script"),
    migrate: bool = typer.Option(False, "--migrate", help="Print a migrated legacy parser script"),
) -> None:
    """Load a project and its parser script and print a summary."""
    try:
        service = _build_service(project, sample=sample)
        loaded = service.project
        typer.echo(f"Project: {loaded.title}")
        typer.echo(
            f"  decoder={loaded.decoder.value} detection={loaded.frame_detection.value} "
            f"start={loaded.frame_start!r} end={loaded.frame_end!r}"
        )
        parser = f"none (split on {loaded.separator!r})"
        if service.script is not None:
            parser = "legacy parse(frame, separator)" if service.script.legacy else "parse(frame)"
        typer.echo(f"  parser: {parser}")
        for group in loaded.groups:
            widget = f" [{group.widget}]" if group.widget else ""
            typer.echo(f"  {group.title}{widget}")
            for dataset in group.datasets:
                units = f" ({dataset.units})" if dataset.units else ""
                typer.echo(f"    #{dataset.index} {dataset.title}{units}")
        if migrate and service.script is not None and service.script.legacy:
            typer.echo(migrate_legacy(service.script.source, loaded.separator))
    except TelemctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("ports")
def ports() -> None:
    """List serial ports."""
    try:
        found = list_serial_ports()
        if not found:
            typer.echo("No serial ports found")
            return
        for port in found:
            typer.echo(f"{port.device} {port.description} [{port.hwid}]")
    except TelemctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("uart")
def uart(
    project: Path | None = typer.Argument(None, help="Project file (JSON or YAML); omit for quick plot"),
    port: str = typer.Option(..., "--port", help="Serial device, e.g. /dev/ttyUSB0"),
    baud: int = typer.Option(9600, "--baud"),
    data_bits: int = typer.Option(8, "--data-bits"),
    parity: Parity = typer.Option(Parity.NONE, "--parity"),
    stop_bits: float = typer.Option(1.0, "--stop-bits"),
    flow_control: FlowControl = typer.Option(FlowControl.NONE, "--flow-control"),
    auto_reconnect: bool = typer.Option(False, "--auto-reconnect/--no-auto-reconnect"),
    dtr: bool = typer.Option(True, "--dtr/--no-dtr"),
    frames: int | None = typer.Option(None, "--frames", help="Stop after N frames"),
    csv_path: Path | None = typer.Option(None, "--csv", help="Write frames to a CSV file"),
    raw: bool = typer.Option(False, "--raw", help="Echo decoded payloads"),
    hex_view: bool = typer.Option(False, "--hex", help="Show raw payloads as hex"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print frames"),
) -> None:
    """Read frames from a serial port."""
    if data_bits not in (5, 6, 7, 8):
        typer.echo("Error: --data-bits must be 5, 6, 7 or 8", err=True)
        raise typer.Exit(code=1)
    if stop_bits not in (1, 1.5, 2):
        typer.echo("Error: --stop-bits must be 1, 1.5 or 2", err=True)
        raise typer.Exit(code=1)
    config = UartConfig(
        port=port,
        baud_rate=baud,
        data_bits=data_bits,
        parity=parity,
        stop_bits=stop_bits,
        flow_control=flow_control,
        auto_reconnect=auto_reconnect,
        dtr=dtr,
    )
    _connect(project, config, frames=frames, csv_path=csv_path, raw=raw, hex_view=hex_view, quiet=quiet)


@app.command("net")
def net(
    project: Path | None = typer.Argument(None, help="Project file (JSON or YAML); omit for quick plot"),
    host: str = typer.Option(..., "--host", help="Remote address or multicast group"),
    port: int = typer.Option(..., "--port", help="Remote port"),
    socket_type: SocketType = typer.Option(SocketType.TCP, "--socket"),
    local_port: int = typer.Option(0, "--local-port", help="0 picks a port automatically"),
    multicast: bool = typer.Option(False, "--multicast"),
    frames: int | None = typer.Option(None, "--frames", help="Stop after N frames"),
    csv_path: Path | None = typer.Option(None, "--csv", help="Write frames to a CSV file"),
    raw: bool = typer.Option(False, "--raw", help="Echo decoded payloads"),
    hex_view: bool = typer.Option(False, "--hex", help="Show raw payloads as hex"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print frames"),
) -> None:
    """Read frames from a TCP or UDP socket."""
    if multicast and socket_type is not SocketType.UDP:
        typer.echo("Error: --multicast requires --socket udp", err=True)
        raise typer.Exit(code=1)
    config = NetworkConfig(
        remote_address=host,
        remote_port=port,
        socket_type=socket_type,
        local_port=local_port,
        multicast=multicast,
    )
    _connect(project, config, frames=frames, csv_path=csv_path, raw=raw, hex_view=hex_view, quiet=quiet)


@app.command("ble")
def ble(
    project: Path | None = typer.Argument(None, help="Project file (JSON or YAML); omit for quick plot"),
    device: str = typer.Option(..., "--device", help="Device address or platform identifier"),
    service_id: str = typer.Option(..., "--service", help="GATT service UUID"),
    characteristic: str = typer.Option(..., "--characteristic", help="Notifying characteristic UUID"),
    frames: int | None = typer.Option(None, "--frames", help="Stop after N frames"),
    csv_path: Path | None = typer.Option(None, "--csv", help="Write frames to a CSV file"),
    raw: bool = typer.Option(False, "--raw", help="Echo decoded payloads"),
    hex_view: bool = typer.Option(False, "--hex", help="Show raw payloads as hex"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print frames"),
) -> None:
    """Read frames from a BLE characteristic."""
    config = BleConfig(device_id=device, service_id=service_id.lower(), characteristic_id=characteristic.lower())
    _connect(project, config, frames=frames, csv_path=csv_path, raw=raw, hex_view=hex_view, quiet=quiet)


@app.command("replay")
def replay(
    project: Path = typer.Argument(..., help="Project file (JSON or YAML)"),
    csv_file: Path = typer.Argument(..., help="Recorded CSV file"),
    interval: float | None = typer.Option(None, "--interval", help="Milliseconds between rows"),
    timestamp_column: str | None = typer.Option(
        None, "--timestamp-column", help="Date/time column that paces the replay"
    ),
    timestamp_format: str | None = typer.Option(None, "--timestamp-format", help="strptime format"),
    frames: int | None = typer.Option(None, "--frames", help="Stop after N frames"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print frames"),
) -> None:
    """Replay a recorded CSV file through the dataset mapping."""
    try:
        service = _build_service(project)
        player = CSVPlayer.open(
            csv_file,
            interval_ms=interval,
            timestamp_column=timestamp_column,
            timestamp_format=timestamp_format,
            max_delay_ms=service.settings.replay_max_delay_ms,
        )
        typer.echo(f"Replaying {player.row_count} rows from {csv_file}", err=True)
        _run(
            service,
            lambda: service.replay(player, max_frames=frames),
            csv_path=None,
            raw=False,
            hex_view=False,
            quiet=quiet,
        )
    except TelemctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
