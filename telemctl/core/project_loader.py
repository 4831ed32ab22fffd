"""Project and transport configuration loading with schema validation."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from telemctl.core.errors import ProjectLoadError, ProjectValidationError
from telemctl.core.frame_builder import composite_mappings
from telemctl.core.model import (
    BleConfig,
    Dataset,
    DecoderMethod,
    FlowControl,
    FrameDetection,
    Group,
    NetworkConfig,
    Parity,
    Project,
    SocketType,
    TransportConfig,
    UartConfig,
)
from telemctl.core.yaml_io import load_schema_validator, parse_document, read_document, validate_document

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_MAX_DELIMITER_BYTES = 64
LOGGER = logging.getLogger(__name__)

# Integer codes used by project files written by older desktop releases.
_DECODER_CODES = {
    0: DecoderMethod.PLAIN_TEXT,
    1: DecoderMethod.HEXADECIMAL,
    2: DecoderMethod.BASE64,
}
_DETECTION_CODES = {
    0: FrameDetection.END_DELIMITER_ONLY,
    1: FrameDetection.START_AND_END_DELIMITER,
    2: FrameDetection.NO_DELIMITERS,
    3: FrameDetection.START_DELIMITER_ONLY,
}


def _normalize_hex(value: str, *, context: str) -> bytes:
    normalized = value.strip().lower().replace(" ", "").replace("0x", "")
    if len(normalized) == 0:
        raise ProjectValidationError(f"{context} must not be empty")
    if len(normalized) % 2 != 0:
        raise ProjectValidationError(f"{context} must have even-length hex")
    if not _HEX_RE.match(normalized):
        raise ProjectValidationError(f"{context} must contain only [0-9a-f]")
    payload = bytes.fromhex(normalized)
    if len(payload) > _MAX_DELIMITER_BYTES:
        raise ProjectValidationError(
            f"{context} exceeds max delimiter size {_MAX_DELIMITER_BYTES} bytes"
        )
    return payload


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProjectValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _delimiter(value: str, *, hexadecimal: bool, context: str) -> bytes:
    if not value:
        return b""
    if hexadecimal:
        return _normalize_hex(value, context=context)
    encoded = value.encode("utf-8")
    if len(encoded) > _MAX_DELIMITER_BYTES:
        raise ProjectValidationError(
            f"{context} exceeds max delimiter size {_MAX_DELIMITER_BYTES} bytes"
        )
    return encoded


def _enum_value(raw: Any, codes: dict[int, Any], enum_cls: type, default: Any) -> Any:
    if raw is None:
        return default
    if isinstance(raw, int):
        return codes[raw]
    return enum_cls(raw)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _build_dataset(doc: dict[str, Any]) -> Dataset:
    return Dataset(
        title=doc["title"],
        index=int(doc["index"]),
        units=doc.get("units", ""),
        widget=doc.get("widget", "").strip().lower(),
        min=_optional_float(doc.get("min")),
        max=_optional_float(doc.get("max")),
        alarm=_optional_float(doc.get("alarm")),
        overview=bool(doc.get("overviewDisplay", False)),
    )


def project_from_dict(doc: dict[str, Any], *, source: str = "<project>") -> Project:
    validate_document(
        load_schema_validator("project.schema.json"),
        doc,
        source=source,
        validation_error=ProjectValidationError,
    )

    detection = _enum_value(
        doc.get("frameDetection"), _DETECTION_CODES, FrameDetection, FrameDetection.END_DELIMITER_ONLY
    )
    hex_delimiters = bool(doc.get("hexadecimalDelimiters", False))
    frame_start = _delimiter(doc.get("frameStart", ""), hexadecimal=hex_delimiters, context=f"{source}.frameStart")
    frame_end = _delimiter(doc.get("frameEnd", ""), hexadecimal=hex_delimiters, context=f"{source}.frameEnd")

    needs_start = detection in (FrameDetection.START_DELIMITER_ONLY, FrameDetection.START_AND_END_DELIMITER)
    needs_end = detection in (FrameDetection.END_DELIMITER_ONLY, FrameDetection.START_AND_END_DELIMITER)
    if needs_start and not frame_start:
        raise ProjectValidationError(f"{source}: frame detection '{detection.value}' requires frameStart")
    if needs_end and not frame_end:
        raise ProjectValidationError(f"{source}: frame detection '{detection.value}' requires frameEnd")

    groups = tuple(
        Group(
            title=group["title"],
            widget=group.get("widget", "").strip().lower(),
            datasets=tuple(_build_dataset(dataset) for dataset in group["datasets"]),
        )
        for group in doc["groups"]
    )

    parser_source = doc.get("frameParser")
    if parser_source is not None and not parser_source.strip():
        parser_source = None

    project = Project(
        title=doc["title"],
        decoder=_enum_value(doc.get("decoder"), _DECODER_CODES, DecoderMethod, DecoderMethod.PLAIN_TEXT),
        frame_detection=detection,
        frame_start=frame_start,
        frame_end=frame_end,
        hex_delimiters=hex_delimiters,
        groups=groups,
        frame_parser=parser_source,
        separator=doc.get("separator", ","),
    )
    if not project.datasets:
        LOGGER.warning("Project '%s' declares no datasets", project.title)

    # Composite widgets are resolved once here so a broken layout fails at load.
    composite_mappings(project)
    return project


def load_project(path: Path) -> Project:
    if not path.exists():
        raise ProjectLoadError(f"Project file {path} does not exist")
    doc = read_document(path, load_error=ProjectLoadError, validation_error=ProjectValidationError)
    return project_from_dict(doc, source=str(path))


def loads_project(content: str, *, source: str = "<project>") -> Project:
    doc = parse_document(content, source=source, validation_error=ProjectValidationError)
    return project_from_dict(doc, source=source)


def transport_config_from_dict(doc: dict[str, Any]) -> TransportConfig:
    """Decode a tagged transport mapping into its configuration variant."""
    validate_document(
        load_schema_validator("transport.schema.json"),
        doc,
        source="transport",
        validation_error=ProjectValidationError,
    )

    kind = doc["kind"]
    if kind == "uart":
        return UartConfig(
            port=doc["port"],
            baud_rate=int(doc.get("baud_rate", 9600)),
            data_bits=int(doc.get("data_bits", 8)),
            parity=Parity(doc.get("parity", "none")),
            stop_bits=float(doc.get("stop_bits", 1)),
            flow_control=FlowControl(doc.get("flow_control", "none")),
            auto_reconnect=bool(doc.get("auto_reconnect", False)),
            dtr=bool(doc.get("dtr", True)),
        )
    if kind == "network":
        socket_type = SocketType(doc.get("socket_type", "tcp"))
        multicast = bool(doc.get("multicast", False))
        if multicast and socket_type is not SocketType.UDP:
            raise ProjectValidationError("Multicast requires a UDP socket")
        return NetworkConfig(
            remote_address=doc["remote_address"],
            remote_port=int(doc["remote_port"]),
            socket_type=socket_type,
            local_port=int(doc.get("local_port", 0)),
            multicast=multicast,
            connect_timeout_s=float(doc.get("connect_timeout_s", 5.0)),
        )
    return BleConfig(
        device_id=doc["device_id"],
        service_id=_normalize_uuid(doc["service_id"], context="transport.service_id"),
        characteristic_id=_normalize_uuid(
            doc["characteristic_id"], context="transport.characteristic_id"
        ),
        write_with_response=bool(doc.get("write_with_response", True)),
        timeout_s=float(doc.get("timeout_s", 10.0)),
    )
