"""Core data models used across loader, pipeline, exporters and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Union


class FrameDetection(Enum):
    END_DELIMITER_ONLY = "end_delimiter_only"
    START_DELIMITER_ONLY = "start_delimiter_only"
    START_AND_END_DELIMITER = "start_and_end_delimiter"
    NO_DELIMITERS = "no_delimiters"


class DecoderMethod(Enum):
    PLAIN_TEXT = "plain_text"
    HEXADECIMAL = "hexadecimal"
    BASE64 = "base64"


class Parity(Enum):
    NONE = "none"
    EVEN = "even"
    ODD = "odd"
    SPACE = "space"
    MARK = "mark"


class FlowControl(Enum):
    NONE = "none"
    RTS_CTS = "rts_cts"
    XON_XOFF = "xon_xoff"


class SocketType(Enum):
    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True)
class UartConfig:
    kind: ClassVar[str] = "uart"

    port: str
    baud_rate: int = 9600
    data_bits: int = 8
    parity: Parity = Parity.NONE
    stop_bits: float = 1
    flow_control: FlowControl = FlowControl.NONE
    auto_reconnect: bool = False
    dtr: bool = True


@dataclass(frozen=True)
class NetworkConfig:
    kind: ClassVar[str] = "network"

    remote_address: str
    remote_port: int
    socket_type: SocketType = SocketType.TCP
    local_port: int = 0
    multicast: bool = False
    connect_timeout_s: float = 5.0


@dataclass(frozen=True)
class BleConfig:
    kind: ClassVar[str] = "ble"

    device_id: str
    service_id: str
    characteristic_id: str
    write_with_response: bool = True
    timeout_s: float = 10.0


TransportConfig = Union[UartConfig, NetworkConfig, BleConfig]


@dataclass(frozen=True)
class Dataset:
    title: str
    index: int
    units: str = ""
    widget: str = ""
    min: float | None = None
    max: float | None = None
    alarm: float | None = None
    overview: bool = False


@dataclass(frozen=True)
class Group:
    title: str
    widget: str
    datasets: tuple[Dataset, ...]


@dataclass(frozen=True)
class Project:
    title: str
    decoder: DecoderMethod
    frame_detection: FrameDetection
    frame_start: bytes
    frame_end: bytes
    hex_delimiters: bool
    groups: tuple[Group, ...]
    frame_parser: str | None = None
    separator: str = ","

    @property
    def datasets(self) -> tuple[Dataset, ...]:
        return tuple(dataset for group in self.groups for dataset in group.datasets)

    @property
    def max_index(self) -> int:
        """Highest declared frame index, -1 for a project without datasets."""
        return max((dataset.index for dataset in self.datasets), default=-1)

    @property
    def field_count(self) -> int:
        return self.max_index + 1


@dataclass(frozen=True)
class DatasetValue:
    title: str
    index: int
    value: str
    numeric: float | None
    units: str = ""
    alarm: bool = False


@dataclass(frozen=True)
class GroupValues:
    title: str
    widget: str
    datasets: tuple[DatasetValue, ...]


@dataclass(frozen=True)
class CompositeValue:
    """Axis values of a multi-dataset widget (IMU triple, GPS fix)."""

    group: str
    widget: str
    axes: tuple[tuple[str, float], ...]

    def axis(self, name: str) -> float:
        for axis_name, value in self.axes:
            if axis_name == name:
                return value
        raise KeyError(name)


@dataclass(frozen=True)
class DataFrame:
    """One published Dataset snapshot."""

    title: str
    timestamp: datetime
    fields: tuple[str, ...]
    groups: tuple[GroupValues, ...]
    composites: tuple[CompositeValue, ...] = field(default=())

    @property
    def values(self) -> tuple[DatasetValue, ...]:
        return tuple(value for group in self.groups for value in group.datasets)


@dataclass(frozen=True)
class ReplayRow:
    row: int
    fields: tuple[str, ...]
    timestamp: datetime | None = None
