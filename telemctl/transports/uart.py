"""Serial port transport built on pyserial-asyncio."""

from __future__ import annotations

import asyncio
import errno
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Callable, Optional

from telemctl.core.errors import (
    TransportConnectError,
    TransportPermissionError,
    TransportSendError,
    TransportUnavailableError,
)
from telemctl.core.model import FlowControl, Parity, UartConfig
from telemctl.transports.base import ReconnectPolicy

LOGGER = logging.getLogger(__name__)

_PARITY = {
    Parity.NONE: "N",
    Parity.EVEN: "E",
    Parity.ODD: "O",
    Parity.SPACE: "S",
    Parity.MARK: "M",
}


@dataclass(frozen=True)
class SerialPortInfo:
    device: str
    description: str
    hwid: str


def list_serial_ports() -> list[SerialPortInfo]:
    try:
        from serial.tools import list_ports  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportUnavailableError(
            "Serial support requires 'pyserial'. Install dependency and retry."
        ) from exc
    return [
        SerialPortInfo(device=port.device, description=port.description or "", hwid=port.hwid or "")
        for port in sorted(list_ports.comports(), key=lambda p: p.device)
    ]


def _open_error(port: str, exc: OSError) -> Exception:
    code = getattr(exc, "errno", None)
    if code in (errno.EACCES, errno.EPERM):
        return TransportPermissionError(f"Permission denied opening {port}: {exc}")
    if code == errno.EBUSY:
        return TransportConnectError(f"Serial port {port} is busy: {exc}")
    return TransportConnectError(f"Could not open serial port {port}: {exc}")


class UARTTransport:
    def __init__(
        self,
        config: UartConfig,
        *,
        reconnect_policy: ReconnectPolicy | None = None,
        chunk_size: int = 4096,
    ) -> None:
        self.config = config
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.chunk_size = chunk_size
        self.on_reconnect: Optional[Callable[[], None]] = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    def _serial_options(self) -> dict[str, Any]:
        return {
            "url": self.config.port,
            "baudrate": self.config.baud_rate,
            "bytesize": self.config.data_bits,
            "parity": _PARITY[self.config.parity],
            "stopbits": self.config.stop_bits if self.config.stop_bits == 1.5 else int(self.config.stop_bits),
            "rtscts": self.config.flow_control is FlowControl.RTS_CTS,
            "xonxoff": self.config.flow_control is FlowControl.XON_XOFF,
        }

    async def _connect(self) -> None:
        try:
            import serial_asyncio  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportUnavailableError(
                "UART transport requires 'pyserial-asyncio'. Install dependency and retry."
            ) from exc

        try:
            reader, writer = await serial_asyncio.open_serial_connection(**self._serial_options())
        except OSError as exc:
            raise _open_error(self.config.port, exc) from exc
        except ValueError as exc:
            raise TransportConnectError(f"Invalid serial settings for {self.config.port}: {exc}") from exc

        serial_port = getattr(writer.transport, "serial", None)
        if serial_port is not None:
            serial_port.dtr = self.config.dtr
        self._reader, self._writer = reader, writer
        LOGGER.info("Serial opened on %s @ %d", self.config.port, self.config.baud_rate)

    async def open(self) -> None:
        self._closing = False
        await self._connect()

    async def _reconnect(self) -> bool:
        await self._drop_handle()
        for delay in self.reconnect_policy.delays():
            if self._closing:
                return False
            LOGGER.info("Reconnecting to %s in %.2fs", self.config.port, delay)
            await asyncio.sleep(delay)
            if self._closing:
                return False
            try:
                await self._connect()
            except TransportUnavailableError:
                raise
            except TransportConnectError as exc:
                LOGGER.warning("Reconnect to %s failed: %s", self.config.port, exc)
                continue
            if self.on_reconnect is not None:
                self.on_reconnect()
            return True
        return False

    async def read(self) -> AsyncIterator[bytes]:
        while not self._closing:
            if self._reader is None:
                raise TransportConnectError(f"Serial port {self.config.port} is not open")
            try:
                chunk = await self._reader.read(self.chunk_size)
                lost: Exception | None = None if chunk else ConnectionError("end of stream")
            except OSError as exc:
                chunk, lost = b"", exc

            if chunk:
                yield chunk
                continue
            if self._closing:
                return

            LOGGER.warning("Serial link %s lost: %s", self.config.port, lost)
            if not self.config.auto_reconnect:
                await self._drop_handle()
                raise TransportConnectError(f"Serial link {self.config.port} lost: {lost}")
            if not await self._reconnect():
                return

    async def write(self, data: bytes) -> int:
        if self._writer is None:
            raise TransportSendError(f"Serial port {self.config.port} is not open")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as exc:
            raise TransportSendError(f"Serial write failed: {exc}") from exc
        return len(data)

    async def _drop_handle(self) -> None:
        writer, self._reader, self._writer = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            LOGGER.debug("Ignoring error while closing %s: %s", self.config.port, exc)

    async def close(self) -> None:
        self._closing = True
        await self._drop_handle()
        LOGGER.info("Serial closed on %s", self.config.port)
