"""BLE GATT transport: notifications in, characteristic writes out."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Callable, Optional

from telemctl.core.errors import (
    TransportConnectError,
    TransportPermissionError,
    TransportSendError,
    TransportTimeoutError,
    TransportUnavailableError,
)
from telemctl.core.model import BleConfig

LOGGER = logging.getLogger(__name__)

_DISCONNECTED = object()


def _bleak_error(device_id: str, exc: Exception) -> Exception:
    message = str(exc)
    lowered = message.lower()
    if "not found" in lowered:
        return TransportConnectError(f"BLE device {device_id} was not found")
    if "powered off" in lowered or "turned off" in lowered or "no bluetooth adapter" in lowered:
        return TransportUnavailableError(f"Bluetooth adapter is off or missing: {message}")
    if "permission" in lowered or "not authorized" in lowered:
        return TransportPermissionError(f"Bluetooth permission denied: {message}")
    return TransportConnectError(f"BLE connect failed for {device_id}: {message}")


class BLEGATTTransport:
    def __init__(self, config: BleConfig) -> None:
        self.config = config
        self.on_reconnect: Optional[Callable[[], None]] = None
        self._client: Any = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._client is not None and bool(self._client.is_connected)

    def _notify_handler(self, _: Any, data: bytearray) -> None:
        self._queue.put_nowait(bytes(data))

    def _disconnected(self, _: Any) -> None:
        if not self._closing:
            LOGGER.warning("BLE device %s disconnected", self.config.device_id)
        self._queue.put_nowait(_DISCONNECTED)

    async def open(self) -> None:
        try:
            from bleak import BleakClient  # type: ignore
            from bleak.exc import BleakError  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportUnavailableError(
                "BLE transport requires 'bleak'. Install dependency and retry."
            ) from exc

        self._closing = False
        self._queue = asyncio.Queue()
        client = BleakClient(
            self.config.device_id,
            timeout=self.config.timeout_s,
            disconnected_callback=self._disconnected,
        )
        try:
            await client.connect()
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(
                f"BLE connect to {self.config.device_id} timed out after {self.config.timeout_s}s"
            ) from exc
        except (BleakError, OSError) as exc:
            raise _bleak_error(self.config.device_id, exc) from exc

        try:
            if not client.is_connected:
                raise TransportConnectError(f"BLE connect failed for {self.config.device_id}")
            if client.services.get_service(self.config.service_id) is None:
                raise TransportConnectError(
                    f"Service {self.config.service_id} not found on {self.config.device_id}"
                )
            if client.services.get_characteristic(self.config.characteristic_id) is None:
                raise TransportConnectError(
                    f"Characteristic {self.config.characteristic_id} not found on {self.config.device_id}"
                )
            await client.start_notify(self.config.characteristic_id, self._notify_handler)
        except (BleakError, OSError) as exc:
            await client.disconnect()
            raise _bleak_error(self.config.device_id, exc) from exc
        except TransportConnectError:
            await client.disconnect()
            raise

        self._client = client
        LOGGER.info(
            "BLE connected to %s (characteristic %s)",
            self.config.device_id,
            self.config.characteristic_id,
        )

    async def read(self) -> AsyncIterator[bytes]:
        if self._client is None:
            raise TransportConnectError(f"BLE device {self.config.device_id} is not connected")
        while True:
            item = await self._queue.get()
            if item is _DISCONNECTED:
                if self._closing:
                    return
                raise TransportConnectError(f"BLE device {self.config.device_id} disconnected")
            yield item

    async def write(self, data: bytes) -> int:
        if self._client is None:
            raise TransportSendError(f"BLE device {self.config.device_id} is not connected")
        try:
            await self._client.write_gatt_char(
                self.config.characteristic_id,
                data,
                response=self.config.write_with_response,
            )
        except Exception as exc:
            raise TransportSendError(f"BLE GATT write failed: {exc}") from exc
        return len(data)

    async def close(self) -> None:
        self._closing = True
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.stop_notify(self.config.characteristic_id)
        except Exception as exc:
            LOGGER.debug("stop_notify failed on %s: %s", self.config.device_id, exc)
        await client.disconnect()
        self._queue.put_nowait(_DISCONNECTED)
        LOGGER.info("BLE disconnected from %s", self.config.device_id)
