"""TCP and UDP (unicast/multicast) transports using asyncio sockets."""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
import struct
from collections.abc import AsyncIterator
from typing import Callable, Optional

from telemctl.core.errors import (
    TransportConnectError,
    TransportPermissionError,
    TransportSendError,
    TransportTimeoutError,
)
from telemctl.core.model import NetworkConfig, SocketType

LOGGER = logging.getLogger(__name__)

_CLOSED = object()


def _socket_error(what: str, exc: OSError) -> Exception:
    if exc.errno in (errno.EACCES, errno.EPERM):
        return TransportPermissionError(f"{what}: permission denied ({exc})")
    return TransportConnectError(f"{what}: {exc}")


class _DatagramQueue(asyncio.DatagramProtocol):
    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue

    def datagram_received(self, data: bytes, addr) -> None:
        self.queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        LOGGER.warning("UDP socket error: %s", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self.queue.put_nowait(_CLOSED)


class NetworkTransport:
    def __init__(self, config: NetworkConfig, *, chunk_size: int = 4096) -> None:
        self.config = config
        self.chunk_size = chunk_size
        self.on_reconnect: Optional[Callable[[], None]] = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._datagrams: asyncio.DatagramTransport | None = None
        self._queue: asyncio.Queue | None = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._writer is not None or self._datagrams is not None

    @property
    def _remote(self) -> str:
        return f"{self.config.remote_address}:{self.config.remote_port}"

    async def open(self) -> None:
        self._closing = False
        if self.config.socket_type is SocketType.TCP:
            await self._open_tcp()
        else:
            await self._open_udp()

    async def _open_tcp(self) -> None:
        local_addr = ("0.0.0.0", self.config.local_port) if self.config.local_port else None
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.config.remote_address,
                    self.config.remote_port,
                    local_addr=local_addr,
                ),
                timeout=self.config.connect_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(
                f"TCP connect to {self._remote} timed out after {self.config.connect_timeout_s}s"
            ) from exc
        except OSError as exc:
            raise _socket_error(f"TCP connect to {self._remote} failed", exc) from exc
        LOGGER.info("TCP connected to %s", self._remote)

    def _multicast_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", self.config.local_port or self.config.remote_port))
            membership = struct.pack(
                "4sl", socket.inet_aton(self.config.remote_address), socket.INADDR_ANY
            )
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        return sock

    async def _open_udp(self) -> None:
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        try:
            if self.config.multicast:
                transport, _ = await loop.create_datagram_endpoint(
                    lambda: _DatagramQueue(self._queue),
                    sock=self._multicast_socket(),
                )
            else:
                transport, _ = await loop.create_datagram_endpoint(
                    lambda: _DatagramQueue(self._queue),
                    local_addr=("0.0.0.0", self.config.local_port),
                )
        except OSError as exc:
            raise _socket_error(f"UDP bind for {self._remote} failed", exc) from exc
        self._datagrams = transport
        LOGGER.info(
            "UDP %s on port %s for %s",
            "multicast member" if self.config.multicast else "socket bound",
            transport.get_extra_info("sockname")[1],
            self._remote,
        )

    async def read(self) -> AsyncIterator[bytes]:
        if self._reader is not None:
            while not self._closing:
                try:
                    chunk = await self._reader.read(self.chunk_size)
                except OSError as exc:
                    raise TransportConnectError(f"TCP link to {self._remote} lost: {exc}") from exc
                if not chunk:
                    if self._closing:
                        return
                    raise TransportConnectError(f"TCP link to {self._remote} closed by peer")
                yield chunk
            return

        if self._queue is None:
            raise TransportConnectError(f"Socket for {self._remote} is not open")
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def write(self, data: bytes) -> int:
        try:
            if self._writer is not None:
                self._writer.write(data)
                await self._writer.drain()
            elif self._datagrams is not None:
                self._datagrams.sendto(data, (self.config.remote_address, self.config.remote_port))
            else:
                raise TransportSendError(f"Socket for {self._remote} is not open")
        except OSError as exc:
            raise TransportSendError(f"Network write to {self._remote} failed: {exc}") from exc
        return len(data)

    async def close(self) -> None:
        self._closing = True
        writer, self._writer, self._reader = self._writer, None, None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                LOGGER.debug("Ignoring error while closing %s: %s", self._remote, exc)
        datagrams, self._datagrams = self._datagrams, None
        if datagrams is not None:
            datagrams.close()
        LOGGER.info("Socket for %s closed", self._remote)
