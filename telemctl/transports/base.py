"""Transport interfaces."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Callable, Optional, Protocol


class TransportDriver(Protocol):
    on_reconnect: Optional[Callable[[], None]]

    @property
    def is_open(self) -> bool:
        """True while the underlying handle is usable."""

    async def open(self) -> None:
        """Open the link described by the driver's configuration."""

    def read(self) -> AsyncIterator[bytes]:
        """Yield raw chunks as they arrive until the driver is closed."""

    async def write(self, data: bytes) -> int:
        """Send bytes to the device and return how many were written."""

    async def close(self) -> None:
        """Release the handle. Safe to call more than once."""


@dataclass(frozen=True)
class ReconnectPolicy:
    """Delay schedule for driver-internal reconnect loops.

    A ``factor`` of 1.0 gives a fixed delay, anything larger backs off
    exponentially up to ``max_delay_s``.
    """

    initial_delay_s: float = 0.5
    factor: float = 2.0
    max_delay_s: float = 10.0

    def delays(self):
        delay = self.initial_delay_s
        while True:
            yield delay
            delay = min(delay * self.factor, self.max_delay_s)
