"""Driver construction from a decoded transport configuration."""

from __future__ import annotations

from telemctl.core.model import BleConfig, NetworkConfig, TransportConfig, UartConfig
from telemctl.core.settings import Settings
from telemctl.transports.base import ReconnectPolicy, TransportDriver
from telemctl.transports.ble_gatt import BLEGATTTransport
from telemctl.transports.network import NetworkTransport
from telemctl.transports.uart import UARTTransport


def create_driver(config: TransportConfig, settings: Settings | None = None) -> TransportDriver:
    settings = settings or Settings()
    if isinstance(config, UartConfig):
        return UARTTransport(
            config,
            reconnect_policy=ReconnectPolicy(
                initial_delay_s=settings.reconnect_initial_s,
                factor=settings.reconnect_factor,
                max_delay_s=settings.reconnect_max_s,
            ),
            chunk_size=settings.read_chunk_size,
        )
    if isinstance(config, NetworkConfig):
        return NetworkTransport(config, chunk_size=settings.read_chunk_size)
    if isinstance(config, BleConfig):
        return BLEGATTTransport(config)
    raise TypeError(f"Unsupported transport configuration: {type(config).__name__}")
