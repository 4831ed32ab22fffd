"""Console export: decoded payloads as text lines."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, TextIO

from telemctl.core.decoder import hex_view as format_hex, payload_text


class ConsoleExport:
    def __init__(
        self,
        stream: TextIO,
        *,
        hex_view: bool = False,
        timestamps: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.stream = stream
        self.hex_view = hex_view
        self.timestamps = timestamps
        self.clock = clock
        self.lines_written = 0

    def format(self, payload: bytes) -> str:
        body = format_hex(payload) if self.hex_view else payload_text(payload).rstrip("\r\n")
        if not self.timestamps:
            return body
        return f"{self.clock().strftime('%H:%M:%S.%f')[:-3]} -> {body}"

    def __call__(self, payload: bytes) -> None:
        self.stream.write(self.format(payload) + "\n")
        self.stream.flush()
        self.lines_written += 1
