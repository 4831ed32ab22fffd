"""Frame payload decoding.

Plain text frames are never rejected: invalid UTF-8 sequences are replaced with
U+FFFD when the text view is produced. Hexadecimal and Base64 frames are strict
and raise :class:`DecodeError`.
"""

from __future__ import annotations

import base64
import binascii
import re

from telemctl.core.errors import DecodeError
from telemctl.core.model import DecoderMethod

_HEX_DIGITS_RE = re.compile(rb"^[0-9a-fA-F]*$")
_ASCII_WHITESPACE = b" \t\r\n\x0b\x0c"


def decode(frame: bytes, method: DecoderMethod) -> bytes:
    if method is DecoderMethod.PLAIN_TEXT:
        return bytes(frame)

    stripped = bytes(frame).strip(_ASCII_WHITESPACE)
    if method is DecoderMethod.HEXADECIMAL:
        if len(stripped) % 2 != 0:
            raise DecodeError(f"Hexadecimal frame has an odd digit count ({len(stripped)})")
        if not _HEX_DIGITS_RE.match(stripped):
            raise DecodeError("Hexadecimal frame contains non-hex characters")
        return bytes.fromhex(stripped.decode("ascii"))

    try:
        return base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid Base64 frame: {exc}") from exc


def encode(data: bytes, method: DecoderMethod) -> bytes:
    if method is DecoderMethod.HEXADECIMAL:
        return data.hex().encode("ascii")
    if method is DecoderMethod.BASE64:
        return base64.b64encode(data)
    return bytes(data)


def payload_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def hex_view(data: bytes) -> str:
    return data.hex(" ").upper()
