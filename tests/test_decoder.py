from __future__ import annotations

import pytest

from telemctl.core.decoder import decode, encode, hex_view, payload_text
from telemctl.core.errors import DecodeError
from telemctl.core.model import DecoderMethod


def test_plain_text_is_passed_through() -> None:
    assert decode(b"1,2,3", DecoderMethod.PLAIN_TEXT) == b"1,2,3"


def test_invalid_utf8_is_replaced() -> None:
    assert payload_text(b"t=\xff1") == "t=\ufffd1"


def test_hexadecimal_decoding() -> None:
    assert decode(b"48656C6c6f", DecoderMethod.HEXADECIMAL) == b"Hello"
    assert decode(b" 0a0b\r\n", DecoderMethod.HEXADECIMAL) == b"\x0a\x0b"


@pytest.mark.parametrize("frame", [b"abc", b"zz", b"0a 0b"])
def test_bad_hexadecimal_rejected(frame: bytes) -> None:
    with pytest.raises(DecodeError):
        decode(frame, DecoderMethod.HEXADECIMAL)


def test_base64_decoding() -> None:
    assert decode(b"SGVsbG8=\n", DecoderMethod.BASE64) == b"Hello"
    with pytest.raises(DecodeError):
        decode(b"SGVsbG8", DecoderMethod.BASE64)
    with pytest.raises(DecodeError):
        decode(b"SGV*bG8=", DecoderMethod.BASE64)


def test_encode_matches_decode() -> None:
    assert encode(b"\x01\xff", DecoderMethod.HEXADECIMAL) == b"01ff"
    assert decode(encode(b"\x01\xff", DecoderMethod.BASE64), DecoderMethod.BASE64) == b"\x01\xff"


def test_hex_view() -> None:
    assert hex_view(b"\x01\xab") == "01 AB"
