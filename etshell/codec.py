"""Base64 helpers used for framing data on the multiplexer channel."""

from __future__ import annotations

import base64
from typing import Union

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"

_LOOKUP = {char: value for value, char in enumerate(ALPHABET)}

TextLike = Union[str, bytes, bytearray, memoryview]


def _as_text(text: TextLike) -> str:
    if isinstance(text, str):
        return text
    return bytes(text).decode("ascii")


def encode(data: bytes) -> str:
    """Encode bytes as padded base64 text."""
    return base64.b64encode(bytes(data)).decode("ascii")


def encoded_length(length: int) -> int:
    """Return the length of the padded base64 text for ``length`` input bytes."""
    if length < 0:
        raise ValueError("length must not be negative")
    return (length + 2 - ((length + 2) % 3)) // 3 * 4


def decoded_length(text: TextLike) -> int:
    """Return the number of bytes that ``text`` decodes to."""
    value = _as_text(text)
    padding = len(value) - len(value.rstrip("="))
    result = (6 * len(value)) // 8 - padding
    if result < 0:
        raise ValueError("base64 text has more padding than content")
    return result


def strip_padding(text: str) -> str:
    """Remove trailing ``=`` padding characters."""
    return text.rstrip("=")


def _decode_group(values: list[int]) -> bytes:
    a, b, c, d = values + [0] * (4 - len(values))
    triple = (
        ((a << 2) + ((b & 0x30) >> 4)) & 0xFF,
        (((b & 0x0F) << 4) + ((c & 0x3C) >> 2)) & 0xFF,
        (((c & 0x03) << 6) + d) & 0xFF,
    )
    return bytes(triple[: len(values) - 1])


def decode(text: TextLike) -> bytes:
    """Decode base64 text, stopping at the first padding character.

    Raises ValueError when the text holds characters outside the alphabet or
    when the decoded size does not match the size implied by the text.
    """
    value = _as_text(text)
    body = value.split("=", 1)[0]
    try:
        values = [_LOOKUP[char] for char in body]
    except KeyError as exc:
        raise ValueError(f"invalid base64 character {exc.args[0]!r}") from None

    out = bytearray()
    for start in range(0, len(values), 4):
        out += _decode_group(values[start : start + 4])

    if len(out) != decoded_length(value):
        raise ValueError("malformed base64 text")
    return bytes(out)