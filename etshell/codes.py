"""Message header codes used on the multiplexer channel."""

from __future__ import annotations

from enum import IntEnum
from typing import Union


class HtmHeader(IntEnum):
    """One-byte message headers; each value is an ASCII character."""

    INSERT_KEYS = ord("1")
    INIT_STATE = ord("2")
    CLIENT_CLOSE_PANE = ord("3")
    APPEND_TO_PANE = ord("4")
    NEW_TAB = ord("5")
    SERVER_CLOSE_PANE = ord("8")
    NEW_SPLIT = ord("9")
    RESIZE_PANE = ord("A")
    DEBUG_LOG = ord("B")
    INSERT_DEBUG_KEYS = ord("C")
    SESSION_END = ord("D")

    @classmethod
    def from_byte(cls, value: Union[int, bytes, str]) -> "HtmHeader":
        """Look up a header from an int, a single byte or a single character."""
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            if len(value) != 1:
                raise ValueError("header must be a single character")
            return cls(ord(value))
        raw = bytes(value)
        if len(raw) != 1:
            raise ValueError("header must be a single byte")
        return cls(raw[0])