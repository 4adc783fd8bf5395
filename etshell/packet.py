"""A framed packet with a one-byte header and an optional encrypted payload."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Protocol


class PacketError(ValueError):
    """Raised for malformed packets or invalid encryption state changes."""


class Crypto(Protocol):
    def encrypt(self, data: bytes) -> bytes: ...

    def decrypt(self, data: bytes) -> bytes: ...


@dataclass
class Packet:
    """A header byte, a payload and a flag saying whether it is encrypted."""

    header: int = 255
    payload: bytes = b""
    encrypted: bool = False

    HEADER_SIZE: ClassVar[int] = 2

    def __post_init__(self) -> None:
        if not 0 <= self.header <= 255:
            raise PacketError(f"header out of range: {self.header}")
        self.payload = bytes(self.payload)
        self.encrypted = bool(self.encrypted)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Packet":
        """Build a packet from its serialized form."""
        raw = bytes(data)
        if len(raw) < cls.HEADER_SIZE:
            raise PacketError("serialized packet is too short")
        return cls(header=raw[1], payload=raw[2:], encrypted=raw[0] != 0)

    def encrypt(self, crypto: Crypto) -> None:
        """Encrypt the payload in place."""
        if self.encrypted:
            raise PacketError("Tried to encrypt a packet that was already encrypted")
        self.payload = bytes(crypto.encrypt(self.payload))
        self.encrypted = True

    def decrypt(self, crypto: Crypto) -> None:
        """Decrypt the payload in place."""
        if not self.encrypted:
            raise PacketError("Tried to decrypt a packet that wasn't encrypted")
        self.payload = bytes(crypto.decrypt(self.payload))
        self.encrypted = False

    def serialize(self) -> bytes:
        """Return the wire form: encrypted flag, header, payload."""
        return bytes((int(self.encrypted), self.header)) + self.payload

    def __len__(self) -> int:
        return self.HEADER_SIZE + len(self.payload)