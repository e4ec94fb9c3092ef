"""Protocol frames and the abstract endpoints that carry them."""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass

FRAME_MARKER = 0xF0
PLAIN_HEADER = 0xF0
ENCRYPTED_HEADER = 0xF1
MAX_PAYLOAD = 0xFFFF

_PREFIX = struct.Struct("!BH")
PREFIX_SIZE = _PREFIX.size


class FrameError(ValueError):
    """Raised when a frame cannot be built or parsed."""


def is_valid_header(header: int) -> bool:
    """Return True if the header byte carries the frame marker."""
    return header & 0xF0 == FRAME_MARKER


@dataclass(frozen=True)
class Frame:
    """A header byte followed by a length-prefixed payload."""

    header: int
    msg: bytes = b""

    def __post_init__(self) -> None:
        if not 0 <= self.header <= 0xFF:
            raise FrameError(f"header {self.header!r} does not fit in a byte")
        object.__setattr__(self, "msg", bytes(self.msg))
        if len(self.msg) > MAX_PAYLOAD:
            raise FrameError(f"payload of {len(self.msg)} bytes exceeds {MAX_PAYLOAD}")

    def __len__(self) -> int:
        return len(self.msg)

    def to_bytes(self) -> bytes:
        """Return the wire form: header, big-endian length, payload."""
        return _PREFIX.pack(self.header, len(self.msg)) + self.msg

    @classmethod
    def from_bytes(cls, data: bytes) -> Frame:
        """Parse exactly one frame from its wire form."""
        data = bytes(data)
        if len(data) < PREFIX_SIZE:
            raise FrameError("frame prefix is truncated")
        header, length = _PREFIX.unpack_from(data)
        if not is_valid_header(header):
            raise FrameError(f"invalid frame header 0x{header:02x}")
        payload = data[PREFIX_SIZE:]
        if len(payload) < length:
            raise FrameError("frame payload is truncated")
        if len(payload) > length:
            raise FrameError("trailing bytes after frame payload")
        return cls(header, payload)


class FrameSink(ABC):
    """Something frames can be written to."""

    @abstractmethod
    def write_frame(self, frame: Frame) -> None:
        """Send one frame."""


class FrameIO(ABC):
    """A bidirectional frame endpoint."""

    @abstractmethod
    def read_frame(self) -> Frame:
        """Receive one frame."""

    @abstractmethod
    def write_frame(self, frame: Frame) -> None:
        """Send one frame."""