"""Protocol messages with a compact tag/length/value wire encoding."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import Any, TypeVar

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LEN = 2
_WIRE_FIXED32 = 5

_INT = "int"
_ENUM = "enum"
_STR = "str"
_BYTES = "bytes"
_MESSAGE = "message"

_MASK64 = (1 << 64) - 1

M = TypeVar("M", bound="Message")


class DecodeError(ValueError):
    """Raised when bytes do not form a valid message."""


def _encode_varint(value: int) -> bytes:
    value &= _MASK64
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _signed(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


def _key(tag: int, wire_type: int) -> bytes:
    return _encode_varint(tag << 3 | wire_type)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def varint(self) -> int:
        result = 0
        shift = 0
        while True:
            if self._pos >= len(self._data):
                raise DecodeError("truncated varint")
            if shift >= 70:
                raise DecodeError("varint is too long")
            byte = self._data[self._pos]
            self._pos += 1
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result & _MASK64
            shift += 7

    def take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise DecodeError("truncated field")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def skip(self, wire_type: int) -> None:
        if wire_type == _WIRE_VARINT:
            self.varint()
        elif wire_type == _WIRE_FIXED64:
            self.take(8)
        elif wire_type == _WIRE_LEN:
            self.take(self.varint())
        elif wire_type == _WIRE_FIXED32:
            self.take(4)
        else:
            raise DecodeError(f"unsupported wire type {wire_type}")


def _int_field(tag: int) -> Any:
    return field(default=0, metadata={"tag": tag, "kind": _INT})


def _enum_field(tag: int, enum_type: type[IntEnum]) -> Any:
    return field(default=enum_type(0), metadata={"tag": tag, "kind": _ENUM, "type": enum_type})


def _str_field(tag: int) -> Any:
    return field(default="", metadata={"tag": tag, "kind": _STR})


def _bytes_field(tag: int) -> Any:
    return field(default=b"", metadata={"tag": tag, "kind": _BYTES})


def _message_field(tag: int, message_type: type) -> Any:
    return field(default=None, metadata={"tag": tag, "kind": _MESSAGE, "type": message_type})


def _as_enum(enum_type: type[IntEnum], value: int) -> int:
    try:
        return enum_type(value)
    except ValueError:
        return value


class Message:
    """Base of all protocol messages; subclasses are dataclasses."""

    def serialize(self) -> bytes:
        """Encode the message; fields holding their default are omitted."""
        out = bytearray()
        for spec in fields(self):
            tag = spec.metadata["tag"]
            kind = spec.metadata["kind"]
            value = getattr(self, spec.name)
            if kind in (_INT, _ENUM):
                if value:
                    out += _key(tag, _WIRE_VARINT) + _encode_varint(int(value))
                continue
            if kind == _MESSAGE:
                if value is None:
                    continue
                payload = value.serialize()
            elif kind == _STR:
                if not value:
                    continue
                payload = value.encode("utf-8")
            else:
                if not value:
                    continue
                payload = bytes(value)
            out += _key(tag, _WIRE_LEN) + _encode_varint(len(payload)) + payload
        return bytes(out)

    @classmethod
    def parse(cls: type[M], data: bytes) -> M:
        """Decode a message; unknown fields are skipped."""
        specs = {spec.metadata["tag"]: spec for spec in fields(cls)}
        values: dict[str, Any] = {}
        reader = _Reader(data)
        while not reader.at_end():
            key = reader.varint()
            tag, wire_type = key >> 3, key & 0x7
            if tag == 0:
                raise DecodeError("field number 0 is invalid")
            spec = specs.get(tag)
            if spec is None:
                reader.skip(wire_type)
                continue
            kind = spec.metadata["kind"]
            expected = _WIRE_VARINT if kind in (_INT, _ENUM) else _WIRE_LEN
            if wire_type != expected:
                raise DecodeError(f"field {spec.name!r} has wire type {wire_type}")
            if kind == _INT:
                values[spec.name] = _signed(reader.varint())
            elif kind == _ENUM:
                values[spec.name] = _as_enum(spec.metadata["type"], _signed(reader.varint()))
            else:
                payload = reader.take(reader.varint())
                if kind == _STR:
                    try:
                        values[spec.name] = payload.decode("utf-8")
                    except UnicodeDecodeError as exc:
                        raise DecodeError(f"field {spec.name!r} is not valid UTF-8") from exc
                elif kind == _BYTES:
                    values[spec.name] = payload
                else:
                    values[spec.name] = spec.metadata["type"].parse(payload)
        return cls(**values)


class RequestType(IntEnum):
    UNKNOWN = 0
    REQUEST_KEX = 1
    REQUEST_AUTH = 2


class KexAlg(IntEnum):
    KEX_UNKNOWN = 0
    KEX_ECDH = 1


class ConnectedStatus(IntEnum):
    STATUS_UNKNOWN = 0
    OK = 1
    INVALID_REQUEST = 2
    DECODE_ERROR = 3
    REQUEST_ERROR = 4


class AuthRequestType(IntEnum):
    AUTH_UNKNOWN = 0
    AUTH_INFO = 1
    AUTH_SUPPLY = 2


class AuthStatus(IntEnum):
    AUTH_UNKNOWN = 0
    AUTH_ACCEPT = 1
    AUTH_CONTINUE = 2
    AUTH_REJECT = 3
    INVALID_REQUEST = 4
    DECODE_ERROR = 5


@dataclass
class KexMsg(Message):
    alg: KexAlg = _enum_field(1, KexAlg)
    pkey: bytes = _bytes_field(2)


@dataclass
class ClientConnectedStateRequest(Message):
    type: RequestType = _enum_field(1, RequestType)
    kex: KexMsg | None = _message_field(2, KexMsg)


@dataclass
class ServerConnectedStateResponse(Message):
    status: ConnectedStatus = _enum_field(1, ConnectedStatus)
    kex: KexMsg | None = _message_field(2, KexMsg)
    iv: bytes = _bytes_field(3)


@dataclass
class ClientAuthRequest(Message):
    request: AuthRequestType = _enum_field(1, AuthRequestType)
    username: str = _str_field(2)
    auth_credential: str = _str_field(3)


@dataclass
class ServerAuthResponse(Message):
    status: AuthStatus = _enum_field(1, AuthStatus)


@dataclass
class UserRequest(Message):
    msg: str = _str_field(1)


@dataclass
class ServerResponse(Message):
    msg: str = _str_field(1)


@dataclass
class TestMessage(Message):
    __test__ = False

    id: int = _int_field(1)
    text: str = _str_field(2)