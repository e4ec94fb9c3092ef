"""Conversion between messages and frames, plain or AES-GCM encrypted."""

from __future__ import annotations

import os
from typing import TypeVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .frames import ENCRYPTED_HEADER, MAX_PAYLOAD, PLAIN_HEADER, Frame
from .messages import DecodeError, Message

IV_SIZE = 16
TAG_SIZE = 16

M = TypeVar("M", bound=Message)


class CodecError(Exception):
    """Raised when a message cannot be encoded or a frame decoded."""


class MessageCoder:
    """Plain coder: the frame payload is the serialized message."""

    def encode(self, message: Message) -> Frame:
        payload = message.serialize()
        if len(payload) > MAX_PAYLOAD:
            raise CodecError(f"message of {len(payload)} bytes does not fit in a frame")
        return Frame(PLAIN_HEADER, payload)

    def decode(self, frame: Frame, message_type: type[M]) -> M:
        try:
            return message_type.parse(frame.msg)
        except DecodeError as exc:
            raise CodecError(f"cannot decode {message_type.__name__}: {exc}") from exc


class EncryptedMessageCoder(MessageCoder):
    """AES-GCM coder; each frame carries a fresh random IV before the ciphertext."""

    def __init__(self, key: bytes) -> None:
        try:
            self._aead = AESGCM(bytes(key))
        except ValueError as exc:
            raise CodecError(f"invalid key: {exc}") from exc

    def encode(self, message: Message) -> Frame:
        plain = super().encode(message)
        iv = os.urandom(IV_SIZE)
        sealed = iv + self._aead.encrypt(iv, plain.msg, None)
        if len(sealed) > MAX_PAYLOAD:
            raise CodecError("encrypted message does not fit in a frame")
        return Frame(ENCRYPTED_HEADER, sealed)

    def decode(self, frame: Frame, message_type: type[M]) -> M:
        if len(frame) <= IV_SIZE or frame.header != ENCRYPTED_HEADER:
            raise CodecError("not an encrypted frame")
        iv, ciphertext = frame.msg[:IV_SIZE], frame.msg[IV_SIZE:]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext, None)
        except InvalidTag as exc:
            raise CodecError("frame authentication failed") from exc
        return super().decode(Frame(PLAIN_HEADER, plaintext), message_type)