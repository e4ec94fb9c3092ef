"""X25519 key agreement with a SHA-512 based 256-bit key derivation."""

from __future__ import annotations

import hashlib

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

PUBLIC_KEY_LENGTH = 32
DERIVED_KEY_LENGTH = 32


class KeyExchangeError(Exception):
    """Raised when a key exchange step cannot be completed."""


class X25519KeyExchange:
    """One side of an X25519 Diffie-Hellman exchange."""

    def __init__(self) -> None:
        self._private: X25519PrivateKey | None = None
        self._public: bytes | None = None
        self._other: X25519PublicKey | None = None
        self._shared: bytes | None = None

    def init(self) -> None:
        """Generate a fresh key pair."""
        self._private = X25519PrivateKey.generate()
        self._public = self._private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self._shared = None

    @property
    def public_key(self) -> bytes | None:
        """Own public key, or None before init()."""
        return self._public

    @property
    def shared(self) -> bytes | None:
        """The agreed shared secret, or None before agree()."""
        return self._shared

    def load_other_key(self, key: bytes) -> None:
        """Load the peer's raw public key."""
        key = bytes(key)
        if len(key) != PUBLIC_KEY_LENGTH:
            raise KeyExchangeError(f"public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(key)}")
        try:
            self._other = X25519PublicKey.from_public_bytes(key)
        except ValueError as exc:
            raise KeyExchangeError(f"invalid public key: {exc}") from exc

    def agree(self) -> bytes:
        """Compute and store the shared secret."""
        if self._private is None:
            raise KeyExchangeError("key pair has not been generated")
        if self._other is None:
            raise KeyExchangeError("peer public key has not been loaded")
        try:
            self._shared = self._private.exchange(self._other)
        except ValueError as exc:
            raise KeyExchangeError(f"key agreement failed: {exc}") from exc
        return self._shared

    def derive_key256(self) -> bytes:
        """Derive a 256-bit key from the shared secret."""
        if self._shared is None:
            raise KeyExchangeError("shared secret has not been agreed")
        return hashlib.sha512(self._shared).digest()[:DERIVED_KEY_LENGTH]