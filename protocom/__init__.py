"""Framed request/response protocol over TCP with X25519 key exchange and AES-GCM."""

__version__ = "0.1.0"

__all__ = ["__version__"]