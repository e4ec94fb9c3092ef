"""Blocking client: key exchange, authentication and request/response calls."""

from __future__ import annotations

import logging
import socket
from typing import TypeVar

from .codec import CodecError, EncryptedMessageCoder, MessageCoder
from .frames import FrameError
from .framing import SocketFrameIO
from .kex import KeyExchangeError, X25519KeyExchange
from .messages import (
    AuthRequestType,
    AuthStatus,
    ClientAuthRequest,
    ClientConnectedStateRequest,
    ConnectedStatus,
    KexAlg,
    KexMsg,
    Message,
    RequestType,
    ServerAuthResponse,
    ServerConnectedStateResponse,
)

log = logging.getLogger(__name__)

SOCKET_TIMEOUT = 10.0

M = TypeVar("M", bound=Message)


class ClientError(Exception):
    """Raised when the client cannot talk to the server as the protocol requires."""


class Client:
    """A connection to a protocol server."""

    def __init__(self, host: str = "127.0.0.1", port: int = 4444) -> None:
        self.host = host
        self.port = port
        self.connected = False
        self.authenticated = False
        self._sock: socket.socket | None = None
        self._io: SocketFrameIO | None = None
        self._coder: MessageCoder = MessageCoder()

    @property
    def server_closed(self) -> bool:
        """True once the server has closed the connection (or none is open)."""
        return self._io is None or self._io.eof

    def _open(self) -> None:
        if self._sock is not None:
            return
        try:
            sock = socket.create_connection((self.host, self.port), timeout=SOCKET_TIMEOUT)
        except OSError as exc:
            raise ClientError(f"cannot connect to {self.host}:{self.port}: {exc}") from exc
        self._sock = sock
        self._io = SocketFrameIO(sock)

    def _send(self, message: Message) -> None:
        if self._io is None:
            raise ClientError("not connected")
        try:
            frame = self._coder.encode(message)
            self._io.write_frame(frame)
        except CodecError as exc:
            raise ClientError(f"cannot encode message: {exc}") from exc
        except OSError as exc:
            raise ClientError(f"send failed: {exc}") from exc

    def _fetch(self, message_type: type[M]) -> M:
        if self._io is None:
            raise ClientError("not connected")
        try:
            frame = self._io.read_frame()
        except (OSError, FrameError) as exc:
            raise ClientError(f"receive failed: {exc}") from exc
        try:
            message = self._coder.decode(frame, message_type)
        except CodecError as exc:
            raise ClientError(f"cannot decode response: {exc}") from exc
        log.debug("Received: %r", message)
        return message

    @staticmethod
    def _check_ok(response: ServerConnectedStateResponse) -> None:
        if response.status != ConnectedStatus.OK:
            raise ClientError(f"server responded with invalid status: {response!r}")

    def connect(self) -> None:
        """Open the connection, agree on a key and enter the authentication stage."""
        if self.connected:
            return
        self._open()
        try:
            self._handshake()
        except ClientError:
            self.close()
            raise
        self.connected = True

    def _handshake(self) -> None:
        kex = X25519KeyExchange()
        kex.init()
        public_key = kex.public_key
        if public_key is None:
            raise ClientError("key pair was not generated")
        self._send(
            ClientConnectedStateRequest(
                type=RequestType.REQUEST_KEX,
                kex=KexMsg(alg=KexAlg.KEX_ECDH, pkey=public_key),
            )
        )
        response = self._fetch(ServerConnectedStateResponse)
        self._check_ok(response)
        if response.kex is None:
            raise ClientError("response does not have kex message")
        if response.kex.alg != KexAlg.KEX_ECDH:
            raise ClientError("server chose an unsupported key exchange")
        try:
            kex.load_other_key(response.kex.pkey)
            kex.agree()
            key = kex.derive_key256()
        except KeyExchangeError as exc:
            raise ClientError(f"failed to load key or agree: {exc}") from exc
        self._coder = EncryptedMessageCoder(key)
        self._send(ClientConnectedStateRequest(type=RequestType.REQUEST_AUTH))
        self._check_ok(self._fetch(ServerConnectedStateResponse))

    def authenticate(self, username: str, password: str) -> bool:
        """Supply credentials; return True if the server accepted them."""
        self._send(
            ClientAuthRequest(
                request=AuthRequestType.AUTH_SUPPLY,
                username=username,
                auth_credential=password,
            )
        )
        response = self._fetch(ServerAuthResponse)
        if response.status != AuthStatus.AUTH_ACCEPT:
            return False
        self.authenticated = True
        return True

    def request(self, request: Message, response_type: type[M]) -> M:
        """Send a request and wait for its response."""
        self._send(request)
        return self._fetch(response_type)

    def close(self) -> None:
        """Close the connection; the client may connect again afterwards."""
        if self._sock is not None:
            self._sock.close()
        self._sock = None
        self._io = None
        self._coder = MessageCoder()
        self.connected = False
        self.authenticated = False

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()