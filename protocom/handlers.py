"""Per-connection protocol state machine: key exchange, authentication, user stage."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, TypeVar

from .codec import CodecError, EncryptedMessageCoder, MessageCoder
from .frames import Frame, FrameSink
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

AUTH_ATTEMPTS = 5
AUTH_FAILURE_DELAY = 1.0

Req = TypeVar("Req", bound=Message)
Resp = TypeVar("Resp", bound=Message)


class StateHandler(ABC):
    """One state of a connection's protocol; it handles every incoming frame."""

    def __init__(self, ctx: ProtocolContext) -> None:
        self.ctx = ctx

    @abstractmethod
    def handle_frame(self, frame: Frame) -> None:
        """Process one incoming frame."""


class UserHandlerFactory(ABC):
    """Creates the handler that takes over once a client is authenticated."""

    @abstractmethod
    def create_handler(self, ctx: ProtocolContext, coder: MessageCoder) -> StateHandler | None:
        """Return the final-state handler, or None to end the session."""


class NullUserHandlerFactory(UserHandlerFactory):
    """A factory with no user stage: the session ends after authentication."""

    def create_handler(self, ctx: ProtocolContext, coder: MessageCoder) -> StateHandler | None:
        return None


class ProtocolContext:
    """Holds the current state of one connection and the sink its replies go to."""

    def __init__(
        self,
        final_state_factory: UserHandlerFactory | None = None,
        server: Any = None,
    ) -> None:
        self.final_state_factory = final_state_factory
        self.server = server
        self._io: FrameSink | None = None
        self.state: StateHandler | None = ConnectedHandler(self)

    @property
    def io(self) -> FrameSink:
        """The sink replies are written to; RuntimeError if none is set."""
        if self._io is None:
            raise RuntimeError("IO is null")
        return self._io

    @io.setter
    def io(self, sink: FrameSink | None) -> None:
        self._io = sink

    @property
    def authenticator(self) -> Any:
        """The server's authenticator, or None when there is none."""
        return getattr(self.server, "authenticator", None)

    def handle_frame(self, frame: Frame) -> None:
        """Pass a frame to the current state; ignored once the session has ended."""
        if self.state is None:
            return
        self.state.handle_frame(frame)

    def set_state(self, new_state: StateHandler | None) -> None:
        """Replace the current state; None ends the session."""
        log.debug(
            "State changed %s->%s",
            "NULL" if self.state is None else type(self.state).__name__,
            "NULL" if new_state is None else type(new_state).__name__,
        )
        self.state = new_state

    def is_active(self) -> bool:
        """Return True while the session has a state."""
        return self.state is not None


class ConnectedHandler(StateHandler):
    """First state: performs the key exchange and moves on to authentication."""

    def __init__(self, ctx: ProtocolContext) -> None:
        super().__init__(ctx)
        self.coder: MessageCoder = MessageCoder()
        self.kex_complete = False
        self._response = ServerConnectedStateResponse()

    def handle_frame(self, frame: Frame) -> None:
        self._response = ServerConnectedStateResponse(status=ConnectedStatus.INVALID_REQUEST)
        try:
            request = self.coder.decode(frame, ClientConnectedStateRequest)
        except CodecError:
            self._respond(ConnectedStatus.DECODE_ERROR)
            return
        if request.type == RequestType.REQUEST_KEX:
            self._handle_kex(request)
        elif request.type == RequestType.REQUEST_AUTH:
            self._handle_auth_request()

    def _handle_kex(self, request: ClientConnectedStateRequest) -> None:
        if self.kex_complete or request.kex is None:
            self._respond(ConnectedStatus.REQUEST_ERROR)
            return
        kex = X25519KeyExchange()
        kex.init()
        if request.kex.alg != KexAlg.KEX_ECDH:
            self._respond(ConnectedStatus.REQUEST_ERROR)
            return
        try:
            kex.load_other_key(request.kex.pkey)
        except KeyExchangeError:
            self._respond(ConnectedStatus.REQUEST_ERROR)
            return
        self._response.kex = KexMsg(alg=KexAlg.KEX_ECDH)
        try:
            kex.agree()
            key = kex.derive_key256()
        except KeyExchangeError:
            self._respond(ConnectedStatus.REQUEST_ERROR)
            return
        self._response.kex.pkey = kex.public_key or b""
        self.kex_complete = True
        encrypted = EncryptedMessageCoder(key)
        # The reply carrying our public key still goes out in the clear.
        self._respond(ConnectedStatus.OK)
        self.coder = encrypted

    def _handle_auth_request(self) -> None:
        if not self.kex_complete:
            self._respond(ConnectedStatus.REQUEST_ERROR)
            return
        self._respond(ConnectedStatus.OK)
        self.ctx.set_state(AuthenticationHandler(self.ctx, self.coder))

    def _respond(self, status: ConnectedStatus) -> None:
        self._response.status = status
        self.ctx.io.write_frame(self.coder.encode(self._response))


class AuthenticationHandler(StateHandler):
    """Second state: checks credentials and hands over to the user stage."""

    def __init__(
        self,
        ctx: ProtocolContext,
        coder: MessageCoder,
        failure_delay: float = AUTH_FAILURE_DELAY,
    ) -> None:
        super().__init__(ctx)
        self.coder = coder
        self.failure_delay = failure_delay
        self.remaining_attempts = AUTH_ATTEMPTS

    def handle_frame(self, frame: Frame) -> None:
        try:
            request = self.coder.decode(frame, ClientAuthRequest)
        except CodecError:
            self._respond(AuthStatus.DECODE_ERROR)
            return
        if request.request == AuthRequestType.AUTH_SUPPLY:
            self._do_auth(request)
        else:
            self._respond(AuthStatus.INVALID_REQUEST)

    def _do_auth(self, request: ClientAuthRequest) -> None:
        authenticator = self.ctx.authenticator
        if authenticator is None or authenticator.authenticate(request):
            self._proceed()
            return
        # Slow down brute-force attempts.
        time.sleep(self.failure_delay)
        if self.remaining_attempts > 0:
            self.remaining_attempts -= 1
            self._respond(AuthStatus.AUTH_CONTINUE)
        else:
            self._respond(AuthStatus.AUTH_REJECT)
            self.ctx.set_state(None)

    def _proceed(self) -> None:
        self._respond(AuthStatus.AUTH_ACCEPT)
        factory = self.ctx.final_state_factory
        if factory is None:
            self.ctx.set_state(None)
        else:
            self.ctx.set_state(factory.create_handler(self.ctx, self.coder))

    def _respond(self, status: AuthStatus) -> None:
        self.ctx.io.write_frame(self.coder.encode(ServerAuthResponse(status=status)))


class UserHandler(StateHandler, Generic[Req, Resp]):
    """Base of application handlers; subclasses set request_type and response_type."""

    request_type: ClassVar[type[Message]]
    response_type: ClassVar[type[Message]]

    def __init__(self, ctx: ProtocolContext, coder: MessageCoder) -> None:
        super().__init__(ctx)
        self.coder = coder
        self.response: Resp = self.response_type()  # type: ignore[assignment]

    def handle_frame(self, frame: Frame) -> None:
        try:
            message = self.coder.decode(frame, self.request_type)
        except CodecError:
            self.handle_decode_error()
            return
        self.handle_message(message)  # type: ignore[arg-type]

    @abstractmethod
    def handle_message(self, message: Req) -> None:
        """Process one decoded request."""

    @abstractmethod
    def handle_decode_error(self) -> None:
        """React to a frame that did not decode."""

    def send_response(self) -> None:
        """Encode the current response and write it to the connection."""
        self.ctx.io.write_frame(self.coder.encode(self.response))