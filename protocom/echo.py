"""A user stage that echoes each request back to the client."""

from __future__ import annotations

from .codec import MessageCoder
from .handlers import ProtocolContext, UserHandler, UserHandlerFactory
from .messages import ServerResponse, UserRequest

ECHO_PREFIX = "You said: "
DECODE_ERROR_REPLY = "You stupid!!!!"


class EchoHandler(UserHandler[UserRequest, ServerResponse]):
    """Replies to every request with its text prefixed by "You said: "."""

    request_type = UserRequest
    response_type = ServerResponse

    def handle_message(self, message: UserRequest) -> None:
        self.response = ServerResponse(msg=ECHO_PREFIX + message.msg)
        self.send_response()

    def handle_decode_error(self) -> None:
        self.response = ServerResponse(msg=DECODE_ERROR_REPLY)
        self.send_response()


class EchoHandlerFactory(UserHandlerFactory):
    """Makes an EchoHandler the final state of every session."""

    def create_handler(self, ctx: ProtocolContext, coder: MessageCoder) -> EchoHandler:
        return EchoHandler(ctx, coder)