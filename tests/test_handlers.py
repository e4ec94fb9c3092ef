import pytest

from protocom.codec import EncryptedMessageCoder, MessageCoder
from protocom.frames import ENCRYPTED_HEADER, PLAIN_HEADER, Frame, FrameSink
from protocom.handlers import (
    AuthenticationHandler,
    ConnectedHandler,
    NullUserHandlerFactory,
    ProtocolContext,
    UserHandler,
    UserHandlerFactory,
)
from protocom.kex import X25519KeyExchange
from protocom.messages import (
    AuthRequestType,
    AuthStatus,
    ClientAuthRequest,
    ClientConnectedStateRequest,
    ConnectedStatus,
    KexAlg,
    KexMsg,
    RequestType,
    ServerAuthResponse,
    ServerConnectedStateResponse,
    ServerResponse,
    UserRequest,
)


class ListSink(FrameSink):
    def __init__(self):
        self.frames = []

    def write_frame(self, frame):
        self.frames.append(frame)


class FakeServer:
    def __init__(self, authenticator=None):
        self.authenticator = authenticator


class FakeAuthenticator:
    def __init__(self, accept):
        self.accept = accept
        self.requests = []

    def authenticate(self, request):
        self.requests.append(request)
        return self.accept


class RecordingHandler(UserHandler):
    request_type = UserRequest
    response_type = ServerResponse

    def __init__(self, ctx, coder):
        super().__init__(ctx, coder)
        self.messages = []
        self.errors = 0

    def handle_message(self, message):
        self.messages.append(message)
        self.response = ServerResponse(msg="got " + message.msg)
        self.send_response()

    def handle_decode_error(self):
        self.errors += 1


class RecordingFactory(UserHandlerFactory):
    def create_handler(self, ctx, coder):
        return RecordingHandler(ctx, coder)


def make_ctx(factory=None, server=None):
    ctx = ProtocolContext(factory, server)
    sink = ListSink()
    ctx.io = sink
    return ctx, sink


def do_kex(ctx, sink):
    plain = MessageCoder()
    kex = X25519KeyExchange()
    kex.init()
    req = ClientConnectedStateRequest(
        type=RequestType.REQUEST_KEX, kex=KexMsg(alg=KexAlg.KEX_ECDH, pkey=kex.public_key)
    )
    ctx.handle_frame(plain.encode(req))
    resp = plain.decode(sink.frames[-1], ServerConnectedStateResponse)
    assert resp.status == ConnectedStatus.OK
    kex.load_other_key(resp.kex.pkey)
    kex.agree()
    return EncryptedMessageCoder(kex.derive_key256()), resp


def test_new_context_starts_connected():
    ctx, _ = make_ctx()
    assert isinstance(ctx.state, ConnectedHandler)
    assert ctx.is_active()


def test_kex_response_carries_server_key():
    ctx, sink = make_ctx()
    _, resp = do_kex(ctx, sink)
    assert sink.frames[0].header == PLAIN_HEADER
    assert resp.kex.alg == KexAlg.KEX_ECDH
    assert len(resp.kex.pkey) == 32
    assert ctx.state.kex_complete is True


def test_full_handshake_with_null_factory_ends_session():
    ctx, sink = make_ctx(NullUserHandlerFactory(), FakeServer())
    coder, _ = do_kex(ctx, sink)
    ctx.handle_frame(coder.encode(ClientConnectedStateRequest(type=RequestType.REQUEST_AUTH)))
    assert sink.frames[-1].header == ENCRYPTED_HEADER
    resp = coder.decode(sink.frames[-1], ServerConnectedStateResponse)
    assert resp.status == ConnectedStatus.OK
    assert isinstance(ctx.state, AuthenticationHandler)

    auth = ClientAuthRequest(request=AuthRequestType.AUTH_SUPPLY, username="alice")
    ctx.handle_frame(coder.encode(auth))
    reply = coder.decode(sink.frames[-1], ServerAuthResponse)
    assert reply.status == AuthStatus.AUTH_ACCEPT
    assert not ctx.is_active()


def test_handshake_to_user_stage():
    ctx, sink = make_ctx(RecordingFactory(), FakeServer())
    coder, _ = do_kex(ctx, sink)
    ctx.handle_frame(coder.encode(ClientConnectedStateRequest(type=RequestType.REQUEST_AUTH)))
    ctx.handle_frame(coder.encode(ClientAuthRequest(request=AuthRequestType.AUTH_SUPPLY)))
    assert isinstance(ctx.state, RecordingHandler)

    ctx.handle_frame(coder.encode(UserRequest(msg="hi")))
    assert ctx.state.messages == [UserRequest(msg="hi")]
    assert coder.decode(sink.frames[-1], ServerResponse).msg == "got hi"


def test_decode_error_in_connected_state():
    ctx, sink = make_ctx()
    ctx.handle_frame(Frame(PLAIN_HEADER, b"\xff"))
    resp = MessageCoder().decode(sink.frames[-1], ServerConnectedStateResponse)
    assert resp.status == ConnectedStatus.DECODE_ERROR


def test_auth_before_kex_is_rejected():
    ctx, sink = make_ctx()
    plain = MessageCoder()
    ctx.handle_frame(plain.encode(ClientConnectedStateRequest(type=RequestType.REQUEST_AUTH)))
    resp = plain.decode(sink.frames[-1], ServerConnectedStateResponse)
    assert resp.status == ConnectedStatus.REQUEST_ERROR
    assert isinstance(ctx.state, ConnectedHandler)


def test_kex_without_key_message_is_rejected():
    ctx, sink = make_ctx()
    plain = MessageCoder()
    ctx.handle_frame(plain.encode(ClientConnectedStateRequest(type=RequestType.REQUEST_KEX)))
    resp = plain.decode(sink.frames[-1], ServerConnectedStateResponse)
    assert resp.status == ConnectedStatus.REQUEST_ERROR


@pytest.mark.parametrize(
    "kex_msg",
    [KexMsg(alg=KexAlg.KEX_UNKNOWN, pkey=b"\x09" * 32), KexMsg(alg=KexAlg.KEX_ECDH, pkey=b"\x09" * 31)],
)
def test_bad_kex_parameters_are_rejected(kex_msg):
    ctx, sink = make_ctx()
    plain = MessageCoder()
    ctx.handle_frame(plain.encode(ClientConnectedStateRequest(type=RequestType.REQUEST_KEX, kex=kex_msg)))
    resp = plain.decode(sink.frames[-1], ServerConnectedStateResponse)
    assert resp.status == ConnectedStatus.REQUEST_ERROR
    assert ctx.state.kex_complete is False


def test_second_kex_is_rejected():
    ctx, sink = make_ctx()
    coder, _ = do_kex(ctx, sink)
    kex = X25519KeyExchange()
    kex.init()
    req = ClientConnectedStateRequest(
        type=RequestType.REQUEST_KEX, kex=KexMsg(alg=KexAlg.KEX_ECDH, pkey=kex.public_key)
    )
    ctx.handle_frame(coder.encode(req))
    resp = coder.decode(sink.frames[-1], ServerConnectedStateResponse)
    assert resp.status == ConnectedStatus.REQUEST_ERROR


def test_unknown_request_type_gets_no_reply():
    ctx, sink = make_ctx()
    ctx.handle_frame(MessageCoder().encode(ClientConnectedStateRequest(type=RequestType.UNKNOWN)))
    assert sink.frames == []
    assert ctx.is_active()


def auth_ctx(authenticator, factory=None):
    ctx, sink = make_ctx(factory, FakeServer(authenticator))
    ctx.set_state(AuthenticationHandler(ctx, MessageCoder(), failure_delay=0))
    return ctx, sink


def last_auth_status(sink):
    return MessageCoder().decode(sink.frames[-1], ServerAuthResponse).status


def test_authenticator_receives_credentials():
    authenticator = FakeAuthenticator(accept=True)
    ctx, sink = auth_ctx(authenticator, RecordingFactory())
    req = ClientAuthRequest(
        request=AuthRequestType.AUTH_SUPPLY, username="alice", auth_credential="password"
    )
    ctx.handle_frame(MessageCoder().encode(req))
    assert authenticator.requests == [req]
    assert last_auth_status(sink) == AuthStatus.AUTH_ACCEPT
    assert isinstance(ctx.state, RecordingHandler)


def test_failed_attempts_then_reject():
    ctx, sink = auth_ctx(FakeAuthenticator(accept=False))
    frame = MessageCoder().encode(ClientAuthRequest(request=AuthRequestType.AUTH_SUPPLY))
    for _ in range(5):
        ctx.handle_frame(frame)
        assert last_auth_status(sink) == AuthStatus.AUTH_CONTINUE
        assert ctx.is_active()
    ctx.handle_frame(frame)
    assert last_auth_status(sink) == AuthStatus.AUTH_REJECT
    assert not ctx.is_active()
    count = len(sink.frames)
    ctx.handle_frame(frame)
    assert len(sink.frames) == count


def test_auth_info_is_invalid_request():
    ctx, sink = auth_ctx(None)
    ctx.handle_frame(MessageCoder().encode(ClientAuthRequest(request=AuthRequestType.AUTH_INFO)))
    assert last_auth_status(sink) == AuthStatus.INVALID_REQUEST
    assert isinstance(ctx.state, AuthenticationHandler)


def test_auth_decode_error():
    ctx, sink = auth_ctx(None)
    ctx.handle_frame(Frame(PLAIN_HEADER, b"\xff"))
    assert last_auth_status(sink) == AuthStatus.DECODE_ERROR
    assert ctx.is_active()


def test_user_handler_decode_error():
    ctx, sink = make_ctx()
    handler = RecordingHandler(ctx, MessageCoder())
    ctx.set_state(handler)
    ctx.handle_frame(Frame(PLAIN_HEADER, b"\xff"))
    assert handler.errors == 1
    assert handler.messages == []
    assert sink.frames == []


def test_null_factory_returns_none():
    ctx, _ = make_ctx()
    assert NullUserHandlerFactory().create_handler(ctx, MessageCoder()) is None


def test_missing_io_raises():
    ctx = ProtocolContext(None, None)
    with pytest.raises(RuntimeError, match="IO is null"):
        ctx.handle_frame(Frame(PLAIN_HEADER, b"\xff"))


def test_set_state_none_deactivates():
    ctx, _ = make_ctx()
    ctx.set_state(None)
    assert ctx.is_active() is False
    assert ctx.state is None