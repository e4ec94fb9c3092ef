import socket
import threading

import pytest

from protocom.client import Client, ClientError
from protocom.echo import EchoHandlerFactory
from protocom.messages import ServerResponse, UserRequest
from protocom.server import Server


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def echo_server():
    server = Server("127.0.0.1", 0)
    server.user_handler_factory = EchoHandlerFactory()
    server.bind()
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    yield server
    server.stop()
    thread.join(5)


class _RejectAll:
    def authenticate(self, request):
        return False


def test_connect_authenticate_and_echo(echo_server):
    host, port = echo_server.address
    with Client(host, port) as client:
        client.connect()
        assert client.connected
        assert client.authenticate("guest", "")
        assert client.authenticated
        reply = client.request(UserRequest(msg="hi"), ServerResponse)
        assert reply.msg == "You said: hi"


def test_several_requests_keep_order(echo_server):
    host, port = echo_server.address
    with Client(host, port) as client:
        client.connect()
        client.authenticate("guest", "")
        texts = ["one", "two", "three"]
        replies = [client.request(UserRequest(msg=t), ServerResponse).msg for t in texts]
    assert replies == ["You said: " + t for t in texts]


def test_connect_twice_is_noop(echo_server):
    host, port = echo_server.address
    with Client(host, port) as client:
        client.connect()
        client.connect()
        assert client.authenticate("guest", "")


def test_rejected_credentials(echo_server):
    echo_server.authenticator = _RejectAll()
    host, port = echo_server.address
    with Client(host, port) as client:
        client.connect()
        password = "password"
        assert client.authenticate("guest", password=password) is False
        assert client.authenticated is False


def test_close_resets_state(echo_server):
    host, port = echo_server.address
    client = Client(host, port)
    client.connect()
    client.close()
    assert client.connected is False
    assert client.server_closed is True


def test_connect_to_closed_port_fails():
    client = Client("127.0.0.1", _free_port())
    with pytest.raises(ClientError):
        client.connect()
    assert client.connected is False


def test_request_without_connection_fails():
    client = Client("127.0.0.1", _free_port())
    with pytest.raises(ClientError):
        client.request(UserRequest(msg="hi"), ServerResponse)