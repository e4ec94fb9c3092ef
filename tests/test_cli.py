import socket
import threading

import pytest

from protocom.cli import main, run_client_test
from protocom.client import ClientError
from protocom.echo import EchoHandlerFactory
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


def test_selftest_output(capsys):
    assert main(["selftest"]) == 0
    out = capsys.readouterr().out
    assert "08 c4 02 12 08 41 20 73 74 72 69 6e 67" in out
    assert "Message coding test complete!" in out
    assert "Key agreement test complete!" in out
    lines = out.splitlines()
    shared_a = next(line for line in lines if line.startswith("shared(A): "))
    shared_b = next(line for line in lines if line.startswith("shared(B): "))
    assert shared_a.split(": ")[1] == shared_b.split(": ")[1]


def test_run_client_test_answers(echo_server, capsys):
    host, port = echo_server.address
    answers = run_client_test(host, port, 3)
    assert answers == ["You said: Hello there"] * 3
    assert "Connected!!" in capsys.readouterr().out


def test_main_client_mode(echo_server, capsys):
    _, port = echo_server.address
    assert main(["clientTest", "--port", str(port), "--count", "2"]) == 0
    out = capsys.readouterr().out
    assert out.count("Server answer:You said: Hello there") == 2


def test_main_client_mode_without_server(capsys):
    assert main(["clientTest", "--port", str(_free_port()), "--count", "1"]) == 1
    assert "Connection failed!!!" in capsys.readouterr().out


def test_run_client_test_raises_without_server():
    with pytest.raises(ClientError):
        run_client_test("127.0.0.1", _free_port(), 1)