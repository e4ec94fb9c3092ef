"""Command line: self-test and echo server, or a client load test."""

from __future__ import annotations

import argparse
import os
import time

from .client import Client, ClientError
from .codec import CodecError, EncryptedMessageCoder
from .echo import EchoHandlerFactory
from .kex import KeyExchangeError, X25519KeyExchange
from .messages import ServerResponse, TestMessage, UserRequest
from .server import Server

DEFAULT_PORT = 4444
TEST_KEY_LENGTH = 16


def run_client_test(host: str = "127.0.0.1", port: int = DEFAULT_PORT, count: int = 100) -> list[str]:
    """Connect, then send count echo requests; return the server's answers."""
    answers: list[str] = []
    with Client(host, port) as client:
        try:
            client.connect()
            if not client.authenticate("guest", ""):
                raise ClientError("authentication was not accepted")
        except ClientError:
            print("Connection failed!!!")
            raise
        print("Connected!!")
        request = UserRequest(msg="Hello there")
        for _ in range(count):
            start = time.perf_counter()
            try:
                response = client.request(request, ServerResponse)
            except ClientError:
                print("User request failed!!!")
                raise
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            print(f"Server response in {elapsed_ms}")
            print(f"Server answer:{response.msg}")
            answers.append(response.msg)
    return answers


def _self_test() -> bool:
    message = TestMessage(id=324, text="A string")
    print("Encoded message hex dump")
    print(message.serialize().hex(" "))

    coder = EncryptedMessageCoder(os.urandom(TEST_KEY_LENGTH))
    frame = coder.encode(message)
    print("Encrypted frame hex dump")
    print(frame.to_bytes().hex(" "))
    print("Message coding test complete!")
    try:
        decoded = coder.decode(frame, TestMessage)
    except CodecError:
        print("Decode failed!")
        return False
    print(decoded)

    side_a, side_b = X25519KeyExchange(), X25519KeyExchange()
    side_a.init()
    side_b.init()
    try:
        side_b.load_other_key(side_a.public_key or b"")
        side_a.load_other_key(side_b.public_key or b"")
        side_a.agree()
        side_b.agree()
    except KeyExchangeError:
        print("kex agreement failed!")
        return False
    try:
        key_a, key_b = side_a.derive_key256(), side_b.derive_key256()
    except KeyExchangeError:
        print("kdf failed")
        return False
    print(f"shared(A): {key_a.hex().upper()}")
    print(f"shared(B): {key_b.hex().upper()}")
    print("Key agreement test complete!")
    return True


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="protocom")
    parser.add_argument(
        "mode",
        nargs="?",
        default="serve",
        choices=("serve", "clientTest", "selftest"),
        help="serve (self-test, then echo server), clientTest, or selftest only",
    )
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--count", type=int, default=100)
    args = parser.parse_args(argv)

    if args.mode == "clientTest":
        try:
            run_client_test(args.host or "127.0.0.1", args.port, args.count)
        except ClientError:
            return 1
        return 0

    if not _self_test():
        return 1
    if args.mode == "selftest":
        return 0

    server = Server(args.host or "0.0.0.0", args.port)
    server.user_handler_factory = EchoHandlerFactory()
    server.bind()
    try:
        server.run()
    except KeyboardInterrupt:
        pass
    print("Server exiting")
    return 0