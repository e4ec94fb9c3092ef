# protocom

A small request/response protocol over TCP, with a server, a blocking
client and a demonstration echo service.

Every message travels in a frame: a one-byte header, a two-byte big-endian
length and up to 65535 bytes of payload. Header `0xF0` marks a plain frame,
`0xF1` an encrypted one; any header whose high nibble is not `0xF` is
rejected.

A session goes through three stages:

1. **Key exchange.** The client sends its X25519 public key in the clear.
   The server answers with its own, and both sides derive a 256-bit key
   (the first 32 bytes of SHA-512 over the shared secret). From here on every
   frame is AES-GCM encrypted, each with a fresh random 16-byte IV placed
   before the ciphertext.
2. **Authentication.** The client supplies a username and credential. After
   a failed attempt the server waits one second and answers
   `AUTH_CONTINUE`; once the attempts are used up it answers `AUTH_REJECT`
   and ends the session.
3. **User stage.** The server hands the session to a handler made by its
   user handler factory, which serves the application's own messages.

## Installing

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Command line

```
protocom
```

runs the self checks (message encoding, an encryption round trip and a key
agreement between two local parties, printing hex dumps of each) and then
starts the echo server on `0.0.0.0:4444`. Stop it with Ctrl-C.

```
protocom selftest
```

runs the self checks only.

```
protocom clientTest
```

connects to `127.0.0.1:4444`, performs key exchange and authentication,
sends `Hello there` as an echo request 100 times and prints each answer and
how many milliseconds it took.

Options: `--host`, `--port` (default 4444) and `--count` (number of
requests for `clientTest`, default 100). The command exits with status 1
when a check or the client test fails.

## Using the library

Server side, serving the echo protocol:

```python
from protocom.server import Server
from protocom.echo import EchoHandlerFactory

server = Server("0.0.0.0", 4444)
server.user_handler_factory = EchoHandlerFactory()
server.bind()   # raises OSError if the address cannot be bound
server.run()    # blocks; call server.stop() from another thread to end it
```

`Server.address` gives the bound `(host, port)`, which is useful with port 0.

Client side:

```python
from protocom.client import Client
from protocom.messages import UserRequest, ServerResponse

password = "password"

with Client("127.0.0.1", 4444) as client:
    client.connect()
    if client.authenticate("alice", password):
        answer = client.request(UserRequest(msg="Hello there"), ServerResponse)
        print(answer.msg)   # "You said: Hello there"
```

`connect()` raises `protocom.client.ClientError` when the connection, the
key exchange or a server reply fails; `authenticate()` returns whether the
server accepted the credentials.

### Your own user stage

Subclass `protocom.handlers.UserHandler`, set `request_type` and
`response_type` to message classes, implement `handle_message()` and
`handle_decode_error()`, set `self.response` and call `send_response()`.
Return the handler from a `UserHandlerFactory.create_handler(ctx, coder)`
and assign the factory to `Server.user_handler_factory` before `run()`.
`protocom.echo.EchoHandler` is a complete example.

## Modules

- `protocom.frames` – `Frame` (with `to_bytes()` / `from_bytes()`), `FrameError`, and the `FrameSink` and `FrameIO` interfaces.
- `protocom.messages` – the protocol messages (`ClientConnectedStateRequest`, `ServerConnectedStateResponse`, `KexMsg`, `ClientAuthRequest`, `ServerAuthResponse`, `UserRequest`, `ServerResponse`, `TestMessage`), their status enums, and a tag/length/value encoding via `serialize()` / `parse()`.
- `protocom.codec` – `MessageCoder` (plain) and `EncryptedMessageCoder` (AES-GCM); both raise `CodecError`.
- `protocom.kex` – `X25519KeyExchange` with `derive_key256()`; raises `KeyExchangeError`.
- `protocom.workqueue` – `WorkQueue`, a thread-safe FIFO of `WorkItem`s with an optional item limit and a cancellable blocking `fetch()`.
- `protocom.framing` – non-blocking `FrameReader` / `FrameWriter` and blocking `SocketFrameIO`.
- `protocom.handlers` – `ProtocolContext` and the session states `ConnectedHandler`, `AuthenticationHandler` and `UserHandler`, plus `UserHandlerFactory` and `NullUserHandlerFactory`.
- `protocom.server` – `Server`, its `ServerWorker` thread and `QueueFrameSink`.
- `protocom.client` – `Client`.
- `protocom.echo` – `EchoHandler` and `EchoHandlerFactory`.
- `protocom.cli` – the `protocom` command and `run_client_test()`.

## What it does not do

- **No credential store.** The package ships no authenticator. With
  `Server.authenticator` left as `None`, every client that supplies
  credentials is accepted. To check credentials, assign an object with an
  `authenticate(request)` method that takes a `ClientAuthRequest` and
  returns a bool.
- **No user stage by default.** A plain `Server` uses
  `NullUserHandlerFactory`, so a session ends right after authentication
  and the server closes the connection. Set `user_handler_factory` to serve
  anything further.
- **No server identity check.** The key exchange is anonymous; the client
  does not verify whose public key it received.