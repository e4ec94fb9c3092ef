"""Event-driven frame server with a worker thread that runs the protocol."""

from __future__ import annotations

import logging
import selectors
import socket
import threading
from dataclasses import dataclass
from typing import Any, Callable

from .frames import Frame, FrameError, FrameSink
from .framing import FrameReader, FrameWriter
from .handlers import NullUserHandlerFactory, ProtocolContext, UserHandlerFactory
from .workqueue import FetchCancelled, WorkItem, WorkQueue

log = logging.getLogger(__name__)

LISTEN_BACKLOG = 64
_WAKE_BYTE = b"\x01"
_WAKE_READ_SIZE = 64
_JOIN_POLL = 0.05


class QueueFrameSink(FrameSink):
    """Sends frames by queueing them for one connection and signalling the server."""

    def __init__(self, queue: WorkQueue, target_fd: int, notify: Callable[[], None]) -> None:
        self.queue = queue
        self.target_fd = target_fd
        self.notify = notify

    def write_frame(self, frame: Frame) -> None:
        self.queue.push(WorkItem(self.target_fd, frame))
        self.notify()


class ServerWorker:
    """Runs each connection's protocol state machine on a background thread."""

    def __init__(
        self,
        wq_in: WorkQueue,
        wq_out: WorkQueue,
        server: Any,
        user_handler_factory: UserHandlerFactory | None,
        notify: Callable[[], None],
    ) -> None:
        self.wq_in = wq_in
        self.wq_out = wq_out
        self.server = server
        self.user_handler_factory = user_handler_factory
        self.notify = notify
        self._contexts: dict[int, ProtocolContext] = {}
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._should_stop = False

    def start(self) -> None:
        """Start the worker thread."""
        if self._thread is not None:
            return
        self._should_stop = False
        self._thread = threading.Thread(target=self._run, name="protocom worker", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the worker thread and wait for it to finish."""
        self._should_stop = True
        thread = self._thread
        if thread is None:
            self.wq_in.cancel_fetch()
            return
        if thread is threading.current_thread():
            self.wq_in.cancel_fetch()
            return
        while thread.is_alive():
            self.wq_in.cancel_fetch()
            thread.join(_JOIN_POLL)
        self._thread = None

    def create_context(self, fd: int) -> None:
        """Start a fresh protocol session for a connection."""
        ctx = ProtocolContext(self.user_handler_factory, self.server)
        ctx.io = QueueFrameSink(self.wq_out, fd, self.notify)
        with self._lock:
            self._contexts[fd] = ctx

    def destroy_context(self, fd: int) -> None:
        """Forget the protocol session of a connection."""
        with self._lock:
            self._contexts.pop(fd, None)

    def set_user_handler_factory(self, factory: UserHandlerFactory | None) -> None:
        """Use another factory for sessions created from now on."""
        self.user_handler_factory = factory

    def _run(self) -> None:
        while not self._should_stop:
            try:
                item = self.wq_in.fetch()
            except FetchCancelled:
                continue
            self._dispatch(item)
        log.info("Worker thread exiting...")

    def _dispatch(self, item: WorkItem) -> None:
        with self._lock:
            ctx = self._contexts.get(item.fd)
        if ctx is None:
            log.warning("Couldn't find handler for socket %d, skipping...", item.fd)
            return
        if not ctx.is_active():
            with self._lock:
                if self._contexts.get(item.fd) is ctx:
                    del self._contexts[item.fd]
            return
        try:
            ctx.handle_frame(item.frame)
        except Exception:
            log.exception("Handling a frame for socket %d failed", item.fd)
            ctx.set_state(None)
        if not ctx.is_active():
            self.server.close_client(item.fd)


@dataclass
class ConnectionContext:
    """The server's view of one accepted connection."""

    fd: int
    sock: socket.socket
    address: Any
    reader: FrameReader
    writer: FrameWriter
    tx_ready: bool = False


def _describe(address: Any) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address)


class Server:
    """A TCP server that frames traffic and hands it to a protocol worker."""

    def __init__(self, host: str = "0.0.0.0", port: int = 0) -> None:
        self.host = host
        self.port = port
        self.authenticator: Any = None
        self.user_handler_factory: UserHandlerFactory | None = NullUserHandlerFactory()
        self.info_string = "A server."
        self.wq_in = WorkQueue()
        self.wq_out = WorkQueue()
        self.worker: ServerWorker | None = None
        self._sock: socket.socket | None = None
        self._selector = selectors.DefaultSelector()
        self._wake_recv, self._wake_send = socket.socketpair()
        self._wake_recv.setblocking(False)
        self._connections: dict[int, ConnectionContext] = {}
        self._lock = threading.RLock()
        self._running = False

    @property
    def address(self) -> tuple[str, int] | None:
        """The bound (host, port), or None while not bound."""
        if self._sock is None:
            return None
        host, port = self._sock.getsockname()[:2]
        return host, port

    def bind(self) -> None:
        """Bind and listen; raise OSError on failure."""
        if self._sock is not None:
            raise RuntimeError("server is already bound")
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setblocking(False)
            sock.bind((self.host, self.port))
            sock.listen(LISTEN_BACKLOG)
            self._selector.register(sock, selectors.EVENT_READ)
            self._selector.register(self._wake_recv, selectors.EVENT_READ)
        except (OSError, ValueError):
            sock.close()
            raise
        self._sock = sock
        host, port = sock.getsockname()[:2]
        log.info("Server bound on %s:%d", host, port)
        self._running = True

    def run(self) -> None:
        """Serve connections until stopped."""
        if self._sock is None:
            raise RuntimeError("server is not bound")
        self.worker = ServerWorker(
            self.wq_in, self.wq_out, self, self.user_handler_factory, self._notify
        )
        self.worker.start()
        try:
            while self._running:
                try:
                    events = self._selector.select()
                except OSError:
                    log.exception("select() failed")
                    self._running = False
                    continue
                for key, mask in events:
                    self._handle_event(key, mask)
        finally:
            self._shutdown()

    def stop(self) -> None:
        """Stop the event loop and the worker."""
        self._running = False
        self._wake()
        if self.worker is not None:
            self.worker.stop()

    def terminate(self) -> None:
        """Stop the loop at its next event and stop the worker."""
        self._running = False
        if self.worker is not None:
            self.worker.stop()

    def is_running(self) -> bool:
        return self._running

    def close_client(self, fd: int) -> None:
        """Close the connection with the given descriptor, if it is known."""
        with self._lock:
            conn = self._connections.get(fd)
            if conn is None:
                return
            self._close_connection(conn)

    def handle_data_in(self, conn: ConnectionContext) -> None:
        """Read whatever a connection has sent; close it on end of stream."""
        try:
            conn.reader.read_all()
        except FrameError as exc:
            log.warning("Bad data from %s: %s", _describe(conn.address), exc)
            return
        except OSError as exc:
            log.warning("Read from %s failed: %s", _describe(conn.address), exc)
            self._close_connection(conn)
            return
        if conn.reader.eof:
            log.info("Client closed connection.")
            self._close_connection(conn)

    def handle_data_out(self) -> None:
        """Start sending one queued outgoing frame."""
        item = self.wq_out.fetch_nowait()
        if item is None:
            return
        with self._lock:
            conn = self._connections.get(item.fd)
            if conn is None:
                log.warning("Connection context for %d not found", item.fd)
                return
            if not conn.writer.set_item(item):
                log.warning("Writer not ready. Dropping item...")
                return
            try:
                conn.tx_ready = conn.writer.write_all()
            except OSError as exc:
                log.warning("Write to %s failed: %s", _describe(conn.address), exc)
                self._close_connection(conn)
                return
            self._update_interest(conn)

    def _handle_event(self, key: selectors.SelectorKey, mask: int) -> None:
        if key.fileobj is self._sock:
            if mask & selectors.EVENT_READ:
                self._accept()
            return
        if key.fileobj is self._wake_recv:
            self._drain_wake()
            return
        with self._lock:
            conn = self._connections.get(key.fd)
            if conn is None:
                log.warning("Connection context for %d not found", key.fd)
                return
            if mask & selectors.EVENT_WRITE:
                self._flush(conn)
            if mask & selectors.EVENT_READ and self._connections.get(key.fd) is conn:
                self.handle_data_in(conn)

    def _accept(self) -> None:
        assert self._sock is not None
        try:
            client, address = self._sock.accept()
        except BlockingIOError:
            return
        except ConnectionAbortedError:
            log.info("Connection aborted. Skipping...")
            return
        except OSError:
            log.exception("Accept failed!")
            self._running = False
            return
        client.setblocking(False)
        fd = client.fileno()
        conn = ConnectionContext(fd, client, address, FrameReader(self.wq_in, client, fd), FrameWriter(client))
        with self._lock:
            try:
                self._selector.register(client, selectors.EVENT_READ)
            except (OSError, ValueError, KeyError):
                log.exception("Registering client failed")
                client.close()
                return
            self._connections[fd] = conn
            if self.worker is not None:
                self.worker.create_context(fd)
        log.info("Accepted connection from %s with fd: %d", _describe(address), fd)

    def _flush(self, conn: ConnectionContext) -> None:
        if conn.writer.in_progress:
            try:
                conn.tx_ready = conn.writer.write_all()
            except OSError as exc:
                log.warning("Write to %s failed: %s", _describe(conn.address), exc)
                self._close_connection(conn)
                return
        else:
            conn.tx_ready = True
        self._update_interest(conn)

    def _update_interest(self, conn: ConnectionContext) -> None:
        events = selectors.EVENT_READ
        if conn.writer.in_progress:
            events |= selectors.EVENT_WRITE
        try:
            self._selector.modify(conn.sock, events)
        except (KeyError, ValueError, OSError):
            pass

    def _close_connection(self, conn: ConnectionContext) -> None:
        with self._lock:
            if self._connections.get(conn.fd) is not conn:
                return
            log.info("Closing connection for %s", _describe(conn.address))
            del self._connections[conn.fd]
            try:
                self._selector.unregister(conn.sock)
            except (KeyError, ValueError):
                pass
            conn.sock.close()
            if self.worker is not None:
                self.worker.destroy_context(conn.fd)

    def _drain_wake(self) -> None:
        try:
            data = self._wake_recv.recv(_WAKE_READ_SIZE)
        except BlockingIOError:
            return
        for _ in data:
            self.handle_data_out()

    def _notify(self) -> None:
        self._wake_send.sendall(_WAKE_BYTE)

    def _wake(self) -> None:
        try:
            self._wake_send.send(_WAKE_BYTE)
        except OSError:
            pass

    def _shutdown(self) -> None:
        self._running = False
        if self.worker is not None:
            self.worker.stop()
        with self._lock:
            for conn in list(self._connections.values()):
                self._close_connection(conn)
            if self._sock is not None:
                try:
                    self._selector.unregister(self._sock)
                except (KeyError, ValueError):
                    pass
                self._sock.close()
                self._sock = None
        self._wake_recv.close()
        self._wake_send.close()
        self._selector.close()