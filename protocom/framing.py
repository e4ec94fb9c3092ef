"""Frame transport over sockets: non-blocking reader and writer, blocking frame I/O."""

from __future__ import annotations

import socket
from enum import Enum, auto

from .frames import Frame, FrameError, FrameIO, is_valid_header
from .workqueue import WorkItem, WorkQueue


class _RxState(Enum):
    HEADER = auto()
    LENGTH = auto()
    MESSAGE = auto()


class FrameReader:
    """Incrementally reads frames from a non-blocking socket into a work queue."""

    def __init__(self, queue: WorkQueue, sock: socket.socket, fd: int | None = None) -> None:
        self.queue = queue
        self.sock = sock
        self.fd = sock.fileno() if fd is None else fd
        self._reset()

    def _reset(self) -> None:
        self.eof = False
        self.again = False
        self._state = _RxState.HEADER
        self._header = 0
        self._buffer = bytearray()
        self._remaining = 0

    def _recv(self, count: int) -> bytes:
        if count == 0:
            return b""
        try:
            data = self.sock.recv(count)
        except BlockingIOError:
            self.again = True
            return b""
        if not data:
            self.eof = True
            return b""
        self.eof = False
        self.again = False
        return data

    def _push(self) -> None:
        self.queue.push(WorkItem(self.fd, Frame(self._header, bytes(self._buffer))))
        self._reset()

    def try_read(self) -> bool:
        """Make one read attempt; return True if any bytes arrived.

        Raises FrameError when the header byte lacks the frame marker.
        """
        if self._state is _RxState.HEADER:
            data = self._recv(1)
            if data:
                header = data[0]
                if not is_valid_header(header):
                    self._reset()
                    raise FrameError(f"invalid frame header 0x{header:02x}")
                self._header = header
                self._buffer = bytearray()
                self._remaining = 2
                self._state = _RxState.LENGTH
        elif self._state is _RxState.LENGTH:
            data = self._recv(self._remaining)
            self._buffer += data
            self._remaining -= len(data)
            if not self._remaining:
                length = int.from_bytes(self._buffer, "big")
                self._buffer = bytearray()
                self._remaining = length
                self._state = _RxState.MESSAGE
                if length == 0:
                    self._push()
        else:
            data = self._recv(self._remaining)
            self._buffer += data
            self._remaining -= len(data)
            if not self._remaining:
                self._push()
        return bool(data)

    def read_all(self) -> None:
        """Read until the socket has nothing more to give."""
        while self.try_read():
            pass


class FrameWriter:
    """Incrementally writes one queued frame to a non-blocking socket."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.fd: int | None = None
        self.in_progress = False
        self._pending = b""
        self.reset()

    def reset(self) -> None:
        """Clear the status flags and restart the current frame from its first byte."""
        self.again = False
        self.eof = False
        self._offset = 0

    def set_item(self, item: WorkItem) -> bool:
        """Start sending an item; return False if a write is still in progress."""
        if self.in_progress:
            return False
        self.fd = item.fd
        self._pending = item.frame.to_bytes()
        self.in_progress = True
        self.reset()
        return True

    def _send(self, data: bytes) -> int:
        if not data:
            return 0
        try:
            sent = self.sock.send(data)
        except BlockingIOError:
            self.again = True
            return 0
        if not sent:
            self.eof = True
            return 0
        self.again = False
        return sent

    def try_write(self) -> bool:
        """Make one send attempt; return True if any bytes were sent."""
        if not self.in_progress:
            return False
        sent = self._send(self._pending[self._offset:])
        self._offset += sent
        if self._offset >= len(self._pending):
            self.in_progress = False
        return sent > 0

    def write_all(self) -> bool:
        """Send as much as possible; return True once the whole frame is out."""
        while self.try_write():
            pass
        return not self.in_progress


class SocketFrameIO(FrameIO):
    """Blocking frame reads and writes over a connected socket."""

    def __init__(self, sock: socket.socket, timeout: float = 0) -> None:
        self.sock = sock
        self.eof = False
        self.read_exhausted = False
        self.write_exhausted = False
        if timeout > 0:
            self.set_timeout(timeout)

    def set_timeout(self, seconds: float) -> None:
        """Set the send and receive timeout of the socket."""
        self.sock.settimeout(seconds)

    def _recv_exact(self, count: int) -> bytes:
        data = bytearray()
        while len(data) < count:
            if self.eof:
                raise ConnectionError("connection is closed")
            try:
                chunk = self.sock.recv(count - len(data))
            except (TimeoutError, BlockingIOError) as exc:
                self.read_exhausted = True
                raise TimeoutError("receive timed out") from exc
            if not chunk:
                self.eof = True
                raise ConnectionError("connection closed by peer")
            self.read_exhausted = False
            data += chunk
        return bytes(data)

    def read_frame(self) -> Frame:
        header = self._recv_exact(1)[0]
        if not is_valid_header(header):
            raise FrameError(f"invalid frame header 0x{header:02x}")
        length = int.from_bytes(self._recv_exact(2), "big")
        return Frame(header, self._recv_exact(length))

    def write_frame(self, frame: Frame) -> None:
        if self.eof:
            raise ConnectionError("connection is closed")
        try:
            self.sock.sendall(frame.to_bytes())
        except (TimeoutError, BlockingIOError) as exc:
            self.write_exhausted = True
            raise TimeoutError("send timed out") from exc
        except ConnectionError:
            self.eof = True
            raise
        self.write_exhausted = False