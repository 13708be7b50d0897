from __future__ import annotations

import itertools
import queue
import socket
import time
from dataclasses import dataclass

from .constants import DEFAULT_TIMEOUT_S, TEXT_DELIMITER, TEXT_READ_SIZE
from .errors import MalformedHeader, TransportError

DEFAULT_MAX_MESSAGE = 1 << 16
ACCEPT_POLL_S = 0.5


@dataclass(frozen=True, slots=True)
class Impairment:
    """Caps every read and write at ``max_io`` bytes to force short I/O."""

    max_io: int = 0
    delay_ms: int = 0

    def cap(self, n: int) -> int:
        if self.max_io > 0:
            return min(n, self.max_io)
        return n

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class Transport:
    """Ordered, reliable, bidirectional channel between two endpoints.

    ``send`` may accept fewer bytes than offered and ``recv`` may return
    fewer than requested. ``recv`` returning ``b""`` means the peer closed.
    A ``message_shaped`` transport returns exactly one sent message per
    ``recv`` instead of an arbitrary slice of a byte stream.
    """

    peer: str = ""
    message_shaped: bool = False

    def send(self, data: bytes | memoryview) -> int:
        raise NotImplementedError

    def recv(self, max_bytes: int) -> bytes:
        raise NotImplementedError

    def shutdown_write(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def abort(self) -> None:
        """Wake a reader blocked on another thread and fail its I/O."""
        self.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def send_all(transport: Transport, data: bytes | memoryview) -> int:
    view = memoryview(data)
    sent = 0
    while sent < len(view):
        try:
            n = transport.send(view[sent:])
        except TransportError as exc:
            exc.bytes_transferred = sent
            raise
        if n <= 0:
            raise TransportError("peer stopped accepting data", sent)
        sent += n
    return sent


def recv_exact(transport: Transport, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        chunk = transport.recv(n - len(buf))
        if not chunk:
            raise TransportError(f"peer closed after {len(buf)} of {n} bytes", len(buf))
        buf += chunk
    return bytes(buf)


def recv_line(transport: Transport, limit: int = TEXT_READ_SIZE) -> bytes:
    if transport.message_shaped:
        # one message is one line
        message = transport.recv(limit + len(TEXT_DELIMITER))
        if not message:
            raise TransportError("peer closed after 0 bytes of a line")
        if not message.endswith(TEXT_DELIMITER):
            raise MalformedHeader(f"message of {len(message)} bytes is not a terminated line")
        return message[: -len(TEXT_DELIMITER)]
    # byte at a time so nothing past the delimiter is consumed
    buf = bytearray()
    while True:
        ch = transport.recv(1)
        if not ch:
            raise TransportError(f"peer closed after {len(buf)} bytes of a line", len(buf))
        if ch == TEXT_DELIMITER:
            return bytes(buf)
        buf += ch
        if len(buf) > limit:
            raise MalformedHeader(f"line longer than {limit} bytes")


class StreamTransport(Transport):
    def __init__(
        self,
        sock: socket.socket,
        peer: str = "",
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
        impairment: Impairment | None = None,
    ):
        self.sock = sock
        self.peer = peer
        self.impairment = impairment or Impairment()
        sock.settimeout(timeout_s)

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
        impairment: Impairment | None = None,
    ) -> "StreamTransport":
        try:
            sock = socket.create_connection((host, port), timeout=timeout_s)
        except OSError as exc:
            raise TransportError(f"cannot connect to {host}:{port}: {exc}") from exc
        return cls(sock, f"{host}:{port}", timeout_s, impairment)

    def send(self, data: bytes | memoryview) -> int:
        self.impairment.sleep_if_needed()
        try:
            return self.sock.send(data[: self.impairment.cap(len(data))])
        except OSError as exc:
            raise TransportError(f"send to {self.peer} failed: {exc}") from exc

    def recv(self, max_bytes: int) -> bytes:
        try:
            return self.sock.recv(self.impairment.cap(max_bytes))
        except OSError as exc:
            raise TransportError(f"recv from {self.peer} failed: {exc}") from exc

    def shutdown_write(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_WR)
        except OSError as exc:
            raise TransportError(f"half-close to {self.peer} failed: {exc}") from exc

    def abort(self) -> None:
        # blocked recv returns b"", later I/O fails; the owner still closes
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected

    def close(self) -> None:
        self.sock.close()


class MessageTransport(Transport):
    """Discrete bounded messages, the shape of a rank-addressed process group.

    Every ``send`` is one message. ``recv`` hands back exactly one message and
    its length is only known afterwards; a message longer than the receive
    buffer is a truncation error, not a short read.
    """

    message_shaped = True

    def __init__(
        self,
        inbox: queue.Queue,
        outbox: queue.Queue,
        peer: str = "",
        max_message: int = DEFAULT_MAX_MESSAGE,
        timeout_s: float | None = None,
    ):
        self._inbox = inbox
        self._outbox = outbox
        self.peer = peer
        self.max_message = max_message
        self.timeout_s = timeout_s
        self._closed = False
        self._eof = False
        self._aborted = False

    @classmethod
    def pair(
        cls,
        max_message: int = DEFAULT_MAX_MESSAGE,
        timeout_s: float | None = None,
        names: tuple[str, str] = ("rank0", "rank1"),
    ) -> tuple["MessageTransport", "MessageTransport"]:
        a_to_b: queue.Queue = queue.Queue()
        b_to_a: queue.Queue = queue.Queue()
        a = cls(b_to_a, a_to_b, names[1], max_message, timeout_s)
        b = cls(a_to_b, b_to_a, names[0], max_message, timeout_s)
        return a, b

    def send(self, data: bytes | memoryview) -> int:
        if self._closed:
            raise TransportError(f"send to {self.peer} on a closed channel")
        if len(data) > self.max_message:
            # a short count makes send_all deliver the rest as further messages
            data = data[: self.max_message]
        if len(data) == 0:
            return 0
        self._outbox.put(bytes(data))
        return len(data)

    def recv(self, max_bytes: int) -> bytes:
        if self._aborted:
            raise TransportError(f"channel to {self.peer} was aborted")
        if self._eof:
            return b""
        try:
            message = self._inbox.get(timeout=self.timeout_s)
        except queue.Empty:
            raise TransportError(f"timed out waiting for {self.peer}") from None
        if self._aborted:
            raise TransportError(f"channel to {self.peer} was aborted")
        if message is None:
            self._eof = True
            return b""
        if len(message) > max_bytes:
            raise TransportError(
                f"message of {len(message)} bytes from {self.peer} exceeds buffer of {max_bytes}"
            )
        return message

    def shutdown_write(self) -> None:
        # end of payload is implied by the declared size
        return None

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._outbox.put(None)

    def abort(self) -> None:
        self._aborted = True
        # unblock our own pending recv, then tell the peer
        self._inbox.put(None)
        self.close()


class TcpListener:
    def __init__(self, sock: socket.socket, timeout_s: float | None = DEFAULT_TIMEOUT_S):
        self.sock = sock
        self.timeout_s = timeout_s

    @classmethod
    def bind(
        cls,
        host: str,
        port: int,
        backlog: int = 16,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
    ) -> "TcpListener":
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(backlog)
        except OSError:
            sock.close()
            raise
        return cls(sock, timeout_s)

    @property
    def address(self) -> tuple[str, int]:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def accept(self, poll_s: float = ACCEPT_POLL_S) -> StreamTransport | None:
        self.sock.settimeout(poll_s)
        try:
            conn, addr = self.sock.accept()
        except socket.timeout:
            return None
        return StreamTransport(conn, f"{addr[0]}:{addr[1]}", self.timeout_s)

    def close(self) -> None:
        self.sock.close()


class MessageHub:
    """In-process rendezvous handing out message channels to a dispatcher."""

    def __init__(self, max_message: int = DEFAULT_MAX_MESSAGE, timeout_s: float | None = None):
        self.max_message = max_message
        self.timeout_s = timeout_s
        self._pending: queue.Queue = queue.Queue()
        self._ranks = itertools.count(1)
        self._closed = False

    def connect(self) -> MessageTransport:
        if self._closed:
            raise TransportError("message hub is closed")
        rank = next(self._ranks)
        client, server = MessageTransport.pair(
            self.max_message, self.timeout_s, names=(f"rank{rank}", "rank0")
        )
        self._pending.put(server)
        return client

    def accept(self, poll_s: float = ACCEPT_POLL_S) -> MessageTransport | None:
        try:
            return self._pending.get(timeout=poll_s)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed = True
