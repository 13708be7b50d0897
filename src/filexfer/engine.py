from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable

from .constants import DEFAULT_CHUNK_SIZE
from .errors import InternalError, TransportError
from .net import Transport, send_all
from .packet import TransferRequest

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Metrics:
    bytes_transferred: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    def stop(self) -> None:
        self.end_ts = time.monotonic()

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_transferred * 8 / 1_000_000) / self.duration_s


@dataclass(slots=True)
class Connection:
    """Everything one accepted endpoint owns for a single transfer.

    Owned by exactly one handler thread. ``close`` releases the output handle
    and the transport and is safe to call more than once.
    """

    transport: Transport
    request: TransferRequest | None = None
    received: int = 0
    path: Path | None = None
    out: BinaryIO | None = None
    metrics: Metrics = field(default_factory=Metrics)

    @property
    def peer(self) -> str:
        return self.transport.peer

    def open_output(self, path: Path) -> BinaryIO:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.out = open(path, "wb")
        except OSError as exc:
            raise InternalError(f"cannot open {path} for writing: {exc}") from exc
        self.path = path
        return self.out

    def close_output(self) -> None:
        if self.out is not None:
            out, self.out = self.out, None
            try:
                out.close()
            except OSError as exc:
                raise InternalError(f"cannot flush {self.path}: {exc}") from exc

    def discard_output(self) -> None:
        if self.out is not None:
            out, self.out = self.out, None
            try:
                out.close()
            except OSError:
                logger.debug("close of partial %s failed", self.path)
        if self.path is not None:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as exc:
                logger.error("could not remove partial file %s: %s", self.path, exc)
            else:
                logger.info("removed partial file %s", self.path)

    def close(self) -> None:
        try:
            if self.out is not None:
                self.discard_output()
        finally:
            self.transport.close()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def stream_out(
    transport: Transport,
    f: BinaryIO,
    size: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Copy at most ``size`` bytes of ``f`` to the transport.

    Each read asks for ``min(remaining, chunk_size)``, so bytes appended to
    the file after ``size`` was declared are never sent. Returns the short
    count if the file ends early. A transport failure re-raises with
    ``bytes_transferred`` set to the total sent so far.
    """
    sent = 0
    while sent < size:
        try:
            chunk = f.read(min(size - sent, chunk_size))
        except OSError as exc:
            raise InternalError(f"read failed after {sent} bytes: {exc}") from exc
        if not chunk:
            logger.debug("source ended after %d of %d bytes", sent, size)
            break
        try:
            send_all(transport, chunk)
        except TransportError as exc:
            exc.bytes_transferred += sent
            raise
        sent += len(chunk)
        logger.debug("sent %d bytes to %s", sent, transport.peer)
    return sent


def stream_in(
    transport: Transport,
    out: BinaryIO,
    size: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_chunk: Callable[[int], None] | None = None,
) -> int:
    """Copy exactly ``size`` bytes from the transport into ``out``.

    Each read asks for ``min(remaining, chunk_size)`` so the count can never
    pass ``size``. Returns early with the short count if the peer closes.
    """
    received = 0
    while received < size:
        try:
            chunk = transport.recv(min(size - received, chunk_size))
        except TransportError as exc:
            exc.bytes_transferred = received
            raise
        if not chunk:
            logger.debug("%s closed after %d of %d bytes", transport.peer, received, size)
            break
        try:
            out.write(chunk)
        except OSError as exc:
            raise InternalError(f"write failed after {received} bytes: {exc}") from exc
        received += len(chunk)
        if on_chunk is not None:
            on_chunk(received)
    return received
