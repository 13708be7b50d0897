from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from .constants import DEFAULT_CHUNK_SIZE, TEXT_READ_SIZE
from .engine import Metrics, stream_in, stream_out
from .errors import InternalError, NotFound, TransportError
from .net import Transport, recv_exact, recv_line, send_all
from .packet import (
    STATUS_SIZE,
    Framing,
    TextResponse,
    TransferRequest,
    TransferStatus,
    encode_text_request,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransferResult:
    status: TransferStatus
    declared_size: int
    bytes_transferred: int
    metrics: Metrics

    @property
    def size_matches(self) -> bool:
        return self.bytes_transferred == self.declared_size

    @property
    def ok(self) -> bool:
        return self.status is TransferStatus.COMPLETED


@dataclass(slots=True)
class Uploader:
    """Client side of the rpc upload.

    request -> ack -> payload -> half-close -> final status. A non-ACCEPTED
    ack ends the exchange before any payload is sent.
    """

    transport: Transport
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def send_request(self, request: TransferRequest) -> None:
        send_all(self.transport, request.to_bytes())
        logger.info("requested %s of %r (%d bytes)", request.method.value, request.filename, request.size)

    def _await_status(self, phase: str) -> TransferStatus:
        try:
            raw = recv_exact(self.transport, STATUS_SIZE)
        except TransportError as exc:
            raise TransportError(f"no {phase} from {self.transport.peer}: {exc}") from exc
        return TransferStatus.decode(raw)

    def await_acknowledgment(self) -> TransferStatus:
        return self._await_status("acknowledgment")

    def stream_file(self, f: BinaryIO, size: int) -> int:
        return stream_out(self.transport, f, size, self.chunk_size)

    def signal_end_of_stream(self) -> None:
        self.transport.shutdown_write()

    def await_final_status(self) -> TransferStatus:
        return self._await_status("final status")

    def upload(self, path: str | Path) -> TransferResult:
        path = Path(path)
        try:
            size = path.stat().st_size
        except FileNotFoundError as exc:
            raise NotFound(f"{path} does not exist") from exc
        except OSError as exc:
            raise InternalError(f"cannot stat {path}: {exc}") from exc

        metrics = Metrics()
        self.send_request(TransferRequest.upload(path.name, size))

        ack = self.await_acknowledgment()
        if ack is not TransferStatus.ACCEPTED:
            logger.warning("%s refused upload of %r: %s", self.transport.peer, path.name, ack.name)
            metrics.stop()
            return TransferResult(ack, size, 0, metrics)

        try:
            f = open(path, "rb")
        except OSError as exc:
            raise InternalError(f"cannot open {path}: {exc}") from exc
        with f:
            sent = self.stream_file(f, size)
        self.signal_end_of_stream()

        status = self.await_final_status()
        metrics.bytes_transferred = sent
        metrics.stop()
        logger.info("upload of %r finished: %s (%d/%d bytes)", path.name, status.name, sent, size)
        return TransferResult(status, size, sent, metrics)


@dataclass(slots=True)
class Downloader:
    """Client side of the text protocol; it receives and measures the payload."""

    transport: Transport
    chunk_size: int = DEFAULT_CHUNK_SIZE
    framing: Framing = Framing.LINE

    def request(self, filename: str) -> None:
        send_all(self.transport, encode_text_request(filename, self.framing))

    def await_header(self) -> TextResponse:
        if self.framing is Framing.LINE:
            raw = recv_line(self.transport)
        else:
            # legacy wire: the header is whatever the first read returns
            raw = self.transport.recv(TEXT_READ_SIZE)
            if not raw:
                raise TransportError(f"{self.transport.peer} closed before sending a header")
        return TextResponse.from_bytes(raw, self.framing)

    def receive_into(self, out: BinaryIO, size: int) -> int:
        return stream_in(self.transport, out, size, self.chunk_size)

    def download(self, filename: str, dest: str | Path) -> TransferResult:
        dest = Path(dest)
        metrics = Metrics()
        self.request(filename)

        header = self.await_header()
        if not header.ok:
            logger.warning("%s refused %r: %s", self.transport.peer, filename, header.reason)
            metrics.stop()
            return TransferResult(header.status, 0, 0, metrics)

        size = header.size or 0
        logger.info("receiving %r (%d bytes) into %s", filename, size, dest)
        try:
            out = open(dest, "wb")
        except OSError as exc:
            raise InternalError(f"cannot open {dest}: {exc}") from exc

        received = 0
        try:
            with out:
                received = self.receive_into(out, size)
        finally:
            if received != size:
                dest.unlink(missing_ok=True)

        metrics.bytes_transferred = received
        metrics.stop()
        if received != size:
            logger.warning("expected %d bytes of %r but received %d", size, filename, received)
            return TransferResult(TransferStatus.SIZE_MISMATCH, size, received, metrics)
        return TransferResult(TransferStatus.COMPLETED, size, received, metrics)
