from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass

from .config import ServerConfig
from .constants import REASON_INTERNAL, REASON_NOT_FOUND, TEXT_READ_SIZE
from .engine import Connection, Metrics, stream_in, stream_out
from .errors import (
    InternalError,
    MalformedHeader,
    NotFound,
    ProtocolError,
    SizeMismatch,
    TransportError,
)
from .net import Transport, recv_exact, recv_line, send_all
from .packet import (
    HEADER_SIZE,
    Framing,
    TextResponse,
    TransferRequest,
    TransferStatus,
    decode_text_request,
)

logger = logging.getLogger(__name__)


class ReceiverState(enum.Enum):
    AWAITING_REQUEST = "awaiting_request"
    VALIDATING = "validating"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    STREAMING = "streaming"
    COMPLETED = "completed"
    SIZE_MISMATCH = "size_mismatch"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class TransferOutcome:
    peer: str
    filename: str | None
    state: ReceiverState
    status: TransferStatus | None
    bytes_transferred: int
    declared_size: int
    metrics: Metrics


def _report_status(conn: Connection, status: TransferStatus) -> None:
    # the outcome is already decided; a peer that went away just misses it
    try:
        send_all(conn.transport, status.encode())
    except TransportError as exc:
        logger.warning("could not report %s to %s: %s", status.name, conn.peer, exc)


@dataclass(slots=True)
class UploadReceiver:
    """Server side of the rpc upload, one instance call per connection."""

    config: ServerConfig

    def __call__(self, transport: Transport) -> TransferOutcome:
        with Connection(transport) as conn:
            return self.handle(conn)

    def validate(self, raw: bytes) -> TransferRequest:
        request = TransferRequest.from_bytes(raw)
        if request.method not in self.config.allowed_methods:
            raise NotFound(f"method {request.method.value} is not served")
        return request

    def handle(self, conn: Connection) -> TransferOutcome:
        state = ReceiverState.AWAITING_REQUEST
        status: TransferStatus | None = None
        try:
            raw = recv_exact(conn.transport, HEADER_SIZE)
            state = ReceiverState.VALIDATING
            request = conn.request = self.validate(raw)
            logger.info("%s: %s %r (%d bytes)", conn.peer, request.method.value, request.filename, request.size)

            out = conn.open_output(self.config.resolve(self.config.output_dir, request.filename))
            state = ReceiverState.ACCEPTED
            send_all(conn.transport, TransferStatus.ACCEPTED.encode())

            state = ReceiverState.STREAMING
            conn.received = stream_in(conn.transport, out, request.size, self.config.chunk_size)
            conn.close_output()
            if conn.received != request.size:
                raise SizeMismatch(request.size, conn.received)

            state, status = ReceiverState.COMPLETED, TransferStatus.COMPLETED
            logger.info("%s: stored %s (%d bytes)", conn.peer, conn.path, conn.received)
            _report_status(conn, status)
        except MalformedHeader as exc:
            state, status = ReceiverState.REJECTED, TransferStatus.NOT_FOUND
            logger.warning("%s: malformed request: %s", conn.peer, exc)
            _report_status(conn, status)
        except ProtocolError as exc:
            conn.discard_output()
            status = TransferStatus(exc.code)
            if isinstance(exc, SizeMismatch):
                state = ReceiverState.SIZE_MISMATCH
            elif state is ReceiverState.STREAMING:
                state = ReceiverState.ABORTED
            else:
                state = ReceiverState.REJECTED
            logger.warning("%s: %s (%s)", conn.peer, status.name, exc)
            _report_status(conn, status)
        except TransportError as exc:
            conn.discard_output()
            if state is ReceiverState.STREAMING:
                conn.received = exc.bytes_transferred
            logger.warning(
                "%s: aborted while %s after %d bytes: %s",
                conn.peer,
                state.value,
                exc.bytes_transferred,
                exc,
            )
            state = ReceiverState.ABORTED

        conn.metrics.bytes_transferred = conn.received
        conn.metrics.stop()
        request = conn.request
        return TransferOutcome(
            peer=conn.peer,
            filename=request.filename if request else None,
            state=state,
            status=status,
            bytes_transferred=conn.received,
            declared_size=request.size if request else 0,
            metrics=conn.metrics,
        )


@dataclass(slots=True)
class FileServer:
    """Server side of the text protocol: answers a filename with its bytes."""

    config: ServerConfig

    def __call__(self, transport: Transport) -> TransferOutcome:
        with Connection(transport) as conn:
            return self.handle(conn)

    def read_request(self, transport: Transport) -> str:
        framing = self.config.framing
        if framing is Framing.LINE:
            raw = recv_line(transport)
        else:
            # single best-effort read; a name split across reads is truncated
            raw = transport.recv(TEXT_READ_SIZE)
            if not raw:
                raise TransportError(f"{transport.peer} closed before sending a request")
        return decode_text_request(raw, framing)

    def _reply(self, conn: Connection, response: TextResponse) -> None:
        send_all(conn.transport, response.to_bytes(self.config.framing))

    def handle(self, conn: Connection) -> TransferOutcome:
        state = ReceiverState.AWAITING_REQUEST
        status: TransferStatus | None = None
        filename: str | None = None
        size = sent = 0
        try:
            filename = self.read_request(conn.transport)
            state = ReceiverState.VALIDATING
            logger.info("%s requested %r", conn.peer, filename)

            path = self.config.resolve(self.config.serve_dir, filename)
            if not path.is_file():
                raise NotFound(f"{path} does not exist")
            try:
                f = open(path, "rb")
            except OSError as exc:
                raise InternalError(f"cannot open {path}: {exc}") from exc

            with f:
                try:
                    size = os.fstat(f.fileno()).st_size
                except OSError as exc:
                    raise InternalError(f"cannot stat {path}: {exc}") from exc
                state = ReceiverState.ACCEPTED
                self._reply(conn, TextResponse.ok_size(size))
                state = ReceiverState.STREAMING
                sent = stream_out(conn.transport, f, size, self.config.chunk_size)
            conn.transport.shutdown_write()

            if sent == size:
                state, status = ReceiverState.COMPLETED, TransferStatus.COMPLETED
                logger.info("%s: sent %r (%d bytes)", conn.peer, filename, sent)
            else:
                state, status = ReceiverState.SIZE_MISMATCH, TransferStatus.SIZE_MISMATCH
                logger.warning("%s: %r changed size, sent %d of %d bytes", conn.peer, filename, sent, size)
        except (MalformedHeader, ProtocolError) as exc:
            code = exc.code if isinstance(exc, ProtocolError) else TransferStatus.NOT_FOUND
            status = TransferStatus(code)
            logger.warning("%s: %s (%s)", conn.peer, status.name, exc)
            if state is ReceiverState.STREAMING:
                state = ReceiverState.ABORTED
            else:
                state = ReceiverState.REJECTED
                reason = REASON_NOT_FOUND if status is TransferStatus.NOT_FOUND else REASON_INTERNAL
                try:
                    self._reply(conn, TextResponse.error(reason))
                except TransportError as send_exc:
                    logger.warning("could not report %s to %s: %s", reason, conn.peer, send_exc)
        except TransportError as exc:
            logger.warning("%s: aborted while %s after %d bytes: %s", conn.peer, state.value, exc.bytes_transferred, exc)
            if state is ReceiverState.STREAMING:
                sent = max(sent, exc.bytes_transferred)
            state = ReceiverState.ABORTED

        conn.metrics.bytes_transferred = sent
        conn.metrics.stop()
        return TransferOutcome(
            peer=conn.peer,
            filename=filename,
            state=state,
            status=status,
            bytes_transferred=sent,
            declared_size=size,
            metrics=conn.metrics,
        )
