from __future__ import annotations

from .constants import INTERNAL_ERROR, NOT_FOUND, SIZE_MISMATCH


class TransferError(Exception):
    """Base class for every failure raised by this package."""


class TransportError(TransferError):
    """The connection failed, timed out or closed before the protocol expected it."""

    def __init__(self, message: str, bytes_transferred: int = 0):
        super().__init__(message)
        self.bytes_transferred = bytes_transferred


class MalformedHeader(TransferError, ValueError):
    pass


class ProtocolError(TransferError):
    # wire code reported to the peer
    code: int = INTERNAL_ERROR


class NotFound(ProtocolError):
    code = NOT_FOUND


class InternalError(ProtocolError):
    code = INTERNAL_ERROR


class SizeMismatch(ProtocolError):
    code = SIZE_MISMATCH

    def __init__(self, declared: int, actual: int):
        super().__init__(f"declared {declared} bytes, got {actual}")
        self.declared = declared
        self.actual = actual
