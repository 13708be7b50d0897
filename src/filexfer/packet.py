from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

from .constants import (
    ACCEPTED,
    COMPLETED,
    FILENAME_FIELD_LEN,
    HEADER_FORMAT,
    INTERNAL_ERROR,
    METHOD_TAG_LEN,
    NOT_FOUND,
    REASON_NOT_FOUND,
    SIZE_MISMATCH,
    STATUS_FORMAT,
    TEXT_DELIMITER,
    TEXT_ERROR,
    TEXT_OK,
    UPLOAD_FILE,
)
from .errors import MalformedHeader

HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
STATUS_SIZE = struct.calcsize(STATUS_FORMAT)


class Method(str, enum.Enum):
    UPLOAD_FILE = UPLOAD_FILE


class Framing(str, enum.Enum):
    """How text-mode frames are delimited on a byte stream.

    RAW is the legacy wire: no delimiter, a frame is whatever one read
    returns. It is exact over message transports but ambiguous over TCP when
    a header and the first payload bytes arrive in the same read.
    LINE terminates each text frame with a newline.
    """

    RAW = "raw"
    LINE = "line"


class TransferStatus(enum.IntEnum):
    ACCEPTED = ACCEPTED
    COMPLETED = COMPLETED
    NOT_FOUND = NOT_FOUND
    SIZE_MISMATCH = SIZE_MISMATCH
    INTERNAL_ERROR = INTERNAL_ERROR

    def encode(self) -> bytes:
        return struct.pack(STATUS_FORMAT, int(self))

    @staticmethod
    def decode(raw: bytes) -> "TransferStatus":
        if len(raw) != STATUS_SIZE:
            raise MalformedHeader(f"status must be {STATUS_SIZE} bytes, got {len(raw)}")
        (code,) = struct.unpack(STATUS_FORMAT, raw)
        try:
            return TransferStatus(code)
        except ValueError:
            raise MalformedHeader(f"unknown status code {code}") from None


def _pad(value: bytes, width: int) -> bytes:
    # one byte is kept for the terminating NUL
    if len(value) >= width:
        raise ValueError(f"field too long: {len(value)} bytes (max {width - 1})")
    return value.ljust(width, b"\x00")


def _unpad(field: bytes) -> bytes:
    return field.split(b"\x00", 1)[0]


@dataclass(frozen=True, slots=True)
class TransferRequest:
    """Fixed-size binary metadata header of the rpc protocol.

    Layout is method[32] | filename[256] | size:int64 in native byte order,
    296 bytes with no padding. Both peers must share the same endianness.
    """

    method: Method
    filename: str
    size: int

    def to_bytes(self) -> bytes:
        if self.size < 0:
            raise ValueError(f"size must be non-negative, got {self.size}")
        return struct.pack(
            HEADER_FORMAT,
            _pad(self.method.value.encode("ascii"), METHOD_TAG_LEN),
            _pad(self.filename.encode("utf-8"), FILENAME_FIELD_LEN),
            self.size,
        )

    @staticmethod
    def from_bytes(raw: bytes) -> "TransferRequest":
        if len(raw) != HEADER_SIZE:
            raise MalformedHeader(f"header must be {HEADER_SIZE} bytes, got {len(raw)}")
        method_tag, name_field, size = struct.unpack(HEADER_FORMAT, raw)

        tag = _unpad(method_tag).decode("ascii", errors="replace")
        try:
            method = Method(tag)
        except ValueError:
            raise MalformedHeader(f"unknown method {tag!r}") from None

        try:
            filename = _unpad(name_field).decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedHeader("filename is not valid UTF-8") from None
        if not filename:
            raise MalformedHeader("empty filename")
        if size < 0:
            raise MalformedHeader(f"negative size {size}")

        return TransferRequest(method=method, filename=filename, size=size)

    @staticmethod
    def upload(filename: str, size: int) -> "TransferRequest":
        return TransferRequest(method=Method.UPLOAD_FILE, filename=filename, size=size)


def encode_text_request(filename: str, framing: Framing = Framing.LINE) -> bytes:
    raw = filename.encode("utf-8")
    if not raw or TEXT_DELIMITER in raw:
        raise ValueError(f"invalid filename {filename!r}")
    if framing is Framing.LINE:
        raw += TEXT_DELIMITER
    return raw


def decode_text_request(raw: bytes, framing: Framing = Framing.LINE) -> str:
    if framing is Framing.LINE:
        raw = raw.rstrip(TEXT_DELIMITER)
    raw = _unpad(raw)
    try:
        filename = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise MalformedHeader("filename is not valid UTF-8") from None
    if not filename:
        raise MalformedHeader("empty filename")
    return filename


@dataclass(frozen=True, slots=True)
class TextResponse:
    ok: bool
    size: int | None = None
    reason: str | None = None

    @property
    def status(self) -> TransferStatus:
        if self.ok:
            return TransferStatus.ACCEPTED
        if self.reason == REASON_NOT_FOUND:
            return TransferStatus.NOT_FOUND
        return TransferStatus.INTERNAL_ERROR

    @staticmethod
    def ok_size(size: int) -> "TextResponse":
        return TextResponse(ok=True, size=size)

    @staticmethod
    def error(reason: str) -> "TextResponse":
        return TextResponse(ok=False, reason=reason)

    def to_bytes(self, framing: Framing = Framing.LINE) -> bytes:
        if self.ok:
            raw = TEXT_OK + str(self.size).encode("ascii")
        else:
            raw = TEXT_ERROR + (self.reason or "").encode("utf-8")
        if framing is Framing.LINE:
            raw += TEXT_DELIMITER
        return raw

    @staticmethod
    def from_bytes(raw: bytes, framing: Framing = Framing.LINE) -> "TextResponse":
        if framing is Framing.LINE:
            raw = raw.rstrip(TEXT_DELIMITER)
        if raw.startswith(TEXT_ERROR):
            return TextResponse.error(raw[len(TEXT_ERROR):].decode("utf-8", errors="replace"))
        if not raw.startswith(TEXT_OK):
            raise MalformedHeader(f"unexpected response header {raw[:32]!r}")
        digits = raw[len(TEXT_OK):]
        if not digits.isdigit():
            raise MalformedHeader(f"cannot parse size from {raw[:32]!r}")
        return TextResponse.ok_size(int(digits))
