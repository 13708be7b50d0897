from __future__ import annotations

import struct

import pytest

from filexfer.errors import MalformedHeader
from filexfer.packet import (
    HEADER_SIZE,
    STATUS_SIZE,
    Framing,
    Method,
    TextResponse,
    TransferRequest,
    TransferStatus,
    decode_text_request,
    encode_text_request,
)


def test_header_layout():
    raw = TransferRequest.upload("notes.txt", 55).to_bytes()
    assert len(raw) == HEADER_SIZE == 32 + 256 + 8
    assert raw[:10] == b"UploadFile"
    assert raw[10:32] == b"\x00" * 22
    assert raw[32:41] == b"notes.txt"
    assert raw[41:288] == b"\x00" * 247
    assert struct.unpack("=q", raw[288:]) == (55,)


def test_header_roundtrip():
    req = TransferRequest.upload("données.bin", 2**40)
    p = TransferRequest.from_bytes(req.to_bytes())
    assert p == req
    assert p.method is Method.UPLOAD_FILE


def test_unknown_method():
    raw = bytearray(TransferRequest.upload("a.bin", 1).to_bytes())
    raw[:10] = b"DeleteFile"
    with pytest.raises(MalformedHeader):
        TransferRequest.from_bytes(bytes(raw))


@pytest.mark.parametrize(
    "raw",
    [
        struct.pack("=32s256sq", b"UploadFile", b"a.bin", -1),
        struct.pack("=32s256sq", b"UploadFile", b"", 3),
        struct.pack("=32s256sq", b"UploadFile", b"\xff\xfe", 3),
        TransferRequest.upload("a.bin", 1).to_bytes()[:-1],
    ],
)
def test_bad_headers(raw):
    with pytest.raises(MalformedHeader):
        TransferRequest.from_bytes(raw)


def test_filename_must_fit_field():
    assert len(TransferRequest.upload("x" * 255, 1).to_bytes()) == HEADER_SIZE
    with pytest.raises(ValueError):
        TransferRequest.upload("x" * 256, 1).to_bytes()
    with pytest.raises(ValueError):
        TransferRequest.upload("x", -1).to_bytes()


def test_status_codes():
    raw = TransferStatus.COMPLETED.encode()
    assert len(raw) == STATUS_SIZE == 4
    assert TransferStatus.decode(raw) is TransferStatus.COMPLETED
    assert struct.unpack("=i", TransferStatus.ACCEPTED.encode()) == (200,)
    with pytest.raises(MalformedHeader):
        TransferStatus.decode(struct.pack("=i", 418))
    with pytest.raises(MalformedHeader):
        TransferStatus.decode(b"\x00")


def test_text_response_raw():
    ok = TextResponse.from_bytes(b"OK:55", Framing.RAW)
    assert ok == TextResponse.ok_size(55)
    assert ok.status is TransferStatus.ACCEPTED
    assert TextResponse.ok_size(55).to_bytes(Framing.RAW) == b"OK:55"

    missing = TextResponse.from_bytes(b"ERROR:File Not Found", Framing.RAW)
    assert not missing.ok
    assert missing.status is TransferStatus.NOT_FOUND
    broken = TextResponse.from_bytes(b"ERROR:Internal Server Error", Framing.RAW)
    assert broken.status is TransferStatus.INTERNAL_ERROR


@pytest.mark.parametrize("raw", [b"HELLO", b"OK:", b"OK:12x", b"OK:-4", b"ok:5", b""])
def test_text_response_malformed(raw):
    with pytest.raises(MalformedHeader):
        TextResponse.from_bytes(raw, Framing.RAW)


def test_raw_header_glued_to_payload_fails_loudly():
    with pytest.raises(MalformedHeader):
        TextResponse.from_bytes(b"OK:55This is the content", Framing.RAW)


def test_line_framing():
    assert TextResponse.ok_size(7).to_bytes() == b"OK:7\n"
    assert TextResponse.from_bytes(b"OK:7\n").size == 7
    assert TextResponse.error("File Not Found").to_bytes() == b"ERROR:File Not Found\n"

    assert encode_text_request("a.txt") == b"a.txt\n"
    assert encode_text_request("a.txt", Framing.RAW) == b"a.txt"
    assert decode_text_request(b"a.txt\n") == "a.txt"
    assert decode_text_request(b"a.txt\x00junk", Framing.RAW) == "a.txt"


def test_text_request_validation():
    with pytest.raises(ValueError):
        encode_text_request("a\nb")
    with pytest.raises(ValueError):
        encode_text_request("")
    with pytest.raises(MalformedHeader):
        decode_text_request(b"\n")
    with pytest.raises(MalformedHeader):
        decode_text_request(b"\xff", Framing.RAW)
