from __future__ import annotations

import pytest

from filexfer.config import Mode, ServerConfig
from filexfer.errors import TransportError
from filexfer.net import Transport
from filexfer.server import Dispatcher

SOURCE_TEXT = (
    b"This is the content of the file being transferred.\n"
    b"Line 2: The quick brown fox jumps over the lazy dog.\n"
)


class ScriptedTransport(Transport):
    """In-memory transport that replays canned reads and records writes."""

    def __init__(self, incoming=(), max_send=None, fail_after=None):
        self.peer = "scripted"
        self.incoming = [bytes(c) for c in incoming]
        self.max_send = max_send
        self.fail_after = fail_after
        self.sent = bytearray()
        self.send_calls = 0
        self.recv_sizes: list[int] = []
        self.shut = False
        self.closed = False

    def send(self, data):
        self.send_calls += 1
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise TransportError("connection reset")
        n = len(data) if self.max_send is None else min(len(data), self.max_send)
        self.sent += bytes(data[:n])
        return n

    def recv(self, max_bytes):
        self.recv_sizes.append(max_bytes)
        if not self.incoming:
            return b""
        chunk = self.incoming.pop(0)
        if len(chunk) > max_bytes:
            self.incoming.insert(0, chunk[max_bytes:])
            chunk = chunk[:max_bytes]
        return chunk

    def shutdown_write(self):
        self.shut = True

    def close(self):
        self.closed = True


@pytest.fixture
def scripted():
    return ScriptedTransport


@pytest.fixture
def rpc_server(tmp_path):
    config = ServerConfig(host="127.0.0.1", port=0, output_dir=tmp_path / "out", timeout_s=5.0)
    dispatcher = Dispatcher.from_config(config)
    dispatcher.start()
    yield dispatcher
    dispatcher.stop(timeout=5.0)


@pytest.fixture
def serve_dir(tmp_path):
    root = tmp_path / "srv"
    root.mkdir()
    (root / "source_file.txt").write_bytes(SOURCE_TEXT)
    return root


@pytest.fixture
def text_server(serve_dir):
    config = ServerConfig(host="127.0.0.1", port=0, mode=Mode.TEXT, serve_dir=serve_dir, timeout_s=5.0)
    dispatcher = Dispatcher.from_config(config)
    dispatcher.start()
    yield dispatcher
    dispatcher.stop(timeout=5.0)
