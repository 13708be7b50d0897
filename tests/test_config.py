from __future__ import annotations

from pathlib import Path

import pytest

from filexfer.config import Mode, ServerConfig
from filexfer.errors import NotFound
from filexfer.packet import Framing, Method
from filexfer.receiver import FileServer, UploadReceiver
from filexfer.server import handler_for


def test_defaults():
    config = ServerConfig()
    assert config.port == 65432
    assert config.chunk_size == 4096
    assert config.mode is Mode.RPC
    assert config.output_dir == Path("received_files")
    assert config.allowed_methods == frozenset({Method.UPLOAD_FILE})


def test_values_are_coerced():
    config = ServerConfig(mode="text", framing="raw", output_dir="out", allowed_methods=["UploadFile"])
    assert config.mode is Mode.TEXT
    assert config.framing is Framing.RAW
    assert config.output_dir == Path("out")
    assert Method.UPLOAD_FILE in config.allowed_methods


@pytest.mark.parametrize(
    "kwargs",
    [
        {"port": 70000},
        {"chunk_size": 0},
        {"timeout_s": 0},
        {"accept_backoff_s": -1},
        {"mode": "ftp"},
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValueError):
        ServerConfig(**kwargs)


@pytest.mark.parametrize("name", ["", ".", "..", "../x", "a/b", "/etc/passwd", "a\\b"])
def test_confined_names_are_refused(name):
    with pytest.raises(NotFound):
        ServerConfig().resolve(Path("base"), name)


def test_resolve():
    assert ServerConfig().resolve(Path("base"), "a.txt") == Path("base/a.txt")
    unsafe = ServerConfig(confine_paths=False)
    assert unsafe.resolve(Path("base"), "sub/a.txt") == Path("base/sub/a.txt")
    assert unsafe.resolve(Path("base"), "/etc/passwd") == Path("base/etc/passwd")


def test_handler_for_mode():
    assert isinstance(handler_for(ServerConfig()), UploadReceiver)
    assert isinstance(handler_for(ServerConfig(mode=Mode.TEXT)), FileServer)
