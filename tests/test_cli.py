from __future__ import annotations

import json

from filexfer.bench import run_benchmark
from filexfer.cli import main

from conftest import SOURCE_TEXT


def test_upload_command(rpc_server, tmp_path, capsys):
    src = tmp_path / "cli.bin"
    src.write_bytes(b"c" * 5000)
    _, port = rpc_server.address

    assert main(["upload", str(src), "--host", "127.0.0.1", "--port", str(port), "--json"]) == 0
    out = capsys.readouterr().out
    assert "matching the declared size" in out
    payload = json.loads(out[: out.rindex("}") + 1])
    assert payload["status"] == "COMPLETED"
    assert payload["bytes"] == 5000
    assert rpc_server.join(5.0)
    assert (tmp_path / "out" / "cli.bin").read_bytes() == b"c" * 5000


def test_upload_missing_file(rpc_server, tmp_path):
    _, port = rpc_server.address
    assert main(["upload", str(tmp_path / "nope.bin"), "--port", str(port)]) == 1


def test_fetch_command(text_server, tmp_path):
    _, port = text_server.address
    dest = tmp_path / "fetched.txt"
    assert main(["fetch", "source_file.txt", "--port", str(port), "--dest", str(dest)]) == 0
    assert dest.read_bytes() == SOURCE_TEXT
    assert main(["fetch", "absent.txt", "--port", str(port), "--dest", str(dest)]) == 1


def test_bench_command(capsys):
    assert main(["bench", "--size-bytes", "20000", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["role"] == "bench"
    assert payload["bytes_transferred"] == 20000


def test_benchmark_with_short_io():
    r = run_benchmark(size_bytes=50_000, chunk_size=1024, max_io=100)
    assert r.status == "COMPLETED"
    assert r.bytes_transferred == 50_000
    assert r.throughput_mbps > 0
