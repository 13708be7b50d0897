from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .config import ServerConfig
from .constants import DEFAULT_CHUNK_SIZE
from .net import Impairment, StreamTransport
from .sender import Uploader
from .server import Dispatcher


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    duration_s: float
    throughput_mbps: float
    status: str


def run_benchmark(
    *,
    size_bytes: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_io: int = 0,
    delay_ms: int = 0,
    timeout_s: float = 10.0,
) -> BenchmarkResult:
    payload = os.urandom(size_bytes)

    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        src = root / "payload.bin"
        src.write_bytes(payload)

        config = ServerConfig(
            host="127.0.0.1",
            port=0,
            chunk_size=chunk_size,
            output_dir=root / "out",
            timeout_s=timeout_s,
        )
        dispatcher = Dispatcher.from_config(config)
        dispatcher.start()
        try:
            host, port = dispatcher.address
            impair = Impairment(max_io=max_io, delay_ms=delay_ms)
            with StreamTransport.connect(host, port, timeout_s, impair) as transport:
                result = Uploader(transport, chunk_size).upload(src)
            dispatcher.join(timeout_s)
        finally:
            dispatcher.stop(timeout_s)

        if result.ok:
            assert (root / "out" / src.name).read_bytes() == payload

    duration_s = max(0.001, result.metrics.duration_s)
    throughput_mbps = (result.bytes_transferred * 8 / 1_000_000) / duration_s

    return BenchmarkResult(
        bytes_transferred=result.bytes_transferred,
        duration_s=duration_s,
        throughput_mbps=throughput_mbps,
        status=result.status.name,
    )
