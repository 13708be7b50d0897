from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from pathlib import Path

from .bench import run_benchmark
from .config import Mode, ServerConfig
from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HOST,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PORT,
    DEFAULT_SERVE_DIR,
    DEFAULT_TIMEOUT_S,
)
from .errors import TransferError
from .net import StreamTransport
from .packet import Framing
from .sender import Downloader, TransferResult, Uploader
from .server import Dispatcher

logger = logging.getLogger(__name__)


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def _result_payload(role: str, name: str, result: TransferResult) -> dict:
    return {
        "role": role,
        "file": name,
        "status": result.status.name,
        "declared_bytes": result.declared_size,
        "bytes": result.bytes_transferred,
        "size_matches": result.size_matches,
        "seconds": result.metrics.duration_s,
        "mbps": result.metrics.throughput_mbps,
    }


def cmd_serve(args: argparse.Namespace) -> int:
    config = ServerConfig(
        host=args.host,
        port=args.port,
        mode=Mode(args.mode),
        framing=Framing(args.framing),
        chunk_size=args.chunk_size,
        output_dir=Path(args.out_dir),
        serve_dir=Path(args.serve_dir),
        timeout_s=args.timeout,
        confine_paths=not args.allow_unsafe_paths,
    )
    dispatcher = Dispatcher.from_config(config)
    host, port = dispatcher.address
    logger.info("serving %s mode on %s:%d", config.mode.value, host, port)
    try:
        dispatcher.serve_forever()
    except KeyboardInterrupt:
        logger.info("interrupted, cancelling %d live connections", dispatcher.active_count)
        dispatcher.stop(config.timeout_s)
    return 0


def cmd_upload(args: argparse.Namespace) -> int:
    try:
        with StreamTransport.connect(args.host, args.port, args.timeout) as transport:
            result = Uploader(transport, args.chunk_size).upload(args.path)
    except TransferError as exc:
        logger.error("upload of %s failed: %s", args.path, exc)
        return 1

    _emit(_result_payload("sender", args.path, result), args.json)
    if result.size_matches:
        print(f"sent {result.bytes_transferred} bytes, matching the declared size")
    else:
        print(f"sent {result.bytes_transferred} of {result.declared_size} declared bytes")
    return 0 if result.ok else 1


def cmd_fetch(args: argparse.Namespace) -> int:
    dest = Path(args.dest or f"received_{Path(args.name).name}")
    try:
        with StreamTransport.connect(args.host, args.port, args.timeout) as transport:
            downloader = Downloader(transport, args.chunk_size, Framing(args.framing))
            result = downloader.download(args.name, dest)
    except TransferError as exc:
        logger.error("download of %s failed: %s", args.name, exc)
        return 1

    _emit(_result_payload("receiver", args.name, result), args.json)
    return 0 if result.ok else 1


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        size_bytes=args.size_bytes,
        chunk_size=args.chunk_size,
        max_io=args.max_io,
        delay_ms=args.delay_ms,
        timeout_s=args.timeout,
    )
    payload = {"role": "bench", **dataclasses.asdict(r)}
    _emit(payload, args.json)
    return 0 if r.status == "COMPLETED" else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="filexfer", description="Request/response file transfer over TCP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--port", type=int, default=DEFAULT_PORT)
        x.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_S)
        x.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
        x.add_argument("--json", action="store_true")

    serve = sub.add_parser("serve", help="accept transfers until interrupted")
    add_common(serve)
    serve.add_argument("--host", default=DEFAULT_HOST)
    serve.add_argument("--mode", choices=[m.value for m in Mode], default=Mode.RPC.value)
    serve.add_argument("--framing", choices=[f.value for f in Framing], default=Framing.LINE.value)
    serve.add_argument("--out-dir", default=DEFAULT_OUTPUT_DIR)
    serve.add_argument("--serve-dir", default=DEFAULT_SERVE_DIR)
    serve.add_argument("--allow-unsafe-paths", action="store_true", help="join requested names verbatim")
    serve.set_defaults(func=cmd_serve)

    upload = sub.add_parser("upload", help="upload one file to an rpc server")
    add_common(upload)
    upload.add_argument("--host", default="127.0.0.1")
    upload.add_argument("path")
    upload.set_defaults(func=cmd_upload)

    fetch = sub.add_parser("fetch", help="download one file from a text server")
    add_common(fetch)
    fetch.add_argument("--host", default="127.0.0.1")
    fetch.add_argument("--framing", choices=[f.value for f in Framing], default=Framing.LINE.value)
    fetch.add_argument("--dest", default=None)
    fetch.add_argument("name")
    fetch.set_defaults(func=cmd_fetch)

    bench = sub.add_parser("bench", help="loopback upload benchmark")
    add_common(bench)
    bench.add_argument("--size-bytes", type=int, default=5_000_000)
    bench.add_argument("--max-io", type=int, default=0, help="cap each socket read/write")
    bench.add_argument("--delay-ms", type=int, default=0)
    bench.set_defaults(func=cmd_bench)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
