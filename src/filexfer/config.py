from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path

from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HOST,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PORT,
    DEFAULT_SERVE_DIR,
    DEFAULT_TIMEOUT_S,
)
from .errors import NotFound
from .packet import Framing, Method


class Mode(str, enum.Enum):
    RPC = "rpc"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Read-only settings shared by the dispatcher and every connection."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    mode: Mode = Mode.RPC
    framing: Framing = Framing.LINE
    chunk_size: int = DEFAULT_CHUNK_SIZE
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    serve_dir: Path = Path(DEFAULT_SERVE_DIR)
    allowed_methods: frozenset[Method] = field(default_factory=lambda: frozenset({Method.UPLOAD_FILE}))
    timeout_s: float | None = DEFAULT_TIMEOUT_S
    confine_paths: bool = True
    accept_backoff_s: float = 0.1

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", Mode(self.mode))
        object.__setattr__(self, "framing", Framing(self.framing))
        object.__setattr__(self, "output_dir", Path(self.output_dir))
        object.__setattr__(self, "serve_dir", Path(self.serve_dir))
        object.__setattr__(self, "allowed_methods", frozenset(Method(m) for m in self.allowed_methods))

        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {self.timeout_s}")
        if self.accept_backoff_s < 0:
            raise ValueError(f"accept_backoff_s must be non-negative, got {self.accept_backoff_s}")

    def resolve(self, base: Path, filename: str) -> Path:
        """Map a requested name onto ``base``; refused names raise NotFound."""
        if self.confine_paths:
            if (
                filename in ("", ".", "..")
                or "/" in filename
                or "\\" in filename
                or "\x00" in filename
            ):
                raise NotFound(f"refusing path {filename!r}")
            return base / filename
        # legacy behaviour: the name is joined verbatim under base
        return Path(f"{base}/{filename}")
