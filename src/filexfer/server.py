from __future__ import annotations

import collections
import itertools
import logging
import threading
from typing import Callable, Union

from .config import Mode, ServerConfig
from .net import MessageHub, TcpListener, Transport
from .receiver import FileServer, TransferOutcome, UploadReceiver

logger = logging.getLogger(__name__)

Listener = Union[TcpListener, MessageHub]
Handler = Callable[[Transport], TransferOutcome]

MAX_OUTCOMES = 1024


def handler_for(config: ServerConfig) -> Handler:
    if config.mode is Mode.TEXT:
        return FileServer(config)
    return UploadReceiver(config)


class Dispatcher:
    """Accept loop that runs every connection on its own supervised thread.

    A connection that fails, for any reason, is logged and forgotten; it never
    reaches the accept loop. Accept errors are logged and retried after
    ``accept_backoff_s``. ``join`` blocks until no connection is live, and a
    connection only stops being live once its transport has been closed.
    ``stop`` cancels connections that are still live.
    """

    def __init__(self, listener: Listener, handler: Handler, accept_backoff_s: float = 0.1):
        self.listener = listener
        self.handler = handler
        self.accept_backoff_s = accept_backoff_s
        self.outcomes: collections.deque[TransferOutcome] = collections.deque(maxlen=MAX_OUTCOMES)
        self._stopping = threading.Event()
        self._idle = threading.Condition()
        self._live: dict[int, Transport] = {}
        self._ids = itertools.count(1)
        self._accept_thread: threading.Thread | None = None

    @classmethod
    def from_config(cls, config: ServerConfig) -> "Dispatcher":
        listener = TcpListener.bind(config.host, config.port, timeout_s=config.timeout_s)
        return cls(listener, handler_for(config), config.accept_backoff_s)

    @property
    def address(self) -> tuple[str, int]:
        return self.listener.address

    @property
    def active_count(self) -> int:
        with self._idle:
            return len(self._live)

    def serve_forever(self) -> None:
        logger.info("accepting connections")
        try:
            while not self._stopping.is_set():
                try:
                    transport = self.listener.accept()
                except OSError as exc:
                    if self._stopping.is_set():
                        break
                    logger.error("accept failed: %s; retrying in %.2fs", exc, self.accept_backoff_s)
                    self._stopping.wait(self.accept_backoff_s)
                    continue
                if transport is None:
                    continue
                self._spawn(transport)
        finally:
            self.listener.close()
            logger.info("stopped accepting connections")

    def _spawn(self, transport: Transport) -> None:
        conn_id = next(self._ids)
        thread = threading.Thread(
            target=self._run,
            args=(conn_id, transport),
            name=f"filexfer-conn-{conn_id}",
            daemon=True,
        )
        with self._idle:
            self._live[conn_id] = transport
        try:
            thread.start()
        except RuntimeError as exc:
            logger.error("cannot start a handler for %s: %s", transport.peer, exc)
            transport.close()
            with self._idle:
                del self._live[conn_id]
                self._idle.notify_all()

    def _run(self, conn_id: int, transport: Transport) -> None:
        logger.info("connection %d from %s", conn_id, transport.peer)
        outcome: TransferOutcome | None = None
        try:
            outcome = self.handler(transport)
        except Exception:
            logger.exception("connection %d from %s failed", conn_id, transport.peer)
        finally:
            transport.close()
            with self._idle:
                del self._live[conn_id]
                if outcome is not None:
                    self.outcomes.append(outcome)
                self._idle.notify_all()
        if outcome is not None:
            logger.info(
                "connection %d finished: %s, %d/%d bytes in %.3fs",
                conn_id,
                outcome.state.value,
                outcome.bytes_transferred,
                outcome.declared_size,
                outcome.metrics.duration_s,
            )

    def start(self) -> None:
        self._accept_thread = threading.Thread(target=self.serve_forever, name="filexfer-accept", daemon=True)
        self._accept_thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait until no connection is live. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._live, timeout)

    def cancel(self) -> int:
        """Abort every live connection and return how many there were.

        Handlers see a transport failure on their next read or write and
        unwind through their own cleanup.
        """
        with self._idle:
            live = list(self._live.items())
        for conn_id, transport in live:
            logger.warning("cancelling connection %d from %s", conn_id, transport.peer)
            transport.abort()
        return len(live)

    def stop(self, timeout: float | None = None) -> bool:
        """Stop accepting, cancel live connections and wait for them to finish."""
        self._stopping.set()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout)
        self.cancel()
        return self.join(timeout)

    def __enter__(self) -> "Dispatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
