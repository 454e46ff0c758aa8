"""Blocking line source over a subprocess text stream with a read timeout."""

from __future__ import annotations

import logging
import queue
import threading
from typing import IO, Iterator, Optional

_LOG = logging.getLogger("capture")
_EOF = object()


class LineStreamReader:
    """
    Pump lines from ``stream`` into a queue on a daemon thread.

    lines() yields each line as it arrives, yields None whenever nothing
    arrived within ``timeout`` seconds, and finishes once the stream closes.
    The idle ``None`` lets callers re-check time based conditions while the
    engine is quiet.
    """

    def __init__(self, stream: IO[str], *, name: str = "capture_stderr") -> None:
        self._stream = stream
        self._q: "queue.Queue[object]" = queue.Queue()
        self._thread = threading.Thread(target=self._pump, name=name, daemon=True)
        self.lines_read = 0

    def start(self) -> "LineStreamReader":
        self._thread.start()
        return self

    def lines(self, timeout: float) -> Iterator[Optional[str]]:
        while True:
            try:
                item = self._q.get(timeout=timeout)
            except queue.Empty:
                yield None
                continue
            if item is _EOF:
                return
            self.lines_read += 1
            yield item  # type: ignore[misc]

    def close(self, timeout: float = 2.0) -> None:
        self._thread.join(timeout)
        if self._thread.is_alive():
            _LOG.warning("stderr reader did not finish within %.1fs", timeout)
        try:
            self._stream.close()
        except OSError as exc:
            _LOG.debug("stderr close error: %r", exc)

    def _pump(self) -> None:
        try:
            for line in self._stream:
                self._q.put(line.rstrip("\r\n"))
        except (OSError, ValueError) as exc:
            # ValueError: stream closed underneath us during shutdown
            _LOG.debug("stderr read error: %r", exc)
        finally:
            self._q.put(_EOF)
