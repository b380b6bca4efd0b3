"""Hand-off queue between span producers and the export stream."""

from __future__ import annotations

import queue
import time
from typing import Any, Iterator


class _Sentinel:
    __slots__ = ()

    def __repr__(self) -> str:
        return "SENTINEL"


# Compared by identity, so no request can be mistaken for it.
SENTINEL = _Sentinel()


class TraceRequestQueue:
    """FIFO queue of export requests, consumed as a lazy iterator.

    Any number of threads may ``push``; exactly one consumer iterates
    ``consume()``. The iterator ends once :data:`SENTINEL` is dequeued, after
    which a new queue is needed.
    """

    def __init__(self, delay: float) -> None:
        if not delay > 0:
            raise ValueError(f"delay must be greater than zero, got {delay!r}")
        self.delay = delay
        self._queue: queue.Queue[Any] = queue.Queue()

    def push(self, item: Any) -> None:
        """Enqueue ``item`` or :data:`SENTINEL` without waiting for space."""
        self._queue.put_nowait(item)

    def stop(self) -> None:
        self.push(SENTINEL)

    def consume(self) -> Iterator[Any]:
        while True:
            try:
                item = self._queue.get(timeout=self.delay)
            except queue.Empty:
                continue
            if item is SENTINEL:
                return
            if item is None:
                # idle placeholder
                time.sleep(self.delay)
                continue
            yield item

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def discard(self) -> int:
        """Empty the queue and return how many requests were thrown away."""
        discarded = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return discarded
            if item is not SENTINEL and item is not None:
                discarded += 1
