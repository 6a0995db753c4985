"""
core/pipeline/progress.py — One-way progress stream from orchestrator to consumer.

Two pieces:
    - ``ProgressChannel``: bounded, thread-safe, closeable queue. When full,
      the oldest event is dropped to make room (the producer never blocks).
      The consumer iterates until the channel is closed and drained.
    - ``ProgressEmitter``: wraps any sink callable. A sink that raises is
      logged and otherwise ignored; progress reporting can never fail a run.
      The ``result`` event is the last one it forwards.

Ordering: events put by one thread come out in the order it put them.
Events from the two parallel branches may interleave, but never follow
the run's ``result`` event.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterator

from core.pipeline.types import ProgressEvent

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Bounded drop-oldest channel of ProgressEvent.

    Usable directly as a sink: ``channel(event)`` is ``channel.put(event)``.

    Args:
        maxsize: Capacity. Must be at least 1.
        on_drop: Optional callback invoked with each dropped event.
    """

    def __init__(
        self,
        maxsize: int = 64,
        on_drop: Callable[[ProgressEvent], None] | None = None,
    ) -> None:
        if maxsize < 1:
            raise ValueError(f"maxsize must be at least 1, got {maxsize}")
        self._buffer: deque[ProgressEvent] = deque()
        self._maxsize = maxsize
        self._cond = threading.Condition()
        self._closed = False
        self._dropped = 0
        self._on_drop = on_drop

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def dropped(self) -> int:
        """Number of events discarded because the channel was full."""
        with self._cond:
            return self._dropped

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._buffer)

    def __call__(self, event: ProgressEvent) -> None:
        self.put(event)

    def put(self, event: ProgressEvent) -> None:
        """Enqueue without blocking.

        Raises:
            RuntimeError: If the channel has been closed.
        """
        dropped: ProgressEvent | None = None
        with self._cond:
            if self._closed:
                raise RuntimeError("progress channel is closed")
            if len(self._buffer) >= self._maxsize:
                dropped = self._buffer.popleft()
                self._dropped += 1
            self._buffer.append(event)
            self._cond.notify()
        if dropped is not None:
            logger.debug("Progress channel full — dropped %s event", dropped.step_name)
            if self._on_drop is not None:
                self._on_drop(dropped)

    def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Dequeue the oldest event.

        Blocks until an event is available, the channel is closed, or
        ``timeout`` elapses. Returns None when closed and empty, or on timeout.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._buffer or self._closed, timeout):
                return None
            if self._buffer:
                return self._buffer.popleft()
            return None

    def close(self) -> None:
        """Stop accepting events. Buffered events remain readable."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event


class ProgressEmitter:
    """Best-effort forwarder from pipeline stages to a sink.

    ``emit`` never raises. With no sink, events are discarded. Once a
    ``result`` event has been forwarded, later events are dropped: a branch
    still running after a failed join cannot report past the end of the run.
    """

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self._sink = sink
        self._failures = 0
        self._finished = False
        self._lock = threading.Lock()
        self._emit_lock = threading.Lock()

    @property
    def failures(self) -> int:
        """Number of sink calls that raised."""
        with self._lock:
            return self._failures

    @property
    def finished(self) -> bool:
        """True once the ``result`` event has been emitted."""
        with self._emit_lock:
            return self._finished

    def emit(self, event: ProgressEvent) -> None:
        with self._emit_lock:
            if self._finished:
                logger.debug("Dropping %s event after the result", event.step_name)
                return
            if event.type == "result":
                self._finished = True
            if self._sink is None:
                return
            try:
                self._sink(event)
            except Exception as exc:
                with self._lock:
                    self._failures += 1
                logger.warning("Progress sink failed for %s: %s", event.step_name, exc)

    def progress(self, step_name: str, message: str) -> None:
        """Emit a stage-start event."""
        self.emit(ProgressEvent(type="progress", message=message, step_name=step_name))

    def complete(self, step_name: str, message: str) -> None:
        """Emit a stage-result event with ``status="complete"``."""
        self.emit(
            ProgressEvent(type="progress", message=message, step_name=step_name, status="complete")
        )
