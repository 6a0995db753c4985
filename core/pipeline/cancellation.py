"""Cooperative cancellation for pipeline runs.

A ``CancellationToken`` is created per run and handed to every stage.
Long loops (chord frames, extractor sequence) and stage boundaries call
``raise_if_cancelled()``; nothing is interrupted pre-emptively.

``child()`` derives a token that follows its parent but can also be
cancelled alone, which is how the orchestrator stops the upload branch
when the technical branch fails without cancelling the whole run.
"""

from __future__ import annotations

import threading


class AnalysisCancelled(RuntimeError):
    """Raised inside a stage when its run's token has been cancelled."""


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    Example::

        token = CancellationToken()
        worker = threading.Thread(target=orchestrator.run, args=(source,),
                                  kwargs={"cancel": token})
        worker.start()
        token.cancel("client disconnected")
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""
        self._children: list[CancellationToken] = []
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Set the flag and cancel every child. Later calls keep the first reason."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(reason)

    def child(self) -> CancellationToken:
        """A token cancelled together with this one, or on its own."""
        token = CancellationToken()
        with self._lock:
            self._children.append(token)
            cancelled = self._event.is_set()
        if cancelled:
            token.cancel(self._reason)
        return token

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelled(self._reason or "cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses. Returns the flag."""
        return self._event.wait(timeout)
