"""Tests for core/pipeline/cancellation.py."""

import threading

import pytest

from core.pipeline.cancellation import AnalysisCancelled, CancellationToken


class TestCancellationToken:
    def test_initially_not_cancelled(self) -> None:
        token = CancellationToken()
        assert not token.cancelled
        assert token.reason == ""
        token.raise_if_cancelled()

    def test_cancel_sets_flag_and_reason(self) -> None:
        token = CancellationToken()
        token.cancel("client disconnected")
        assert token.cancelled
        with pytest.raises(AnalysisCancelled, match="client disconnected"):
            token.raise_if_cancelled()

    def test_first_reason_wins(self) -> None:
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"

    def test_empty_reason_message(self) -> None:
        token = CancellationToken()
        token.cancel("")
        with pytest.raises(AnalysisCancelled, match="cancelled"):
            token.raise_if_cancelled()

    def test_is_runtime_error(self) -> None:
        assert issubclass(AnalysisCancelled, RuntimeError)

    def test_wait_returns_on_cancel_from_other_thread(self) -> None:
        token = CancellationToken()
        timer = threading.Timer(0.01, token.cancel)
        timer.start()
        assert token.wait(timeout=5.0)
        timer.join()

    def test_wait_timeout(self) -> None:
        assert CancellationToken().wait(timeout=0.01) is False


class TestChildToken:
    def test_parent_cancel_reaches_child(self) -> None:
        parent = CancellationToken()
        child = parent.child()
        parent.cancel("client disconnected")
        assert child.cancelled
        assert child.reason == "client disconnected"

    def test_child_cancel_leaves_parent(self) -> None:
        parent = CancellationToken()
        child = parent.child()
        child.cancel("technical analysis failed")
        assert child.cancelled
        assert not parent.cancelled
        parent.raise_if_cancelled()

    def test_child_of_cancelled_parent_starts_cancelled(self) -> None:
        parent = CancellationToken()
        parent.cancel("user aborted")
        child = parent.child()
        with pytest.raises(AnalysisCancelled, match="user aborted"):
            child.raise_if_cancelled()

    def test_grandchild_follows_root(self) -> None:
        root = CancellationToken()
        grandchild = root.child().child()
        root.cancel()
        assert grandchild.cancelled
