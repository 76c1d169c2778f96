"""Tests for the runtime support module used by generated code."""

import io
import queue
import threading
from types import SimpleNamespace

import pytest

from actorgen import actor
from actorgen.actor import (
    DEFAULT_IN_CAP, Actor, ActorError, ActorLogicError, ActorStopped, Future, Mailbox,
    fail_request,
)


class TestMailbox:
    """Test the bounded FIFO mailbox."""

    def test_fifo(self):
        box = Mailbox(10)
        for i in range(5):
            box.put(i)
        assert len(box) == 5
        assert [box.get() for _ in range(5)] == [0, 1, 2, 3, 4]

    def test_get_nowait_empty(self):
        with pytest.raises(queue.Empty):
            Mailbox().get_nowait()

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            Mailbox(0)

    def test_put_blocks_when_full(self):
        box = Mailbox(1)
        box.put("first")
        done = threading.Event()

        def producer():
            box.put("second")
            done.set()

        t = threading.Thread(target=producer)
        t.start()
        assert not done.wait(0.05)
        assert box.get() == "first"
        assert done.wait(5)
        t.join(timeout=5)
        assert box.get_nowait() == "second"

    def test_post_ignores_capacity(self):
        box = Mailbox(1)
        box.put(1)
        box.post(2)
        assert len(box) == 2

    def test_get_blocks_until_put(self):
        box = Mailbox()
        result = []
        t = threading.Thread(target=lambda: result.append(box.get()))
        t.start()
        box.put("hello")
        t.join(timeout=5)
        assert result == ["hello"]

    def test_close_returns_pending(self):
        box = Mailbox()
        box.put(1)
        box.put(2)
        assert box.close() == [1, 2]
        assert len(box) == 0

    def test_closed_refuses_items(self):
        box = Mailbox()
        box.close()
        with pytest.raises(ActorStopped):
            box.put(1)
        box.post(2)
        assert len(box) == 0

    def test_close_releases_blocked_put(self):
        box = Mailbox(1)
        box.put(1)
        errors = []

        def producer():
            try:
                box.put(2)
            except ActorStopped as e:
                errors.append(e)

        t = threading.Thread(target=producer)
        t.start()
        box.close()
        t.join(timeout=5)
        assert not t.is_alive()
        assert len(errors) == 1


class TestFuture:
    """Test the single-slot response channel."""

    def test_try_take_empty(self):
        assert Future().try_take() == (None, False)

    def test_put_then_try_take_drains(self):
        fut = Future()
        fut.put(42)
        assert fut.try_take() == (42, True)
        assert fut.try_take() == (None, False)

    def test_take_blocks_until_put(self):
        fut = Future()
        t = threading.Timer(0.01, fut.put, args=("ready",))
        t.start()
        assert fut.take() == "ready"
        t.join()

    def test_second_put_is_a_logic_error(self):
        fut = Future()
        fut.put(1)
        with pytest.raises(ActorLogicError):
            fut.put(2)

    def test_fail_reraises_on_take(self):
        fut = Future()
        assert fut.fail(ValueError("boom"))
        with pytest.raises(ValueError, match="boom"):
            fut.take()
        assert fut.try_take() == (None, False)

    def test_fail_reraises_on_try_take(self):
        fut = Future()
        fut.fail(ActorStopped("gone"))
        with pytest.raises(ActorStopped):
            fut.try_take()

    def test_fail_keeps_published_value(self):
        fut = Future()
        fut.put(1)
        assert not fut.fail(ValueError("late"))
        assert fut.take() == 1

    def test_fail_request(self):
        request = SimpleNamespace(_out=Future())
        fail_request(request, ActorStopped("gone"))
        with pytest.raises(ActorStopped):
            request._out.take()

        # Fire-and-forget envelopes and foreign objects have nothing to fail
        fail_request(SimpleNamespace(_out=None), ActorStopped("gone"))
        fail_request(object(), ActorStopped("gone"))
        fail_request(None, ActorStopped("gone"))


class TestActorMarker:
    """Test the marker type."""

    def test_defaults(self):
        state = Actor()
        assert state.in_capacity() == DEFAULT_IN_CAP
        assert state.mailbox.capacity == DEFAULT_IN_CAP
        assert not state.is_stopping()

    def test_capacity_override(self):
        class SmallActor(Actor):
            def in_capacity(self):
                return 2

        assert SmallActor().mailbox.capacity == 2

    def test_stopping(self):
        state = Actor()
        state.stop_requested.set()
        assert state.is_stopping()

        state = Actor()
        state.stopped.set()
        assert state.is_stopping()

    def test_errors(self):
        assert issubclass(ActorStopped, ActorError)
        assert issubclass(ActorLogicError, ActorError)


class TestLogOutput:
    """Test the runtime log sink."""

    def test_silent_by_default(self, capsys):
        actor.log.info("nobody hears this")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""

    def test_set_log_output(self):
        buf = io.StringIO()
        actor.set_log_output(buf)
        try:
            actor.log.info("Actor stopped")
        finally:
            actor.set_log_output(None)
        assert buf.getvalue().startswith("actorgen: ")
        assert buf.getvalue().rstrip().endswith("Actor stopped")

        actor.log.info("after reset")
        assert "after reset" not in buf.getvalue()
