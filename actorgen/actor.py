"""
Runtime support for generated actors.

Generated actor modules import this module and rely on:
- Actor: the marker type a class composes to become an actor
- Mailbox: the bounded FIFO queue feeding an actor's worker thread
- Future: the single-slot response channel allocated per call
- fail_request: fails the pending caller of an envelope a worker could not answer
- ActorStopped / ActorLogicError: raised in callers and workers
- log / set_log_output: the runtime logger, silent unless configured
"""

import logging
import threading
from collections import deque
from queue import Empty
from typing import Any, Deque, List, Optional, TextIO, Tuple


# Default capacity of an actor mailbox
DEFAULT_IN_CAP = 100


# =============================================================================
# Logging
# =============================================================================

log = logging.getLogger("actorgen.actor")
log.addHandler(logging.NullHandler())
log.propagate = False

_LOG_FORMAT = "actorgen: %(asctime)s %(message)s"
_log_handler: Optional[logging.Handler] = None


def set_log_output(stream: Optional[TextIO]) -> None:
    """Send runtime log output to stream, or discard it again when stream is None."""
    global _log_handler
    if _log_handler is not None:
        log.removeHandler(_log_handler)
        _log_handler = None
    if stream is None:
        log.setLevel(logging.NOTSET)
        return
    _log_handler = logging.StreamHandler(stream)
    _log_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y/%m/%d %H:%M:%S"))
    log.addHandler(_log_handler)
    log.setLevel(logging.INFO)


# =============================================================================
# Errors
# =============================================================================

class ActorError(Exception):
    """Base class for errors raised by generated actor code."""


class ActorStopped(ActorError):
    """Raised in a caller that invokes a method on a stopped actor."""


class ActorLogicError(ActorError):
    """
    Raised when a worker receives an envelope it has no branch for, or a caller
    receives a response of the wrong type.

    Either case means the generated code and its callers are out of sync;
    the only fix is to regenerate.
    """


# =============================================================================
# Mailbox
# =============================================================================

class Mailbox:
    """
    Bounded FIFO queue shared by every caller of one actor instance.

    put() blocks while the mailbox is full. post() appends regardless of
    capacity and is reserved for control messages that must not block.
    Once closed, put() raises ActorStopped and post() drops the item.
    """

    def __init__(self, capacity: int = DEFAULT_IN_CAP):
        if capacity < 1:
            raise ValueError(f"Mailbox capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._items: Deque[Any] = deque()
        self._cond = threading.Condition()
        self._closed = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, item: Any) -> None:
        with self._cond:
            while len(self._items) >= self.capacity and not self._closed:
                self._cond.wait()
            if self._closed:
                raise ActorStopped("Mailbox closed")
            self._items.append(item)
            self._cond.notify_all()

    def post(self, item: Any) -> None:
        with self._cond:
            if self._closed:
                return
            self._items.append(item)
            self._cond.notify_all()

    def get(self) -> Any:
        with self._cond:
            while not self._items:
                self._cond.wait()
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def get_nowait(self) -> Any:
        """Take the next item without waiting; raises queue.Empty if there is none."""
        with self._cond:
            if not self._items:
                raise Empty
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def close(self) -> List[Any]:
        """Refuse further items and return the ones still queued, oldest first."""
        with self._cond:
            self._closed = True
            items = list(self._items)
            self._items.clear()
            self._cond.notify_all()
            return items


# =============================================================================
# Future
# =============================================================================

class Future:
    """
    Single-slot response channel for one call.

    The worker publishes at most once, with put() or, when the call could
    not complete, fail(). The caller either blocks in take() or polls with
    try_take(); the first successful take drains the slot and re-raises a
    published failure.
    """

    def __init__(self):
        self._value: Any = None
        self._error: Optional[BaseException] = None
        self._ready = False
        self._cond = threading.Condition()

    def put(self, value: Any) -> None:
        with self._cond:
            if self._ready:
                raise ActorLogicError("Future already holds a value")
            self._value = value
            self._ready = True
            self._cond.notify_all()

    def fail(self, error: BaseException) -> bool:
        """Publish error unless a value is already waiting; returns whether it was published."""
        with self._cond:
            if self._ready:
                return False
            self._error = error
            self._ready = True
            self._cond.notify_all()
            return True

    def take(self) -> Any:
        with self._cond:
            while not self._ready:
                self._cond.wait()
            return self._drain()

    def try_take(self) -> Tuple[Any, bool]:
        with self._cond:
            if not self._ready:
                return None, False
            return self._drain(), True

    def _drain(self) -> Any:
        value, error = self._value, self._error
        self._value = None
        self._error = None
        self._ready = False
        if error is not None:
            raise error
        return value


def fail_request(request: Any, error: BaseException) -> None:
    """Fail the response channel of a request envelope, if it has one."""
    out = getattr(request, "_out", None)
    if isinstance(out, Future):
        out.fail(error)


# =============================================================================
# Marker
# =============================================================================

class Actor:
    """
    Marker type composed by actor classes.

    Declaring a field of this type in a class body makes the class an actor
    for the compiler:

        @dataclass
        class Calculator:
            actor: Actor = field(default_factory=Actor, metadata={"async": "add, mult"})

    At runtime each actor instance gets a fresh marker holding its mailbox
    and its stop state.
    """

    def __init__(self):
        self.mailbox = Mailbox(self.in_capacity())
        self.stop_requested = threading.Event()
        self.stopped = threading.Event()

    def in_capacity(self) -> int:
        """Capacity the mailbox is created with."""
        return DEFAULT_IN_CAP

    def is_stopping(self) -> bool:
        return self.stop_requested.is_set() or self.stopped.is_set()
