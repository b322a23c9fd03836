"""Buffer lifecycle: lazy, zero-representable device storage.

A Storage is the alias root of a family of vectors: the root vector and
every slice taken from it. Its state is a tagged variant, Empty or
Materialized. Empty denotes exact zeros and owns no device memory.

Materializing any view allocates the whole root range, zero-filled unless
the write is known to cover all of it. Views are then zero-copy sub-ranges
of the root buffer, so a write through a slice is visible through its
parent. Every state transition happens on the queue worker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Union

from cudavec.exceptions import DeviceError

if TYPE_CHECKING:
    from cudavec.backend import Session

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Empty:
    """No device storage; every element reads as zero."""


@dataclass(frozen=True)
class Materialized:
    buffer: Any


EMPTY = Empty()

BufferState = Union[Empty, Materialized]


class Storage:
    """Alias root shared by a vector and all of its slices.

    ``failure`` holds the exception of the last operation that failed while
    writing this storage. Until the storage is released, every access to
    its state raises DeviceError, so a result that was never written cannot
    be read as if it were.
    """

    __slots__ = ("session", "length", "state", "failure")

    def __init__(self, session: Session, length: int):
        self.session = session
        self.length = length
        self.state: BufferState = EMPTY
        self.failure: BaseException | None = None

    def __repr__(self) -> str:
        kind = "materialized" if isinstance(self.state, Materialized) else "empty"
        if self.failure is not None:
            kind = "failed"
        return f"Storage(length={self.length}, {kind}, id=0x{id(self):x})"

    def check(self) -> None:
        failure = self.failure
        if failure is not None:
            operation = getattr(failure, "operation", None)
            raise DeviceError(f"storage was not written: {failure}", operation=operation) from failure

    @property
    def materialized(self) -> bool:
        self.check()
        return isinstance(self.state, Materialized)

    @property
    def buffer(self) -> Any:
        """Root device buffer, or None while Empty."""
        self.check()
        state = self.state
        return state.buffer if isinstance(state, Materialized) else None

    def materialize(self, clear: bool) -> Any:
        state = self.state
        if isinstance(state, Materialized):
            return state.buffer
        buffer = self.session.allocate(self.length)
        if clear:
            self.session.clear(buffer)
        self.state = Materialized(buffer)
        log.debug("materialized %d elements (clear=%s)", self.length, clear)
        return buffer

    def release(self) -> None:
        """Return the device buffer to the session and revert to Empty.

        Also clears a recorded failure.
        """
        self.failure = None
        state = self.state
        if isinstance(state, Materialized):
            self.state = EMPTY
            self.session.free(state.buffer)
            log.debug("released %d elements", self.length)


def guarded(storage: Storage, operation: Callable[[], Any]) -> Callable[[], Any]:
    """Wrap a queued write so that its failure is recorded on ``storage``."""

    def run():
        try:
            return operation()
        except Exception as exc:
            storage.failure = exc
            raise

    return run


def ranges_overlap(root_a: Storage, start_a: int, len_a: int,
                   root_b: Storage, start_b: int, len_b: int) -> bool:
    """True when both half-open ranges share a root and intersect."""
    if root_a is not root_b or len_a == 0 or len_b == 0:
        return False
    return start_a < start_b + len_b and start_b < start_a + len_a


def overlaps(a, b) -> bool:
    """Overlap relation between two vectors (alias root plus element range)."""
    return ranges_overlap(a.storage, a.offset, len(a), b.storage, b.offset, len(b))


def materialize(vector, clear: bool) -> Any:
    """Give ``vector`` real storage and return its device buffer.

    When the root is allocated here, it is zero-filled if ``clear`` is set
    or if ``vector`` is a strict sub-range (the rest of the root must keep
    reading as zero).
    """
    storage = vector.storage
    if not storage.materialized:
        covers_root = vector.offset == 0 and len(vector) == storage.length
        storage.materialize(clear or not covers_root)
    return vector.buffer


def materialize_all(clear: bool, *vectors) -> list[Any]:
    return [materialize(v, clear) for v in vectors]
