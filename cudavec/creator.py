"""Creator32: the factory for float32 vectors and mappers of one session."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np

from cudavec.backend import ELEMENT_DTYPE, Session
from cudavec.buffer import guarded, materialize
from cudavec.exceptions import ContractViolation
from cudavec.mapper import Mapper32
from cudavec.vector import Vector32

log = logging.getLogger(__name__)


class Creator32:
    """Makes Vector32 and Mapper32 objects bound to ``session``."""

    def __init__(self, session: Session):
        self._session = session

    def __repr__(self) -> str:
        return f"Creator32(session={self._session.name})"

    @property
    def session(self) -> Session:
        return self._session

    def make_numeric(self, x: float) -> np.float32:
        return ELEMENT_DTYPE.type(x)

    def make_numeric_list(self, xs: Iterable[float]) -> np.ndarray:
        return np.asarray(list(xs), dtype=ELEMENT_DTYPE)

    def make_vector(self, size: int) -> Vector32:
        """A zero vector; no device memory is allocated until it is written."""
        return Vector32(self, size)

    def make_vector_data(self, data: Sequence[float] | np.ndarray) -> Vector32:
        arr = np.ascontiguousarray(data, dtype=ELEMENT_DTYPE)
        v = self.make_vector(len(arr))
        v.set_data(arr)
        return v

    def concat(self, *vs: Vector32) -> Vector32:
        """New materialized vector holding ``vs`` back to back."""
        for v in vs:
            if not isinstance(v, Vector32):
                raise TypeError(f"expected Vector32, got {type(v).__name__}")
            if v.session is not self._session:
                raise ContractViolation("cannot concatenate vectors from another session")
        total = sum(len(v) for v in vs)
        log.debug("concat %d vectors into %d elements", len(vs), total)
        res = self.make_vector(total)
        session = self._session

        def op():
            dst = materialize(res, clear=False)
            offset = 0
            for v in vs:
                n = len(v)
                if n:
                    part = session.slice(dst, offset, offset + n)
                    if v.materialized:
                        session.copy(part, v.buffer)
                    else:
                        session.clear(part)
                offset += n

        session.run(guarded(res.storage, op), "concat")
        return res

    def make_mapper(self, in_size: int, table: Sequence[int]) -> Mapper32:
        return Mapper32.from_table(self, in_size, table)
