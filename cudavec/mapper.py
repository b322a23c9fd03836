"""Mapper32: an immutable gather/scatter index table on the device."""

from __future__ import annotations

from concurrent.futures import Future
from typing import TYPE_CHECKING, Any, Callable, Sequence

import numpy as np

from cudavec import kernels
from cudavec.backend import INDEX_DTYPE
from cudavec.buffer import guarded, materialize, overlaps
from cudavec.exceptions import (
    AliasingError,
    ContractViolation,
    DeviceError,
    DimensionError,
    IndexOutOfRange,
)

if TYPE_CHECKING:
    from cudavec.creator import Creator32
    from cudavec.vector import Vector32

_INT32_MAX = np.iinfo(np.int32).max


class Mapper32:
    """Maps an input vector of ``in_size`` elements to ``out_size`` elements.

    ``map`` gathers ``out[i] = in[table[i]]``; ``map_transpose`` is its
    adjoint and scatter-adds ``out[table[i]] += in[i]``.
    Use ``from_table`` or ``built_on_device`` to construct one.
    """

    def __init__(self, creator: Creator32, in_size: int, out_size: int):
        if in_size < 0 or out_size < 0:
            raise DimensionError(f"mapper sizes cannot be negative: {in_size}, {out_size}")
        if in_size > _INT32_MAX or out_size > _INT32_MAX:
            raise DimensionError("mapper size is too big")
        self._creator = creator
        self._in_size = in_size
        self._out_size = out_size
        self._table: Any = None
        self._failure: BaseException | None = None

    @classmethod
    def from_table(cls, creator: Creator32, in_size: int, table: Sequence[int]) -> Mapper32:
        """Upload a host table; every entry must lie in [0, in_size)."""
        ints = np.asarray(table, dtype=np.int64).ravel()
        mapper = cls(creator, in_size, len(ints))
        if len(ints):
            bad = np.flatnonzero((ints < 0) | (ints >= in_size))
            if len(bad):
                raise IndexOutOfRange(
                    f"table[{bad[0]}] = {ints[bad[0]]} outside [0, {in_size})",
                    index=int(ints[bad[0]]), limit=in_size,
                )
        ints32 = ints.astype(INDEX_DTYPE)
        session = creator.session

        def op():
            buf = session.allocate(len(ints32), INDEX_DTYPE)
            if len(ints32):
                session.write(buf, ints32)
            mapper._table = buf

        mapper._build(op, "make_mapper")
        return mapper

    @classmethod
    def built_on_device(cls, creator: Creator32, in_size: int, out_size: int,
                        build: Callable[[Any], None]) -> Mapper32:
        """Allocate the table on the worker and let ``build`` fill it there."""
        mapper = cls(creator, in_size, out_size)
        session = creator.session

        def op():
            buf = session.allocate(out_size, INDEX_DTYPE)
            try:
                build(buf)
            except Exception:
                session.free(buf)
                raise
            mapper._table = buf

        mapper._build(op, "build_mapper")
        return mapper

    def __repr__(self) -> str:
        return f"Mapper32(in_size={self._in_size}, out_size={self._out_size})"

    @property
    def creator(self) -> Creator32:
        return self._creator

    @property
    def in_size(self) -> int:
        return self._in_size

    @property
    def out_size(self) -> int:
        return self._out_size

    def _build(self, operation: Callable[[], None], name: str) -> Future:
        def run():
            try:
                operation()
            except Exception as exc:
                self._failure = exc
                raise

        return self._creator.session.run(run, name)

    def _table_buffer(self) -> Any:
        """Device table; raises DeviceError if building it failed."""
        if self._failure is not None:
            raise DeviceError(f"mapper table was not built: {self._failure}",
                              operation=getattr(self._failure, "operation", None)) from self._failure
        return self._table

    def table(self) -> np.ndarray:
        """Host copy of the index table."""
        return self._creator.session.run_sync(
            lambda: self._creator.session.read(self._table_buffer()), "mapper_table",
        )

    def _check(self, inp: Vector32, out: Vector32, in_len: int, out_len: int) -> None:
        session = self._creator.session
        if inp.session is not session or out.session is not session:
            raise ContractViolation("mapper and vectors belong to different sessions")
        if len(inp) != in_len:
            raise DimensionError(f"bad input size {len(inp)}, expected {in_len}",
                                 actual=len(inp), expected=in_len)
        if len(out) != out_len:
            raise DimensionError(f"bad output size {len(out)}, expected {out_len}",
                                 actual=len(out), expected=out_len)
        if overlaps(inp, out):
            raise AliasingError("mapper input and output overlap")

    def map(self, inp: Vector32, out: Vector32) -> Future:
        """Gather: out[i] = inp[table[i]]."""
        self._check(inp, out, self._in_size, self._out_size)
        session = self._creator.session

        def op():
            table = self._table_buffer()
            if not inp.materialized:
                if out.materialized:
                    session.clear(out.buffer)
                return
            dst = materialize(out, clear=False)
            kernels.map_forward(session, dst, inp.buffer, table, self._out_size)

        return session.run(guarded(out.storage, op), "map")

    def map_transpose(self, inp: Vector32, out: Vector32) -> Future:
        """Scatter-add: out[table[i]] += inp[i]; repeated indices accumulate."""
        self._check(inp, out, self._out_size, self._in_size)
        session = self._creator.session

        def op():
            table = self._table_buffer()
            if not inp.materialized:
                return
            dst = materialize(out, clear=True)
            kernels.map_backward(session, dst, inp.buffer, table, self._out_size)

        return session.run(guarded(out.storage, op), "map_transpose")

    def release(self) -> Future:
        session = self._creator.session

        def op():
            if self._table is not None:
                session.free(self._table)
                self._table = None

        return session.run(op, "release_mapper")
