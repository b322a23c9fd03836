"""Vector32: a dense float32 vector resident on the device.

A vector is an element range ``[offset, offset + length)`` of an alias
root (``Storage``). A fresh vector owns an Empty root and reads as zeros
without any allocation; slices share the root of their parent.

Validation (lengths, bounds, aliasing) happens on the calling thread and
raises ContractViolation before anything is enqueued. Device work is
queued on the session's command queue: mutating methods return the
completion handle, methods that produce a host value block for it.
"""

from __future__ import annotations

from concurrent.futures import Future
from typing import TYPE_CHECKING, Any, Callable, Sequence

import numpy as np

from cudavec import batched, kernels, linalg, reduction
from cudavec.backend import ELEMENT_DTYPE
from cudavec.buffer import Storage, guarded, materialize, materialize_all, overlaps
from cudavec.exceptions import (
    AliasingError,
    ContractViolation,
    DimensionError,
    IndexOutOfRange,
)
from cudavec.queue import completed_future
from cudavec.rand import ProbDist, randomize

if TYPE_CHECKING:
    from cudavec.backend import Session
    from cudavec.creator import Creator32
    from cudavec.mapper import Mapper32


class Vector32:
    """Device vector of float32 elements."""

    def __init__(self, creator: Creator32, length: int,
                 storage: Storage | None = None, offset: int = 0):
        if length < 0:
            raise DimensionError(f"vector length cannot be negative, got {length}", actual=length)
        self._creator = creator
        self._length = length
        self._owner = storage is None
        self._storage = storage if storage is not None else Storage(creator.session, length)
        self._offset = offset

    def __repr__(self) -> str:
        return (f"Vector32(len={self._length}, offset={self._offset}, "
                f"materialized={self.materialized})")

    def __len__(self) -> int:
        return self._length

    @property
    def creator(self) -> Creator32:
        return self._creator

    @property
    def session(self) -> Session:
        return self._creator.session

    @property
    def storage(self) -> Storage:
        """Alias root shared with every slice of the same source."""
        return self._storage

    @property
    def offset(self) -> int:
        """Element offset of this vector within its alias root."""
        return self._offset

    @property
    def materialized(self) -> bool:
        return self._storage.materialized

    @property
    def buffer(self) -> Any:
        """Device buffer covering exactly this vector, or None while Empty."""
        root = self._storage.buffer
        if root is None:
            return None
        if self._offset == 0 and self._length == self._storage.length:
            return root
        return self.session.slice(root, self._offset, self._offset + self._length)

    def overlaps(self, other: Vector32) -> bool:
        return overlaps(self, other)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self, operation: Callable[[], Any], name: str, target: Vector32 | None = None) -> Future:
        """Queue a write to ``target`` (default self); a failure marks its storage."""
        storage = (target if target is not None else self)._storage
        return self.session.run(guarded(storage, operation), name)

    def _run_sync(self, operation: Callable[[], Any], name: str) -> Any:
        return self.session.run_sync(operation, name)

    def _check_vector(self, other: Any) -> Vector32:
        if not isinstance(other, Vector32):
            raise TypeError(f"expected Vector32, got {type(other).__name__}")
        if other.session is not self.session:
            raise ContractViolation("vectors belong to different sessions")
        return other

    def _check_compat(self, other: Any, read_only: bool) -> Vector32:
        other = self._check_vector(other)
        if len(other) != self._length:
            raise DimensionError(
                f"length mismatch: {self._length} vs {len(other)}",
                actual=len(other), expected=self._length,
            )
        if not read_only and overlaps(self, other):
            raise AliasingError("vectors overlap")
        return other

    def _check_no_overlap(self, *operands: Vector32) -> None:
        for op in operands:
            self._check_vector(op)
            if overlaps(self, op):
                raise AliasingError("destination overlaps an operand")

    def _check_divisor(self, divisor: int, what: str) -> None:
        if divisor <= 0:
            raise DimensionError(f"{what} must be positive, got {divisor}", actual=divisor)
        if self._length % divisor != 0:
            raise DimensionError(
                f"{what} {divisor} must divide vector length {self._length}",
                actual=divisor, expected=self._length,
            )

    def _check_chunk_size(self, chunk_size: int) -> int:
        if chunk_size < 0:
            raise DimensionError(f"chunk size cannot be negative, got {chunk_size}", actual=chunk_size)
        if chunk_size == 0:
            return self._length
        self._check_divisor(chunk_size, "chunk size")
        return chunk_size

    # ------------------------------------------------------------------
    # Data transfer
    # ------------------------------------------------------------------

    def data(self) -> np.ndarray:
        """Host copy of the contents; an Empty vector reads as zeros.

        Raises DeviceError when the last queued write to this vector failed.
        """
        n = self._length

        def op():
            if not self.materialized:
                return np.zeros(n, dtype=ELEMENT_DTYPE)
            return self.session.read(self.buffer)

        return self._run_sync(op, "data")

    def set_data(self, data: Sequence[float] | np.ndarray) -> None:
        """Write ``data`` into the leading elements; the rest become zero
        if the vector was Empty."""
        arr = np.ascontiguousarray(data, dtype=ELEMENT_DTYPE)
        if arr.ndim != 1:
            raise DimensionError(f"data must be 1-D, got shape {arr.shape}")
        if len(arr) > self._length:
            raise IndexOutOfRange(
                f"{len(arr)} values do not fit in a vector of length {self._length}",
                index=len(arr), limit=self._length,
            )

        def op():
            buf = materialize(self, clear=len(arr) < self._length)
            if len(arr):
                self.session.write(buf, arr)

        self._run(op, "set_data").result()

    def set(self, other: Vector32) -> Future:
        """Copy ``other`` into this vector."""
        other = self._check_compat(other, read_only=False)

        def op():
            if not other.materialized:
                if self.materialized:
                    self.session.clear(self.buffer)
                return
            self.session.copy(materialize(self, clear=False), other.buffer)

        return self._run(op, "set")

    def copy(self) -> Vector32:
        res = self._creator.make_vector(self._length)
        res.set(self)
        return res

    def slice(self, start: int, end: int) -> Vector32:
        """View of elements [start, end) sharing this vector's storage."""
        if start < 0 or start > end or end > self._length:
            raise IndexOutOfRange(
                f"slice [{start}, {end}) out of range for length {self._length}",
                index=start if start < 0 else end, limit=self._length,
            )
        return Vector32(self._creator, end - start, storage=self._storage,
                        offset=self._offset + start)

    def set_slice(self, start: int, other: Vector32) -> Future:
        """Write ``other`` at ``start``, clipping the part before index 0."""
        other = self._check_vector(other)
        m = len(other)
        if m > self._length - start:
            raise IndexOutOfRange(
                f"vector of length {m} does not fit at {start} in length {self._length}",
                index=start + m, limit=self._length,
            )
        if start <= -m:
            return completed_future()
        dst_start = max(start, 0)
        src_start = max(-start, 0)
        count = min(m - src_start, self._length - dst_start)
        if count <= 0:
            return completed_future()
        dst = self.slice(dst_start, dst_start + count)
        src = other.slice(src_start, src_start + count)
        if overlaps(dst, src):
            raise AliasingError("set_slice source overlaps its destination")
        return dst.set(src)

    def release(self) -> Future:
        """Return this vector's device memory to the session.

        Only the vector that created a storage may release it; afterwards
        the vector (and any slice of it) reads as zeros again.
        """
        if not self._owner:
            raise ContractViolation("only the owning vector can release its storage")
        return self.session.run(self._storage.release, "release")

    # ------------------------------------------------------------------
    # Scalar and elementwise arithmetic
    # ------------------------------------------------------------------

    def scale(self, s: float) -> Future:
        return self._run(lambda: linalg.scale(self, s), "scale")

    def add_scaler(self, s: float) -> Future:
        def op():
            kernels.add_scaler(self.session, materialize(self, clear=True), self._length, s)

        return self._run(op, "add_scaler")

    def dot(self, other: Vector32) -> np.float32:
        other = self._check_compat(other, read_only=True)
        return self._run_sync(lambda: linalg.dot(self, other), "dot")

    def add(self, other: Vector32) -> Future:
        other = self._check_compat(other, read_only=False)
        return self._run(lambda: linalg.axpy(1.0, other, self), "add")

    def sub(self, other: Vector32) -> Future:
        other = self._check_compat(other, read_only=False)
        return self._run(lambda: linalg.axpy(-1.0, other, self), "sub")

    def mul(self, other: Vector32) -> Future:
        other = self._check_compat(other, read_only=False)
        return self._run(lambda: linalg.mul_elements(self, other), "mul")

    def div(self, other: Vector32) -> Future:
        other = self._check_compat(other, read_only=False)

        def op():
            buf, obuf = materialize_all(True, self, other)
            kernels.div_elements(self.session, buf, obuf, self._length)

        return self._run(op, "div")

    def elem_max(self, other: Vector32) -> Future:
        other = self._check_compat(other, read_only=False)

        def op():
            buf, obuf = materialize_all(True, self, other)
            kernels.elem_max(self.session, buf, obuf, self._length)

        return self._run(op, "elem_max")

    def pow(self, p: float) -> Future:
        def op():
            # 0 ** p == 0 for positive p.
            if not self.materialized and p > 0:
                return
            kernels.pow_scaler(self.session, materialize(self, clear=True), self._length, p)

        return self._run(op, "pow")

    def _unary(self, op_name: str) -> Future:
        def op():
            kernels.unary(self.session, op_name, materialize(self, clear=True), self._length)

        return self._run(op, op_name)

    def exp(self) -> Future:
        return self._unary("exp")

    def log(self) -> Future:
        return self._unary("log")

    def tanh(self) -> Future:
        return self._unary("tanh")

    def sin(self) -> Future:
        return self._unary("sin")

    def sigmoid(self) -> Future:
        return self._unary("sigmoid")

    def clip_pos(self) -> Future:
        return self._unary("clip_pos")

    def _compare(self, op_name: str, alpha: float) -> Future:
        def op():
            kernels.compare(self.session, op_name, materialize(self, clear=True), self._length, alpha)

        return self._run(op, op_name)

    def less_than(self, alpha: float) -> Future:
        return self._compare("less_than", alpha)

    def greater_than(self, alpha: float) -> Future:
        return self._compare("greater_than", alpha)

    def equal_to(self, alpha: float) -> Future:
        return self._compare("equal_to", alpha)

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    def _check_broadcast(self, other: Any, what: str) -> Vector32:
        other = self._check_vector(other)
        if len(other) == 0:
            raise DimensionError(f"{what} vector cannot be empty", actual=0)
        self._check_divisor(len(other), f"{what} length")
        if overlaps(self, other):
            raise AliasingError("vectors overlap")
        return other

    def scale_chunks(self, other: Vector32) -> Future:
        """Scale chunk i (of len(self)/len(other) elements) by other[i]."""
        other = self._check_broadcast(other, "chunk scaler")
        return self._run(lambda: linalg.scale_chunks(self, other), "scale_chunks")

    def add_chunks(self, other: Vector32) -> Future:
        """Add other[i] to every element of chunk i."""
        other = self._check_broadcast(other, "chunk scaler")

        def op():
            buf, obuf = materialize_all(True, self, other)
            kernels.add_chunks(self.session, buf, obuf, self._length, len(other))

        return self._run(op, "add_chunks")

    def _repeated(self, op_name: str, other: Any) -> Future:
        other = self._check_broadcast(other, "repeated")

        def op():
            buf, obuf = materialize_all(True, self, other)
            kernels.repeated(self.session, op_name, buf, obuf, self._length, len(other))

        return self._run(op, f"{op_name}_repeated")

    def add_repeated(self, other: Vector32) -> Future:
        """self[i] += other[i % len(other)]."""
        return self._repeated("add", other)

    def scale_repeated(self, other: Vector32) -> Future:
        """self[i] *= other[i % len(other)]."""
        return self._repeated("scale", other)

    # ------------------------------------------------------------------
    # Matrix products
    # ------------------------------------------------------------------

    @staticmethod
    def _check_matrix(name: str, vec: Vector32, rows: int, cols: int, ld: int) -> None:
        if rows < 0 or cols < 0:
            raise DimensionError(f"{name}: negative dimension {rows}x{cols}")
        if rows == 0 or cols == 0:
            return
        if ld < cols:
            raise DimensionError(f"{name}: leading dimension {ld} < {cols}", actual=ld, expected=cols)
        need = (rows - 1) * ld + cols
        if len(vec) < need:
            raise DimensionError(f"{name}: needs {need} elements, has {len(vec)}",
                                 actual=len(vec), expected=need)

    def gemm(self, trans_a: bool, trans_b: bool, m: int, n: int, k: int,
             alpha: float, a: Vector32, lda: int, b: Vector32, ldb: int,
             beta: float, ldc: int) -> Future:
        """self = alpha * op(A) * op(B) + beta * self, all row-major."""
        self._check_no_overlap(a, b)
        self._check_matrix("A", a, k if trans_a else m, m if trans_a else k, lda)
        self._check_matrix("B", b, n if trans_b else k, k if trans_b else n, ldb)
        self._check_matrix("C", self, m, n, ldc)
        return self._run(
            lambda: linalg.gemm(self, trans_a, trans_b, m, n, k, alpha, a, lda, b, ldb, beta, ldc),
            "gemm",
        )

    def gemv(self, trans: bool, m: int, n: int, alpha: float, a: Vector32, lda: int,
             x: Vector32, incx: int, beta: float, incy: int) -> Future:
        """self = alpha * op(A) * x + beta * self for a row-major (m x n) A."""
        self._check_no_overlap(a, x)
        self._check_matrix("A", a, m, n, lda)
        if incx <= 0 or incy <= 0:
            raise DimensionError("vector increments must be positive")
        x_len, y_len = (m, n) if trans else (n, m)
        for name, vec, count, inc in (("x", x, x_len, incx), ("y", self, y_len, incy)):
            need = (count - 1) * inc + 1 if count else 0
            if len(vec) < need:
                raise DimensionError(f"{name}: needs {need} elements, has {len(vec)}",
                                     actual=len(vec), expected=need)
        return self._run(
            lambda: linalg.gemv(self, trans, m, n, alpha, a, lda, x, incx, beta, incy),
            "gemv",
        )

    def batched_gemm(self, trans_a: bool, trans_b: bool, num: int, m: int, n: int, k: int,
                     alpha: float, a: Vector32, b: Vector32, beta: float) -> Future:
        """``num`` packed row-major products, one device call per batch."""
        self._check_no_overlap(a, b)
        if num <= 0:
            raise DimensionError(f"batch count must be positive, got {num}", actual=num)
        if min(m, n, k) < 0:
            raise DimensionError(f"negative matrix dimension in {m}x{n}x{k}")
        for name, vec, per_batch in (("A", a, m * k), ("B", b, k * n), ("C", self, m * n)):
            if len(vec) % num != 0:
                raise DimensionError(f"batch count {num} must divide {name} length {len(vec)}",
                                     actual=num, expected=len(vec))
            if len(vec) // num != per_batch:
                raise DimensionError(f"{name}: batch size {len(vec) // num} != {per_batch}",
                                     actual=len(vec) // num, expected=per_batch)
        return self._run(
            lambda: batched.batched_gemm(self, trans_a, trans_b, num, m, n, k, alpha, a, b, beta),
            "batched_gemm",
        )

    # ------------------------------------------------------------------
    # Reductions
    # ------------------------------------------------------------------

    def sum(self) -> np.float32:
        ones = self._creator.make_vector(self._length)
        ones.add_scaler(1)
        result = self.dot(ones)
        ones.release()
        return result

    def abs_sum(self) -> np.float32:
        return self._run_sync(lambda: linalg.abs_sum(self), "abs_sum")

    def norm(self) -> np.float32:
        return self._run_sync(lambda: linalg.norm(self), "norm")

    def abs_max(self) -> np.float32:
        return self._run_sync(lambda: linalg.abs_max(self), "abs_max")

    def sum_rows(self, cols: int) -> Vector32:
        """Column sums of the row-major (len/cols x cols) matrix."""
        self._check_divisor(cols, "column count")
        rows = self._length // cols
        ones = self._creator.make_vector(rows)
        ones.add_scaler(1)
        res = self._creator.make_vector(cols)
        res.gemv(True, rows, cols, 1, self, cols, ones, 1, 0, 1)
        ones.release()
        return res

    def add_logs(self, chunk_size: int) -> Vector32:
        """log(sum(exp(chunk))) for every chunk; 0 means the whole vector."""
        chunk = self._check_chunk_size(chunk_size)
        if self._length == 0:
            return self._creator.make_vector(0)
        res = self._creator.make_vector(self._length // chunk)
        self._run(lambda: reduction.add_logs_into(res, self, chunk), "add_logs", target=res)
        return res

    def log_softmax(self, chunk_size: int) -> Future:
        chunk = self._check_chunk_size(chunk_size)
        if self._length == 0:
            return completed_future()
        scratch = self._creator.make_vector(self._length // chunk)

        def op():
            try:
                reduction.log_softmax_in_place(self, scratch, chunk)
            finally:
                scratch.storage.release()

        return self._run(op, "log_softmax")

    def map_max(self, cols: int) -> Mapper32:
        """Mapper whose entry r is the flat index of the maximum of row r."""
        from cudavec.mapper import Mapper32

        if cols < 0:
            raise DimensionError(f"column count cannot be negative, got {cols}", actual=cols)
        if self._length == 0 or cols == 0:
            if self._length != 0:
                raise DimensionError("column count must divide vector length", actual=0)
            return Mapper32.from_table(self._creator, 0, [])
        self._check_divisor(cols, "column count")
        rows = self._length // cols

        def build(table):
            kernels.map_max_rows(self.session, table, materialize(self, clear=True), rows, cols)

        return Mapper32.built_on_device(self._creator, self._length, rows, build)

    # ------------------------------------------------------------------
    # Randomization
    # ------------------------------------------------------------------

    def rand(self, dist: ProbDist) -> Future:
        if not isinstance(dist, ProbDist):
            raise ContractViolation(f"unknown distribution {dist!r}")
        return self._run(lambda: randomize(self, dist), f"rand_{dist.value}")
