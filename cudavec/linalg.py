"""Linear-algebra dispatch: vector operations as backend BLAS calls.

The backend is column-major with cuBLAS argument order. Vectors hold
row-major matrices, so gemm and gemv are issued transposed (operands
swapped for gemm, the transpose flag flipped for gemv), which yields the
row-major result without any copy.

Everything here runs on the queue worker.
"""

from __future__ import annotations

import numpy as np

from cudavec.backend import SIDE_LEFT, SIDE_RIGHT
from cudavec.buffer import materialize, materialize_all


def scale(v, alpha: float) -> None:
    """v *= alpha; an Empty vector stays Empty (0 * alpha == 0)."""
    n = len(v)
    if not v.materialized or n == 0:
        return
    v.session.blas.scal(n, float(alpha), v.buffer)


def axpy(alpha: float, x, y) -> None:
    """y += alpha * x.

    An Empty ``x`` contributes nothing. An Empty ``y`` takes a copy of
    ``x`` (scaled only when alpha != 1) instead of clearing and
    accumulating.
    """
    n = len(y)
    if not x.materialized or n == 0:
        return
    session = y.session
    if not y.materialized:
        dst = materialize(y, clear=False)
        session.copy(dst, x.buffer)
        if alpha != 1:
            session.blas.scal(n, float(alpha), dst)
        return
    session.blas.axpy(n, float(alpha), x.buffer, y.buffer)


def dot(u, v) -> np.float32:
    n = len(u)
    if n == 0:
        return np.float32(0)
    ub, vb = materialize_all(True, u, v)
    return np.float32(u.session.blas.dot(n, ub, vb))


def mul_elements(v, other) -> None:
    """v[i] *= other[i] as diag(other) * v."""
    n = len(v)
    if n == 0:
        return
    vb, ob = materialize_all(True, v, other)
    v.session.blas.dgmm(SIDE_LEFT, n, 1, vb, n, ob, vb, n)


def scale_chunks(v, scales) -> None:
    """v[i] *= scales[i / chunk] with chunk = len(v) / len(scales).

    The vector is viewed as a column-major (chunk x len(scales)) matrix,
    each column scaled by one entry.
    """
    n = len(v)
    if n == 0:
        return
    vb, sb = materialize_all(True, v, scales)
    cols = len(scales)
    rows = n // cols
    v.session.blas.dgmm(SIDE_RIGHT, rows, cols, vb, rows, sb, vb, rows)


def gemm(c, trans_a: bool, trans_b: bool, m: int, n: int, k: int,
         alpha: float, a, lda: int, b, ldb: int, beta: float, ldc: int) -> None:
    """Row-major C = alpha * op(A) * op(B) + beta * C."""
    if m == 0 or n == 0:
        return
    cb, ab, bb = materialize_all(True, c, a, b)
    c.session.blas.gemm(trans_b, trans_a, n, m, k, float(alpha), bb, ldb, ab, lda,
                        float(beta), cb, ldc)


def gemv(y, trans: bool, m: int, n: int, alpha: float, a, lda: int,
         x, incx: int, beta: float, incy: int) -> None:
    """Row-major y = alpha * op(A) * x + beta * y with A of shape (m, n)."""
    if m == 0 or n == 0:
        return
    yb, ab, xb = materialize_all(True, y, a, x)
    y.session.blas.gemv(not trans, n, m, float(alpha), ab, lda, xb, incx, float(beta), yb, incy)


def abs_sum(v) -> np.float32:
    if not v.materialized or len(v) == 0:
        return np.float32(0)
    return np.float32(v.session.blas.asum(len(v), v.buffer))


def norm(v) -> np.float32:
    if not v.materialized or len(v) == 0:
        return np.float32(0)
    return np.float32(v.session.blas.nrm2(len(v), v.buffer))


def abs_max(v) -> np.float32:
    """Magnitude of the element selected by iamax, read back from the device."""
    if not v.materialized or len(v) == 0:
        return np.float32(0)
    session = v.session
    idx = session.blas.iamax(len(v), v.buffer)
    value = session.read(session.slice(v.buffer, idx, idx + 1))[0]
    return np.float32(abs(value))
