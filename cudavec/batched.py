"""Batched GEMM splitting.

One logical batched matrix product becomes ``num`` independent gemm calls
over equal sub-ranges of the three operand buffers. Each call is bound to
its own transient sub-stream so batches may overlap on the device; the
session joins the sub-streams before the enclosing queue operation
returns, so no batch is observable on its own.
"""

from __future__ import annotations

from typing import Iterator

from cudavec.buffer import materialize_all


def batch_ranges(total: int, num: int) -> Iterator[tuple[int, int]]:
    """[start, end) element range of each of ``num`` equal batches."""
    step = total // num
    for i in range(num):
        yield i * step, (i + 1) * step


def leading_dims(trans_a: bool, trans_b: bool, m: int, n: int, k: int) -> tuple[int, int, int]:
    """Packed row-major leading dimensions (lda, ldb, ldc)."""
    lda = m if trans_a else k
    ldb = k if trans_b else n
    return lda, ldb, n


def batched_gemm(c, trans_a: bool, trans_b: bool, num: int, m: int, n: int, k: int,
                 alpha: float, a, b, beta: float) -> None:
    """Row-major C[i] = alpha * op(A[i]) * op(B[i]) + beta * C[i] for i < num."""
    if num == 0 or m == 0 or n == 0:
        return
    session = c.session
    cb, ab, bb = materialize_all(True, c, a, b)
    lda, ldb, ldc = leading_dims(trans_a, trans_b, m, n, k)
    blas = session.blas
    batches = zip(batch_ranges(len(a), num), batch_ranges(len(b), num), batch_ranges(len(c), num))
    with session.substreams(num) as streams:
        for stream, (a_rng, b_rng, c_rng) in zip(streams, batches):
            blas.set_stream(stream)
            blas.gemm(
                trans_b, trans_a, n, m, k, float(alpha),
                session.slice(bb, *b_rng), ldb,
                session.slice(ab, *a_rng), lda,
                float(beta), session.slice(cb, *c_rng), ldc,
            )
