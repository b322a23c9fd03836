"""cuBLAS backend over CuPy device arrays.

Calls the single-precision cuBLAS routines through cupy_backends with a
handle owned by the session. Scalars and results use host pointer mode,
so dot/asum/nrm2/iamax return once their result is on the host.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from cudavec.backend import SIDE_LEFT, BlasBackend

try:
    import cupy as cp  # noqa: F401
    from cupy_backends.cuda.libs import cublas

    HAS_CUPY = True
except ImportError:
    cublas = None
    HAS_CUPY = False


def _op(trans: bool) -> int:
    return cublas.CUBLAS_OP_T if trans else cublas.CUBLAS_OP_N


def _scalar(x: float) -> np.ndarray:
    return np.array([x], dtype=np.float32)


class CUDABlas(BlasBackend):
    """Owns one cuBLAS handle; bound to one stream at a time."""

    def __init__(self):
        if not HAS_CUPY:
            raise RuntimeError("CuPy is not installed")
        self._handle = cublas.create()
        cublas.setPointerMode(self._handle, cublas.CUBLAS_POINTER_MODE_HOST)

    def close(self) -> None:
        if self._handle is not None:
            cublas.destroy(self._handle)
            self._handle = None

    def set_stream(self, stream: Any) -> None:
        cublas.setStream(self._handle, stream.ptr)

    def scal(self, n: int, alpha: float, x: Any) -> None:
        a = _scalar(alpha)
        cublas.sscal(self._handle, n, a.ctypes.data, x.data.ptr, 1)

    def axpy(self, n: int, alpha: float, x: Any, y: Any) -> None:
        a = _scalar(alpha)
        cublas.saxpy(self._handle, n, a.ctypes.data, x.data.ptr, 1, y.data.ptr, 1)

    def dot(self, n: int, x: Any, y: Any) -> float:
        res = np.zeros(1, dtype=np.float32)
        cublas.sdot(self._handle, n, x.data.ptr, 1, y.data.ptr, 1, res.ctypes.data)
        return float(res[0])

    def dgmm(self, side: str, m: int, n: int, a: Any, lda: int, x: Any, c: Any, ldc: int) -> None:
        mode = cublas.CUBLAS_SIDE_LEFT if side == SIDE_LEFT else cublas.CUBLAS_SIDE_RIGHT
        cublas.sdgmm(self._handle, mode, m, n, a.data.ptr, lda, x.data.ptr, 1, c.data.ptr, ldc)

    def gemm(
        self, trans_a: bool, trans_b: bool, m: int, n: int, k: int,
        alpha: float, a: Any, lda: int, b: Any, ldb: int,
        beta: float, c: Any, ldc: int,
    ) -> None:
        al, be = _scalar(alpha), _scalar(beta)
        cublas.sgemm(
            self._handle, _op(trans_a), _op(trans_b), m, n, k,
            al.ctypes.data, a.data.ptr, lda, b.data.ptr, ldb,
            be.ctypes.data, c.data.ptr, ldc,
        )

    def gemv(
        self, trans: bool, m: int, n: int, alpha: float, a: Any, lda: int,
        x: Any, incx: int, beta: float, y: Any, incy: int,
    ) -> None:
        al, be = _scalar(alpha), _scalar(beta)
        cublas.sgemv(
            self._handle, _op(trans), m, n, al.ctypes.data, a.data.ptr, lda,
            x.data.ptr, incx, be.ctypes.data, y.data.ptr, incy,
        )

    def asum(self, n: int, x: Any) -> float:
        res = np.zeros(1, dtype=np.float32)
        cublas.sasum(self._handle, n, x.data.ptr, 1, res.ctypes.data)
        return float(res[0])

    def nrm2(self, n: int, x: Any) -> float:
        res = np.zeros(1, dtype=np.float32)
        cublas.snrm2(self._handle, n, x.data.ptr, 1, res.ctypes.data)
        return float(res[0])

    def iamax(self, n: int, x: Any) -> int:
        res = np.zeros(1, dtype=np.int32)
        cublas.isamax(self._handle, n, x.data.ptr, 1, res.ctypes.data)
        # cuBLAS indices are 1-based.
        return int(res[0]) - 1
