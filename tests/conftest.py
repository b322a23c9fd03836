"""Shared fixtures: an in-process host session for engine tests.

HostSession implements the Session contract with numpy arrays as device
buffers, so the engine's queueing, lazy allocation, aliasing and BLAS
argument plumbing run unchanged without a GPU. Fresh allocations are
filled with NaN so that reading memory the engine never cleared or wrote
shows up in results. Kernel names (or "copy") added to
``session.failing`` make the matching device call raise.
"""

from __future__ import annotations

import contextlib
import threading
import weakref

import numpy as np
import pytest

from cudavec.backend import (
    ELEMENT_DTYPE,
    SIDE_LEFT,
    BlasBackend,
    KernelModule,
    RandomBackend,
    Session,
)
from cudavec.config import SessionConfig
from cudavec.creator import Creator32

MAIN_STREAM = "main"


def colmajor(buf, rows, cols, ld):
    """Writable column-major (rows x cols) view of a flat buffer."""
    item = buf.itemsize
    return np.lib.stride_tricks.as_strided(buf, shape=(rows, cols), strides=(item, ld * item))


def strided(buf, count, inc):
    return buf[: (count - 1) * inc + 1 : inc] if count else buf[:0]


def logsumexp_rows(x, cols):
    x = np.asarray(x, dtype=np.float64).reshape(-1, cols)
    m = x.max(axis=1, keepdims=True)
    return (m + np.log(np.exp(x - m).sum(axis=1, keepdims=True))).ravel()


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class HostBlas(BlasBackend):
    def __init__(self):
        self.stream = MAIN_STREAM
        self.calls = []

    def set_stream(self, stream):
        self.stream = stream

    def scal(self, n, alpha, x):
        x[:n] *= np.float32(alpha)

    def axpy(self, n, alpha, x, y):
        y[:n] += np.float32(alpha) * x[:n]

    def dot(self, n, x, y):
        return float(np.dot(x[:n].astype(np.float64), y[:n].astype(np.float64)))

    def dgmm(self, side, m, n, a, lda, x, c, ldc):
        src = colmajor(a, m, n, lda).copy()
        dst = colmajor(c, m, n, ldc)
        if side == SIDE_LEFT:
            dst[...] = x[:m, None] * src
        else:
            dst[...] = src * x[None, :n]

    def gemm(self, trans_a, trans_b, m, n, k, alpha, a, lda, b, ldb, beta, c, ldc):
        self.calls.append(("gemm", self.stream, len(c)))
        op_a = colmajor(a, k, m, lda).T if trans_a else colmajor(a, m, k, lda)
        op_b = colmajor(b, n, k, ldb).T if trans_b else colmajor(b, k, n, ldb)
        dst = colmajor(c, m, n, ldc)
        prod = np.float32(alpha) * (op_a.astype(np.float64) @ op_b.astype(np.float64))
        # beta == 0 ignores the previous contents of C, NaN included.
        dst[...] = prod if beta == 0 else prod + np.float32(beta) * dst

    def gemv(self, trans, m, n, alpha, a, lda, x, incx, beta, y, incy):
        self.calls.append(("gemv", self.stream, trans))
        mat = colmajor(a, m, n, lda)
        op_a = mat.T if trans else mat
        x_len, y_len = (m, n) if trans else (n, m)
        xs = strided(x, x_len, incx)
        ys = strided(y, y_len, incy)
        prod = np.float32(alpha) * (op_a.astype(np.float64) @ xs.astype(np.float64))
        ys[...] = prod if beta == 0 else prod + np.float32(beta) * ys

    def asum(self, n, x):
        return float(np.abs(x[:n]).sum())

    def nrm2(self, n, x):
        return float(np.linalg.norm(x[:n].astype(np.float64)))

    def iamax(self, n, x):
        return int(np.argmax(np.abs(x[:n])))


class HostRandom(RandomBackend):
    def __init__(self, seed=0):
        self.requests = []
        self.seed(seed)

    def set_stream(self, stream):
        pass

    def seed(self, value):
        self._rng = np.random.default_rng(value)

    def uniform(self, buffer):
        self.requests.append(("uniform", len(buffer)))
        buffer[...] = 1 - self._rng.random(len(buffer), dtype=np.float32)

    def normal(self, buffer, mean, std):
        if len(buffer) % 2:
            raise ValueError(f"normal generation needs an even length, got {len(buffer)}")
        self.requests.append(("normal", len(buffer)))
        buffer[...] = self._rng.normal(mean, std, len(buffer)).astype(np.float32)


def _elementwise(fn):
    def kernel(grid, block, shared, *args):
        return fn(*args)
    return kernel


def _log_sum_exp_groups(grid, block, shared, src, dst, cols, groups):
    cols, groups, width = int(cols), int(groups), block[0]
    assert shared == width * ELEMENT_DTYPE.itemsize
    assert cols <= groups * width
    rows = grid[0] // groups
    lanes = np.full((rows, groups * width), -np.inf)
    lanes[:, :cols] = src[: rows * cols].reshape(rows, cols)
    lanes = lanes.reshape(rows * groups, width)
    m = lanes.max(axis=1)
    finite = np.where(np.isinf(m), 0.0, m)
    out = np.where(np.isinf(m), m, finite + np.log(np.exp(lanes - finite[:, None]).sum(axis=1)))
    dst[: rows * groups] = out


def _map_max_rows(table, src, rows, cols):
    rows, cols = int(rows), int(cols)
    best = np.argmax(src[: rows * cols].reshape(rows, cols), axis=1)
    table[:rows] = np.arange(rows) * cols + best


def _set(v, n, values):
    v[:n] = values


HOST_KERNELS = {
    "addScaler": _elementwise(lambda s, v, n: _set(v, n, v[:n] + s)),
    "powScaler": _elementwise(lambda p, v, n: _set(v, n, np.power(v[:n], p))),
    "divElements": _elementwise(lambda v, d, n: _set(v, n, v[:n] / d[:n])),
    "elemMax": _elementwise(lambda v, o, n: _set(v, n, np.maximum(v[:n], o[:n]))),
    "expElements": _elementwise(lambda v, n: _set(v, n, np.exp(v[:n]))),
    "logElements": _elementwise(lambda v, n: _set(v, n, np.log(v[:n]))),
    "tanhElements": _elementwise(lambda v, n: _set(v, n, np.tanh(v[:n]))),
    "sinElements": _elementwise(lambda v, n: _set(v, n, np.sin(v[:n]))),
    "sigmoidElements": _elementwise(lambda v, n: _set(v, n, 1 / (1 + np.exp(-v[:n])))),
    "clipPositive": _elementwise(lambda v, n: _set(v, n, np.maximum(v[:n], 0))),
    "lessThan": _elementwise(lambda a, v, n: _set(v, n, v[:n] < a)),
    "greaterThan": _elementwise(lambda a, v, n: _set(v, n, v[:n] > a)),
    "equalTo": _elementwise(lambda a, v, n: _set(v, n, v[:n] == a)),
    "addChunks": _elementwise(
        lambda v, s, n, chunk: _set(v, n, v[:n] + s[np.arange(n) // chunk])),
    "addRepeated": _elementwise(
        lambda v, r, n, rlen: _set(v, n, v[:n] + r[np.arange(n) % rlen])),
    "addRepeatedPow2": _elementwise(
        lambda v, r, n, mask: _set(v, n, v[:n] + r[np.arange(n) & mask])),
    "scaleRepeated": _elementwise(
        lambda v, r, n, rlen: _set(v, n, v[:n] * r[np.arange(n) % rlen])),
    "scaleRepeatedPow2": _elementwise(
        lambda v, r, n, mask: _set(v, n, v[:n] * r[np.arange(n) & mask])),
    "mapForward": _elementwise(lambda out, src, table, n: _set(out, n, src[table[:n]])),
    "mapBackward": _elementwise(lambda out, src, table, n: np.add.at(out, table[:n], src[:n])),
    "mapMaxRows": _elementwise(_map_max_rows),
    "logSumExpGroups": _log_sum_exp_groups,
}


class HostKernels(KernelModule):
    def __init__(self, failing=None):
        self.launches = []
        self.failing = failing if failing is not None else set()

    @property
    def names(self):
        return frozenset(HOST_KERNELS)

    def launch(self, name, grid, block, shared_mem, *args):
        self.launches.append((name, grid, block))
        if name in self.failing:
            raise RuntimeError(f"launch of {name} failed")
        with np.errstate(all="ignore"):
            HOST_KERNELS[name](grid, block, shared_mem, *args)

    def count(self, name):
        return sum(1 for launch in self.launches if launch[0] == name)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class HostSession(Session):
    def __init__(self, config: SessionConfig | None = None):
        self._blas = HostBlas()
        self._rand = HostRandom((config.seed if config else None) or 0)
        self.failing = set()
        self._kernels = HostKernels(self.failing)
        self.allocations = 0
        self.allocated = []
        self.frees = 0
        self.substream_counts = []
        self.worker_threads = set()
        super().__init__(config)

    @property
    def name(self):
        return "host"

    @property
    def blas(self):
        return self._blas

    @property
    def rand(self):
        return self._rand

    @property
    def kernels(self):
        return self._kernels

    def allocate(self, count, dtype=ELEMENT_DTYPE):
        self.allocations += 1
        buf = np.empty(count, dtype=dtype)
        buf.fill(np.nan if np.dtype(dtype).kind == "f" else -1)
        self.allocated.append(weakref.ref(buf))
        return buf

    def free(self, buffer):
        self.frees += 1

    def copy(self, dst, src):
        if "copy" in self.failing:
            raise RuntimeError("copy failed")
        assert dst.shape == src.shape, (dst.shape, src.shape)
        dst[...] = src

    def clear(self, buffer):
        buffer[...] = 0

    def slice(self, buffer, start, end):
        return buffer[start:end]

    def read(self, buffer):
        return buffer.copy()

    def write(self, buffer, host):
        buffer[: len(host)] = host

    @contextlib.contextmanager
    def stream_context(self):
        self.worker_threads.add(threading.current_thread().name)
        yield MAIN_STREAM

    @contextlib.contextmanager
    def substreams(self, count):
        self.substream_counts.append(count)
        try:
            yield [f"sub{i}" for i in range(count)]
        finally:
            self._blas.set_stream(MAIN_STREAM)

    def synchronize(self):
        self.queue.drain()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def session():
    s = HostSession()
    yield s
    s.close()


@pytest.fixture
def creator(session):
    return Creator32(session)


def make_creator(**config):
    """Creator over a HostSession with a custom config (caller closes the session)."""
    return Creator32(HostSession(SessionConfig(**config)))
