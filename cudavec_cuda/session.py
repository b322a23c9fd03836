"""CUDA session: CuPy-based Session implementation.

Implements the Session contract from cudavec.backend with CuPy for
device selection, a non-blocking stream, a per-session memory pool,
cuBLAS, cuRAND and NVRTC-compiled kernels. Device buffers are 1-D
cupy.ndarray objects; slices are zero-copy views.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Iterator

import numpy as np

from cudavec.backend import ELEMENT_DTYPE, Session
from cudavec.config import DEFAULT_CONFIG, SessionConfig
from cudavec.creator import Creator32
from cudavec.exceptions import ConfigurationError

try:
    import cupy as cp

    HAS_CUPY = True
except ImportError:
    cp = None
    HAS_CUPY = False

log = logging.getLogger(__name__)


class CUDASession(Session):
    """Owns one CUDA device's stream, memory pool and backend handles."""

    def __init__(self, config: SessionConfig | None = None):
        if not HAS_CUPY:
            raise ConfigurationError("CuPy is not installed. Install with: pip install cudavec[cuda]")
        config = config or DEFAULT_CONFIG
        try:
            count = cp.cuda.runtime.getDeviceCount()
        except cp.cuda.runtime.CUDARuntimeError as exc:
            raise ConfigurationError(f"no CUDA devices: {exc}") from exc
        if config.device_id >= count:
            raise ConfigurationError(f"device {config.device_id} not found ({count} available)")

        from cudavec_cuda.blas import CUDABlas
        from cudavec_cuda.kernels import CUDAKernelModule
        from cudavec_cuda.rng import CUDARandom

        self._device = cp.cuda.Device(config.device_id)
        with self._device:
            self._stream = cp.cuda.Stream(non_blocking=True)
            self._pool = cp.cuda.MemoryPool()
            if config.memory_limit_bytes:
                self._pool.set_limit(size=config.memory_limit_bytes)
            try:
                self._blas = CUDABlas()
                self._blas.set_stream(self._stream)
                self._rand = CUDARandom(config.seed)
                self._rand.set_stream(self._stream)
                self._kernels = CUDAKernelModule()
            except Exception as exc:
                raise ConfigurationError(f"backend initialization failed: {exc}") from exc
        super().__init__(config)
        log.debug("opened CUDA session on device %d", config.device_id)

    @property
    def name(self) -> str:
        return "cuda"

    @property
    def device(self) -> Any:
        """Return CuPy device object."""
        return self._device

    @property
    def stream(self) -> Any:
        return self._stream

    @property
    def blas(self):
        return self._blas

    @property
    def rand(self):
        return self._rand

    @property
    def kernels(self):
        return self._kernels

    # -- memory ---------------------------------------------------------

    def allocate(self, count: int, dtype: np.dtype = ELEMENT_DTYPE) -> cp.ndarray:
        return cp.empty(count, dtype=dtype)

    def free(self, buffer: cp.ndarray) -> None:
        # Memory returns to the session pool once the last view is dropped.
        del buffer

    def copy(self, dst: cp.ndarray, src: cp.ndarray) -> None:
        cp.copyto(dst, src)

    def clear(self, buffer: cp.ndarray) -> None:
        buffer.fill(0)

    def slice(self, buffer: cp.ndarray, start: int, end: int) -> cp.ndarray:
        return buffer[start:end]

    def read(self, buffer: cp.ndarray) -> np.ndarray:
        return buffer.get(stream=self._stream)

    def write(self, buffer: cp.ndarray, host: np.ndarray) -> None:
        buffer[: len(host)].set(np.ascontiguousarray(host, dtype=buffer.dtype), stream=self._stream)

    # -- execution ------------------------------------------------------

    @contextlib.contextmanager
    def stream_context(self) -> Iterator[Any]:
        with self._device, self._stream, cp.cuda.using_allocator(self._pool.malloc):
            yield self._stream

    @contextlib.contextmanager
    def substreams(self, count: int) -> Iterator[list[Any]]:
        main = self._stream
        ready = main.record()
        streams = [cp.cuda.Stream(non_blocking=True) for _ in range(count)]
        for s in streams:
            s.wait_event(ready)
        try:
            yield streams
        finally:
            for s in streams:
                main.wait_event(s.record())
            self._blas.set_stream(main)

    def synchronize(self) -> None:
        """Synchronize the session stream after everything queued so far."""
        self.queue.drain()
        self._stream.synchronize()

    def close(self) -> None:
        if self.queue.closed:
            return
        super().close()
        with self._device:
            self._stream.synchronize()
            self._blas.close()
            self._rand.close()
            self._pool.free_all_blocks()
        log.debug("closed CUDA session on device %d", self.config.device_id)


def new_creator(config: SessionConfig | None = None) -> Creator32:
    """Open a CUDA session and return a float32 creator bound to it."""
    return Creator32(CUDASession(config))
