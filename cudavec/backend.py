"""Abstract device interfaces consumed by the vector engine.

The engine never talks to a device directly. It goes through a Session,
which owns the ordered execution stream, the allocator, and three
backends: linear algebra, random numbers, and a module of named kernels.
All sizes and offsets are in elements, never bytes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Callable, ContextManager

import numpy as np

from cudavec.config import DEFAULT_CONFIG, SessionConfig
from cudavec.queue import CommandQueue

ELEMENT_DTYPE = np.dtype(np.float32)
INDEX_DTYPE = np.dtype(np.int32)

SIDE_LEFT = "left"
SIDE_RIGHT = "right"


class BlasBackend(ABC):
    """Column-major linear algebra over device buffers (cuBLAS argument order)."""

    @abstractmethod
    def set_stream(self, stream: Any) -> None:
        ...

    @abstractmethod
    def scal(self, n: int, alpha: float, x: Any) -> None:
        ...

    @abstractmethod
    def axpy(self, n: int, alpha: float, x: Any, y: Any) -> None:
        ...

    @abstractmethod
    def dot(self, n: int, x: Any, y: Any) -> float:
        ...

    @abstractmethod
    def dgmm(self, side: str, m: int, n: int, a: Any, lda: int, x: Any, c: Any, ldc: int) -> None:
        """C = A * diag(x) (right) or diag(x) * A (left)."""
        ...

    @abstractmethod
    def gemm(
        self, trans_a: bool, trans_b: bool, m: int, n: int, k: int,
        alpha: float, a: Any, lda: int, b: Any, ldb: int,
        beta: float, c: Any, ldc: int,
    ) -> None:
        ...

    @abstractmethod
    def gemv(
        self, trans: bool, m: int, n: int, alpha: float, a: Any, lda: int,
        x: Any, incx: int, beta: float, y: Any, incy: int,
    ) -> None:
        ...

    @abstractmethod
    def asum(self, n: int, x: Any) -> float:
        ...

    @abstractmethod
    def nrm2(self, n: int, x: Any) -> float:
        ...

    @abstractmethod
    def iamax(self, n: int, x: Any) -> int:
        """0-based index of the element with the largest magnitude."""
        ...


class RandomBackend(ABC):
    """Pseudo-random fill of float32 device buffers."""

    @abstractmethod
    def set_stream(self, stream: Any) -> None:
        ...

    @abstractmethod
    def seed(self, value: int | None) -> None:
        """Seed the generator; ``None`` draws a fresh seed."""
        ...

    @abstractmethod
    def uniform(self, buffer: Any) -> None:
        """Fill with samples from (0, 1]."""
        ...

    @abstractmethod
    def normal(self, buffer: Any, mean: float, std: float) -> None:
        """Fill with normal samples. The buffer length must be even."""
        ...


class KernelModule(ABC):
    """A fixed set of named device kernels."""

    @property
    @abstractmethod
    def names(self) -> frozenset[str]:
        ...

    @abstractmethod
    def launch(
        self,
        name: str,
        grid: tuple[int, ...],
        block: tuple[int, ...],
        shared_mem: int,
        *args: Any,
    ) -> None:
        ...


class Session(ABC):
    """Owner of device execution resources.

    Subclasses provide memory primitives and backends; the base class owns
    the command queue that serializes every operation of the session.
    """

    def __init__(self, config: SessionConfig | None = None):
        self._config = config or DEFAULT_CONFIG
        self._queue = CommandQueue(self.stream_context, name=f"{self.name}-stream")

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def queue(self) -> CommandQueue:
        return self._queue

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def blas(self) -> BlasBackend:
        ...

    @property
    @abstractmethod
    def rand(self) -> RandomBackend:
        ...

    @property
    @abstractmethod
    def kernels(self) -> KernelModule:
        ...

    # -- memory ---------------------------------------------------------

    @abstractmethod
    def allocate(self, count: int, dtype: np.dtype = ELEMENT_DTYPE) -> Any:
        ...

    @abstractmethod
    def free(self, buffer: Any) -> None:
        ...

    @abstractmethod
    def copy(self, dst: Any, src: Any) -> None:
        ...

    @abstractmethod
    def clear(self, buffer: Any) -> None:
        ...

    @abstractmethod
    def slice(self, buffer: Any, start: int, end: int) -> Any:
        """Zero-copy view of elements [start, end)."""
        ...

    @abstractmethod
    def read(self, buffer: Any) -> np.ndarray:
        """Copy a device buffer to a new host array."""
        ...

    @abstractmethod
    def write(self, buffer: Any, host: np.ndarray) -> None:
        """Copy ``host`` into the first ``len(host)`` elements of ``buffer``."""
        ...

    # -- execution ------------------------------------------------------

    @abstractmethod
    def stream_context(self) -> ContextManager[Any]:
        """Context entered on the queue worker around every operation."""
        ...

    @abstractmethod
    def substreams(self, count: int) -> ContextManager[list[Any]]:
        """Transient streams ordered after the main stream.

        On exit the main stream waits for every sub-stream and the BLAS
        backend is bound to the main stream again.
        """
        ...

    @abstractmethod
    def synchronize(self) -> None:
        ...

    def run(self, operation: Callable[[], Any], name: str = "op") -> Future:
        return self._queue.submit(operation, name)

    def run_sync(self, operation: Callable[[], Any], name: str = "op") -> Any:
        return self._queue.submit_sync(operation, name)

    def close(self) -> None:
        self._queue.shutdown()

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

