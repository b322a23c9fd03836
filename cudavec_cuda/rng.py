"""cuRAND backend over CuPy device arrays."""

from __future__ import annotations

import os
from typing import Any

from cudavec.backend import RandomBackend

try:
    import cupy as cp  # noqa: F401
    from cupy_backends.cuda.libs import curand

    HAS_CUPY = True
except ImportError:
    curand = None
    HAS_CUPY = False


class CUDARandom(RandomBackend):
    """Owns one pseudo-random cuRAND generator."""

    def __init__(self, seed: int | None = None):
        if not HAS_CUPY:
            raise RuntimeError("CuPy is not installed")
        self._generator = curand.createGenerator(curand.CURAND_RNG_PSEUDO_DEFAULT)
        self.seed(seed)

    def close(self) -> None:
        if self._generator is not None:
            curand.destroyGenerator(self._generator)
            self._generator = None

    def set_stream(self, stream: Any) -> None:
        curand.setStream(self._generator, stream.ptr)

    def seed(self, value: int | None) -> None:
        if value is None:
            value = int.from_bytes(os.urandom(8), "little")
        curand.setPseudoRandomGeneratorSeed(self._generator, value & 0xFFFFFFFFFFFFFFFF)

    def uniform(self, buffer: Any) -> None:
        curand.generateUniform(self._generator, buffer.data.ptr, buffer.size)

    def normal(self, buffer: Any, mean: float, std: float) -> None:
        if buffer.size % 2:
            raise ValueError(f"normal generation needs an even length, got {buffer.size}")
        curand.generateNormal(self._generator, buffer.data.ptr, buffer.size, mean, std)
