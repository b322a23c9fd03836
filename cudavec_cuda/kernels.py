"""CUDA kernel module: the named vector kernels via CuPy RawModule.

Architecture:
    - NVRTC compilation happens once per source (module-level cache keyed
      by source hash), not once per session
    - Kernel functions are resolved lazily and memoized per module
    - launch() runs on the current CuPy stream, which the session binds
      around every queued operation
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from cudavec.backend import KernelModule
from cudavec.exceptions import DeviceError
from cudavec_cuda.kernel_sources import KERNEL_NAMES, VECTOR_KERNELS

try:
    import cupy as cp

    HAS_CUPY = True
except ImportError:
    cp = None
    HAS_CUPY = False

log = logging.getLogger(__name__)

# Module-level NVRTC compilation cache: source_hash -> RawModule
# Survives across sessions, avoiding redundant NVRTC calls
_MODULE_CACHE: dict[str, "cp.RawModule"] = {}


def _get_or_compile_module(source_code: str) -> "cp.RawModule":
    """Get a compiled module from cache or compile via NVRTC."""
    key = hashlib.md5(source_code.encode()).hexdigest()
    cached = _MODULE_CACHE.get(key)
    if cached is not None:
        return cached
    module = cp.RawModule(code=source_code)
    _MODULE_CACHE[key] = module
    log.debug("compiled kernel module %s", key[:12])
    return module


class CUDAKernelModule(KernelModule):
    """Launches the fixed named kernel set on the current stream."""

    def __init__(self, source_code: str = VECTOR_KERNELS, names: frozenset[str] = KERNEL_NAMES):
        if not HAS_CUPY:
            raise RuntimeError("CuPy is not installed")
        self._module = _get_or_compile_module(source_code)
        self._names = names
        self._functions: dict[str, Any] = {}

    @property
    def names(self) -> frozenset[str]:
        return self._names

    def _function(self, name: str) -> Any:
        fn = self._functions.get(name)
        if fn is None:
            if name not in self._names:
                raise DeviceError(f"unknown kernel {name!r}", operation=name)
            fn = self._module.get_function(name)
            self._functions[name] = fn
        return fn

    def launch(
        self,
        name: str,
        grid: tuple[int, ...],
        block: tuple[int, ...],
        shared_mem: int,
        *args: Any,
    ) -> None:
        self._function(name)(grid, block, args, shared_mem=shared_mem)
