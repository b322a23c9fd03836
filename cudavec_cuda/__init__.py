"""CUDA backend: CuPy-based session for cudavec."""

from cudavec_cuda.session import CUDASession as CUDASession
from cudavec_cuda.session import HAS_CUPY as HAS_CUPY
from cudavec_cuda.session import new_creator as new_creator
