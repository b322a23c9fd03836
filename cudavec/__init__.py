"""cudavec: dense float32 vectors resident on an accelerator device."""

from cudavec.backend import BlasBackend, KernelModule, RandomBackend, Session
from cudavec.config import DEFAULT_CONFIG, SessionConfig
from cudavec.creator import Creator32
from cudavec.exceptions import (
    AliasingError,
    ConfigurationError,
    ContractViolation,
    CudaVecError,
    DeviceError,
    DimensionError,
    IndexOutOfRange,
)
from cudavec.kernels import is_power_of_two
from cudavec.mapper import Mapper32
from cudavec.queue import CommandQueue
from cudavec.rand import ProbDist
from cudavec.vector import Vector32

__all__ = [
    "AliasingError",
    "BlasBackend",
    "CommandQueue",
    "ConfigurationError",
    "ContractViolation",
    "Creator32",
    "CudaVecError",
    "DEFAULT_CONFIG",
    "DeviceError",
    "DimensionError",
    "IndexOutOfRange",
    "KernelModule",
    "Mapper32",
    "ProbDist",
    "RandomBackend",
    "Session",
    "SessionConfig",
    "Vector32",
    "is_power_of_two",
]
