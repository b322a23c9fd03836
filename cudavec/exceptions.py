"""
Exception hierarchy for cudavec.

All exceptions inherit from CudaVecError so callers can catch any
library-specific failure. Contract violations are raised on the calling
thread before anything is enqueued; device errors are raised inside an
enqueued operation and reach the caller through its completion handle.
"""

from __future__ import annotations


class CudaVecError(Exception):
    """Base exception for all cudavec errors."""
    pass


class ContractViolation(CudaVecError, ValueError):
    """
    A call broke the vector/mapper contract.

    Always fatal to the call; the arguments are never silently corrected.
    """
    pass


class DimensionError(ContractViolation):
    """
    Lengths are negative, mismatched, or not evenly divisible.

    Attributes:
        actual: The offending length or divisor, if known
        expected: What the operation required, if known
    """

    def __init__(self, message: str, actual: int | None = None, expected: int | None = None):
        super().__init__(message)
        self.actual = actual
        self.expected = expected


class IndexOutOfRange(ContractViolation):
    """A slice bound or mapper table entry lies outside its valid range."""

    def __init__(self, message: str, index: int | None = None, limit: int | None = None):
        super().__init__(message)
        self.index = index
        self.limit = limit


class AliasingError(ContractViolation):
    """A mutation target overlaps another operand of the same call."""
    pass


class DeviceError(CudaVecError, RuntimeError):
    """
    An enqueued device operation failed.

    The session's state after a DeviceError is not guaranteed consistent;
    nothing is retried.

    Attributes:
        operation: Name of the queued operation that failed
    """

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class ConfigurationError(CudaVecError):
    """Session construction failed (no device, missing backend, init error)."""
    pass
