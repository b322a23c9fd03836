"""Session configuration for cudavec backends."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from cudavec.exceptions import ConfigurationError

_ENV_PREFIX = "CUDAVEC_"

# CUDA threads-per-block limit.
MAX_BLOCK_SIZE = 1024


@dataclass(frozen=True)
class SessionConfig:
    """Device and launch constants shared by every vector of a session."""
    device_id: int = 0
    block_size: int = 128
    reduction_width: int = 128
    seed: int | None = None
    memory_limit_bytes: int = 0

    def __post_init__(self):
        if self.device_id < 0:
            raise ConfigurationError(f"device_id must be non-negative, got {self.device_id}")
        if not 0 < self.block_size <= MAX_BLOCK_SIZE:
            raise ConfigurationError(
                f"block_size must be in [1, {MAX_BLOCK_SIZE}], got {self.block_size}"
            )
        # Shared-memory tree reduction halves the group each step.
        w = self.reduction_width
        if w < 2 or w & (w - 1) or w > MAX_BLOCK_SIZE:
            raise ConfigurationError(
                f"reduction_width must be a power of two in [2, {MAX_BLOCK_SIZE}], got {w}"
            )
        if self.memory_limit_bytes < 0:
            raise ConfigurationError("memory_limit_bytes cannot be negative")

    @classmethod
    def from_env(cls, base: SessionConfig | None = None) -> SessionConfig:
        """Override fields of ``base`` from CUDAVEC_* environment variables.

        Recognized: CUDAVEC_DEVICE, CUDAVEC_BLOCK_SIZE, CUDAVEC_REDUCTION_WIDTH,
        CUDAVEC_SEED, CUDAVEC_MEMORY_LIMIT.
        """
        base = base or DEFAULT_CONFIG
        overrides: dict[str, int] = {}
        for field_name, var in (
            ("device_id", "DEVICE"),
            ("block_size", "BLOCK_SIZE"),
            ("reduction_width", "REDUCTION_WIDTH"),
            ("seed", "SEED"),
            ("memory_limit_bytes", "MEMORY_LIMIT"),
        ):
            raw = os.getenv(_ENV_PREFIX + var)
            if raw is None or raw.strip() == "":
                continue
            try:
                overrides[field_name] = int(raw)
            except ValueError:
                raise ConfigurationError(
                    f"{_ENV_PREFIX}{var} must be an integer, got {raw!r}"
                ) from None
        return replace(base, **overrides)


DEFAULT_CONFIG = SessionConfig()
