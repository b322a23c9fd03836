"""Elementwise, compare and broadcast kernel dispatch.

Computes launch geometry from a vector length and issues named kernels
from the session's kernel module. Callers pass buffers that are already
materialized; these helpers run on the queue worker.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from cudavec.backend import Session

log = logging.getLogger(__name__)

UNARY_KERNELS = {
    "exp": "expElements",
    "log": "logElements",
    "tanh": "tanhElements",
    "sin": "sinElements",
    "sigmoid": "sigmoidElements",
    "clip_pos": "clipPositive",
}

COMPARE_KERNELS = {
    "less_than": "lessThan",
    "greater_than": "greaterThan",
    "equal_to": "equalTo",
}


def is_power_of_two(n: int) -> bool:
    """True for 1, 2, 4, 8, ...; false for zero and negatives."""
    return n > 0 and n & (n - 1) == 0


def launch_geometry(n: int, block_size: int) -> tuple[int, int]:
    """(grid, block) covering ``n`` threads with blocks of at most ``block_size``."""
    if n < block_size:
        return 1, n
    return (n + block_size - 1) // block_size, block_size


def launch_elementwise(session: Session, name: str, n: int, *args: Any) -> None:
    """One thread per element; a length-0 launch is skipped."""
    if n == 0:
        return
    grid, block = launch_geometry(n, session.config.block_size)
    log.debug("launch %s grid=%d block=%d n=%d", name, grid, block, n)
    session.kernels.launch(name, (grid,), (block,), 0, *args)


def unary(session: Session, op: str, buffer: Any, n: int) -> None:
    launch_elementwise(session, UNARY_KERNELS[op], n, buffer, np.int32(n))


def compare(session: Session, op: str, buffer: Any, n: int, alpha: float) -> None:
    launch_elementwise(session, COMPARE_KERNELS[op], n, np.float32(alpha), buffer, np.int32(n))


def add_scaler(session: Session, buffer: Any, n: int, scaler: float) -> None:
    launch_elementwise(session, "addScaler", n, np.float32(scaler), buffer, np.int32(n))


def pow_scaler(session: Session, buffer: Any, n: int, power: float) -> None:
    launch_elementwise(session, "powScaler", n, np.float32(power), buffer, np.int32(n))


def div_elements(session: Session, buffer: Any, other: Any, n: int) -> None:
    launch_elementwise(session, "divElements", n, buffer, other, np.int32(n))


def elem_max(session: Session, buffer: Any, other: Any, n: int) -> None:
    launch_elementwise(session, "elemMax", n, buffer, other, np.int32(n))


def add_chunks(session: Session, buffer: Any, chunks: Any, n: int, chunk_count: int) -> None:
    """buffer[i] += chunks[i / chunk_size] with chunk_size = n / chunk_count."""
    launch_elementwise(session, "addChunks", n, buffer, chunks, np.int32(n), np.int32(n // chunk_count))


def repeated(session: Session, op: str, buffer: Any, pattern: Any, n: int, pattern_len: int) -> None:
    """Apply ``pattern`` tiled over ``buffer`` (op is "add" or "scale").

    A power-of-two pattern length gets the bitmask-indexed variant.
    """
    name = f"{op}Repeated"
    if is_power_of_two(pattern_len):
        launch_elementwise(session, name + "Pow2", n, buffer, pattern, np.int32(n),
                           np.int32(pattern_len - 1))
    else:
        launch_elementwise(session, name, n, buffer, pattern, np.int32(n), np.int32(pattern_len))


def map_forward(session: Session, out: Any, inp: Any, table: Any, n: int) -> None:
    launch_elementwise(session, "mapForward", n, out, inp, table, np.int32(n))


def map_backward(session: Session, out: Any, inp: Any, table: Any, n: int) -> None:
    launch_elementwise(session, "mapBackward", n, out, inp, table, np.int32(n))


def map_max_rows(session: Session, table: Any, inp: Any, rows: int, cols: int) -> None:
    """table[r] = r*cols + argmax(inp[r*cols : (r+1)*cols]), one thread per row."""
    launch_elementwise(session, "mapMaxRows", rows, table, inp, np.int32(rows), np.int32(cols))
