"""Row-wise log-sum-exp by iterative tree fan-in.

A vector of ``rows * cols`` elements is reduced to ``rows`` values,
``out[r] = log(sum(exp(v[r*cols : (r+1)*cols])))``.

One kernel, ``logSumExpGroups``, reduces every row in groups of at most
``reduction_width`` columns (one thread block per group, shared-memory
tree inside the block). While a row still has more columns than one
block can hold, the group results go to an intermediate buffer and the
pass repeats with ``cols = ceil(cols / width)``. The final pass has one
group per row and writes exactly ``rows`` outputs. Chunk sizes need not
be powers of two; out-of-range lanes contribute ``-inf``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from cudavec import kernels
from cudavec.backend import ELEMENT_DTYPE
from cudavec.buffer import materialize

if TYPE_CHECKING:
    from cudavec.backend import Session

log = logging.getLogger(__name__)


def fan_in_plan(cols: int, width: int) -> list[int]:
    """Column counts after each pass; the last entry is always 1."""
    plan = []
    while cols > width:
        cols = (cols + width - 1) // width
        plan.append(cols)
    plan.append(1)
    return plan


def _reduce_groups(session: Session, src: Any, dst: Any, rows: int, cols: int, groups: int) -> None:
    width = session.config.reduction_width
    session.kernels.launch(
        "logSumExpGroups", (rows * groups,), (width,), width * ELEMENT_DTYPE.itemsize,
        src, dst, np.int32(cols), np.int32(groups),
    )


def add_logs_into(out, v, cols: int) -> None:
    """Write the row-wise log-sum-exp of ``v`` (rows of ``cols``) into ``out``."""
    session = v.session
    rows = len(out)
    if rows == 0:
        return
    src = materialize(v, clear=True)
    dst = materialize(out, clear=False)
    plan = fan_in_plan(cols, session.config.reduction_width)
    log.debug("add_logs rows=%d cols=%d passes=%d", rows, cols, len(plan))
    scratch = []
    try:
        for groups in plan[:-1]:
            tmp = session.allocate(rows * groups)
            scratch.append(tmp)
            _reduce_groups(session, src, tmp, rows, cols, groups)
            src, cols = tmp, groups
        _reduce_groups(session, src, dst, rows, cols, 1)
    finally:
        for tmp in scratch:
            session.free(tmp)


def log_softmax_in_place(v, scratch, cols: int) -> None:
    """v[r, :] -= logsumexp(v[r, :]) using ``scratch`` (length rows) as workspace."""
    n = len(v)
    if n == 0:
        return
    add_logs_into(scratch, v, cols)
    session = v.session
    session.blas.scal(len(scratch), -1.0, scratch.buffer)
    kernels.add_chunks(session, v.buffer, scratch.buffer, n, len(scratch))
