"""Random fill of vectors from the session's generator."""

from __future__ import annotations

from enum import Enum

from cudavec import kernels
from cudavec.buffer import materialize


class ProbDist(Enum):
    UNIFORM = "uniform"      # (0, 1]
    BERNOULLI = "bernoulli"  # 0 or 1 with equal probability
    NORMAL = "normal"        # mean 0, stddev 1


def randomize(v, dist: ProbDist) -> None:
    n = len(v)
    if n == 0:
        return
    session = v.session
    if dist is ProbDist.NORMAL:
        # The generator only fills even-length, pair-aligned buffers.
        if n % 2 == 0 and v.offset % 2 == 0:
            session.rand.normal(materialize(v, clear=False), 0.0, 1.0)
            return
        scratch = session.allocate(n + n % 2)
        try:
            session.rand.normal(scratch, 0.0, 1.0)
            session.copy(materialize(v, clear=False), session.slice(scratch, 0, n))
        finally:
            session.free(scratch)
        return
    buffer = materialize(v, clear=False)
    session.rand.uniform(buffer)
    if dist is ProbDist.BERNOULLI:
        kernels.compare(session, "less_than", buffer, n, 0.5)
