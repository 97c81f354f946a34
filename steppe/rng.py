"""Seeded random streams for reproducible STEPPE runs.

Uses NumPy's SeedSequence → PCG64 hierarchy so that:
  - Every iteration has a statistically independent stream
  - The same master seed replays a run bit for bit
  - Results do not depend on whether iterations run serially or in a pool

References:
  - NumPy docs: numpy.random.SeedSequence
"""

from __future__ import annotations

from typing import List

import numpy as np


def create_iteration_rngs(
    master_seed: int,
    n_iterations: int,
) -> List[np.random.Generator]:
    """Create one independent Generator per Monte Carlo iteration.

    Args:
        master_seed: Master RNG seed (non-negative integer).
        n_iterations: Number of iterations.

    Returns:
        List of numpy Generator instances, index = iteration number - 1.

    Example:
        >>> rngs = create_iteration_rngs(42, n_iterations=10)
        >>> rngs[0].random()  # reproducible
    """
    ss = np.random.SeedSequence(master_seed)
    return [
        np.random.Generator(np.random.PCG64(child))
        for child in ss.spawn(n_iterations)
    ]
