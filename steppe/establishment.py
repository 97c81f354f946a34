"""Establishment Engine: which species gain individuals this year.

  - Nothing establishes while the plot is disturbed (annual groups get
    regen_ok = False as well).
  - Groups that are switched off, extirpated, or before their start year
    do not establish.
  - Annual groups only decide regen_ok here; their plants come from the
    seedbank in the resource partitioner. A scheduled kill (probabilistic
    if killfreq < 1, periodic otherwise) suppresses regeneration.
  - Each perennial species draws against its establishment probability and,
    on success, adds U{1..max_seed_estab} individuals at age 1. Mortality
    of true age-0 plants is folded into that probability.
  - At most max_spp_estab species per group establish in one year; once
    that many have succeeded the remaining members do not draw.
"""

from __future__ import annotations

import numpy as np

from steppe.environment import PlotState
from steppe.population import Community, ResourceGroup, Species
from steppe.utils import gt, lt


def killfreq_triggered(group: ResourceGroup, year: int,
                       rng: np.random.Generator) -> bool:
    """Whether the group's scheduled kill frequency fires this year."""
    killfreq = group.cfg.killfreq
    if not gt(killfreq, 0.0):
        return False
    if lt(killfreq, 1.0):
        return bool(rng.random() <= killfreq)
    return (year - group.cfg.startyr) % int(killfreq) == 0


def num_establish(sp: Species, rng: np.random.Generator) -> int:
    """Seedlings of a perennial species establishing this year (often 0)."""
    if rng.random() <= sp.seedling_estab_prob and sp.cfg.max_seed_estab > 0:
        return int(rng.integers(1, sp.cfg.max_seed_estab + 1))
    return 0


def establish(
    community: Community,
    plot: PlotState,
    rng: np.random.Generator,
) -> int:
    """Run establishment for the current year.

    Returns:
        Number of perennial individuals added.
    """
    year = community.year
    for g in community.groups:
        if g.is_annual:
            g.regen_ok = plot.disturbed <= 0

    if plot.disturbed > 0:
        return 0

    added = 0
    for g in community.groups:
        if not g.cfg.use_me or g.extirpated:
            if g.is_annual:
                g.regen_ok = False
            continue

        if year < g.cfg.startyr:
            if g.is_annual:
                g.regen_ok = False
        elif g.is_annual:
            g.regen_ok = not killfreq_triggered(g, year, rng)
        else:
            n_spp = 0
            for sp_idx in g.members:
                if n_spp >= g.cfg.max_spp_estab:
                    break
                sp = community.species[sp_idx]
                if not sp.cfg.use_me:
                    continue
                n = num_establish(sp, rng)
                if n:
                    community.add_individuals(sp_idx, n)
                    added += n
                    n_spp += 1
    return added
