"""Mortality Engine: growing-season and end-of-year deaths.

Growing season (mortality_main), per perennial group with plants:
  - Stretched resources: PR > 1 for max_stretch consecutive years kills
    n(1 - 1/PR) plants, largest first (eqn 7), then presses the surviving
    clonal plants (eqns 8, 9). One year with PR <= 1 resets the count.
  - Age-independent deaths (eqn 14) and slow-growth deaths, if enabled.
  - Succulents in wet years (eqn 16): partial reduction or death.
  - Disturbance: fecal pat, ant mound or burrow by sensitivity class.

End of year (mortality_end_of_year):
  - Scheduled kill years/frequencies and extirpation
  - Extra growth is discarded and every annual dies

All rules build a kill list before killing anything.

References:
  - Coffin & Lauenroth 1990, eqns 7, 8, 9, 14, 16
"""

from __future__ import annotations

import numpy as np

from steppe.environment import EnvironmentYear, PlotState
from steppe.establishment import killfreq_triggered
from steppe.population import Community, GroupMembers, ResourceGroup, Species
from steppe.types import (
    SLOW_GROWTH_MORT_PROB,
    STRETCH_KILL_COEF,
    STRETCH_KILL_QUOTA,
    STRETCH_REDUCTION_DAMPING,
    DisturbClass,
    DisturbEvent,
    MortalityType,
    PptClass,
    ResourceOvercommitError,
)
from steppe.utils import EPSILON, gt


# ═══════════════════════════════════════════════════════════════════════
# PER-SPECIES RULES
# ═══════════════════════════════════════════════════════════════════════

def age_independent(community: Community, sp: Species,
                    rng: np.random.Generator) -> int:
    """Eqn 14: pn = max_age^(age/max_age - 1) - (age/max_age) * cohort_surv."""
    if sp.max_age <= 1:
        return 0
    slots = sp.alive_slots()
    if len(slots) == 0:
        return 0
    a = sp.indivs['age'][slots] / sp.max_age
    pn = np.power(float(sp.max_age), a - 1.0) - a * sp.cfg.cohort_surv
    draws = rng.random(len(slots))
    return community.kill_individuals(sp.index, slots[draws <= pn],
                                      MortalityType.INTRINSIC)


def slow_growth(community: Community, sp: Species,
                rng: np.random.Generator) -> int:
    """Kill plants after max_slow years of growth at or below the slow rate.

    Seedlings (age 1) are exempt. A fast year only decrements the counter.
    """
    slots = sp.alive_slots()
    if len(slots) == 0:
        return 0
    group = community.groups[sp.group_index]
    slowrate = group.cfg.slowrate * sp.max_rate
    rec = sp.indivs

    slots = slots[rec['age'][slots] != 1]
    slow = rec['growthrate'][slots] - slowrate <= EPSILON
    rec['slow_yrs'][slots[slow]] += 1
    fast = slots[~slow]
    rec['slow_yrs'][fast] = np.maximum(rec['slow_yrs'][fast] - 1, 0)

    candidates = slots[slow & (rec['slow_yrs'][slots] >= sp.cfg.max_slow)]
    if len(candidates) == 0:
        return 0
    draws = rng.random(len(candidates))
    return community.kill_individuals(
        sp.index, candidates[draws <= SLOW_GROWTH_MORT_PROB], MortalityType.SLOW
    )


def succulent_mortality(community: Community, sp: Species,
                        env: EnvironmentYear) -> int:
    """Reduce succulents by the year's reduction amount; kill the small ones.

    Returns:
        Number of plants killed outright.
    """
    killamt = env.succulent_reduction
    slots = sp.alive_slots()
    bigger = sp.indivs['relsize'][slots] - killamt > EPSILON
    for slot in slots[bigger]:
        community.kill_partial(sp.index, int(slot), killamt,
                               MortalityType.SUCCULENT)
    return community.kill_individuals(sp.index, slots[~bigger],
                                      MortalityType.SUCCULENT)


def disturbance_mortality(community: Community, sp: Species,
                          plot: PlotState) -> int:
    """Apply the active plot disturbance to one species.

      - fecal pat, removed: seedlings and very-sensitive species die
      - fecal pat, in place: very-sensitive and sensitive species die
      - ant mound: everything but very-insensitive species dies
      - burrow: everything dies
    """
    cause = MortalityType.DISTURBANCE
    if plot.disturbance == DisturbEvent.FECAL_PAT:
        if plot.pat_removed:
            slots = sp.alive_slots()
            if sp.disturbclass == DisturbClass.VERY_SENSITIVE:
                return community.kill_individuals(sp.index, slots, cause)
            seedlings = slots[sp.indivs['age'][slots] == 1]
            return community.kill_individuals(sp.index, seedlings, cause)
        if sp.disturbclass <= DisturbClass.SENSITIVE:
            return community.kill_species(sp.index, cause)
    elif plot.disturbance == DisturbEvent.ANT_MOUND:
        if sp.disturbclass != DisturbClass.VERY_INSENSITIVE:
            return community.kill_species(sp.index, cause)
    elif plot.disturbance == DisturbEvent.BURROW:
        return community.kill_species(sp.index, cause)
    return 0


# ═══════════════════════════════════════════════════════════════════════
# STRETCHED RESOURCES (group level)
# ═══════════════════════════════════════════════════════════════════════

def no_resources(community: Community, group: ResourceGroup,
                 rng: np.random.Generator) -> int:
    """Eqn 7: kill round(n(1 - 1/PR)) plants, largest first.

    The group's PR must be > 1. Surviving clonal plants are then handled
    by stretched_clonal().

    Returns:
        Number of plants killed outright (both rules).
    """
    members = community.group_members(group.index, order='descending')
    n = len(members)
    nk = min(int(n * (1.0 - 1.0 / group.pr) + 0.5), n)
    killed = 0
    if nk > 0:
        killed += community.kill_members(members.subset(slice(0, nk)),
                                         MortalityType.NO_RESOURCES)
    killed += stretched_clonal(community, group,
                               members.subset(slice(nk, None)), rng)
    return killed


def stretched_clonal(community: Community, group: ResourceGroup,
                     remaining: GroupMembers,
                     rng: np.random.Generator) -> int:
    """Extra pressure on surviving clonal plants of a stretched group.

    With probability 0.04*y² (eqn 8, y = stretched years) the largest 90%
    of the clonal plants die (eqn 9). Otherwise each clonal plant loses
    its share of the remaining clonal size times 0.8 / PR.

    Raises:
        ResourceOvercommitError: If 1/PR exceeds 1.
    """
    if len(remaining) == 0:
        return 0
    clonal = np.array([community.species[s].isclonal for s in remaining.species],
                      dtype=bool)
    clist = remaining.subset(clonal)
    n_clonal = len(clist)
    if n_clonal == 0:
        return 0

    y = group.yrs_neg_pr
    if y < group.cfg.max_stretch:
        return 0

    pm = STRETCH_KILL_COEF * y * y
    if rng.random() <= pm:
        nk = min(int(np.floor(n_clonal * STRETCH_KILL_QUOTA)), n_clonal)
        return community.kill_members(clist.subset(slice(0, nk)),
                                      MortalityType.NO_RESOURCES)

    total_reduction = 1.0 / group.pr if gt(group.pr, 0.0) else np.inf
    if total_reduction > 1.0:
        raise ResourceOvercommitError(
            f"PR too large in stretched clonal mortality for group "
            f"'{group.name}' (pr={group.pr:.4f})",
            community.iteration, community.year,
        )
    total_reduction *= STRETCH_REDUCTION_DAMPING
    relsize = clist.get('relsize')
    total_size = float(relsize.sum())
    for sp_idx, slot, size in zip(clist.species, clist.slots, relsize):
        community.kill_partial(int(sp_idx), int(slot),
                               size / total_size * total_reduction,
                               MortalityType.NO_RESOURCES)
    return 0


# ═══════════════════════════════════════════════════════════════════════
# ENTRY POINTS
# ═══════════════════════════════════════════════════════════════════════

def mortality_main(
    community: Community,
    env: EnvironmentYear,
    plot: PlotState,
    rng: np.random.Generator,
) -> None:
    """Growing-season mortality for every perennial group."""
    for g in community.groups:
        if g.is_annual or community.group_est_count(g.index) == 0:
            continue

        if gt(g.pr, 1.0):
            g.yrs_neg_pr += 1
            if g.yrs_neg_pr >= g.cfg.max_stretch:
                no_resources(community, g, rng)
        else:
            g.yrs_neg_pr = 0

        for sp in community.established_species(g.index):
            if sp.est_count == 0:
                continue
            if g.cfg.use_mort:
                age_independent(community, sp, rng)
                slow_growth(community, sp, rng)

            if (g.cfg.succulent and env.wet_dry == PptClass.WET
                    and rng.random() <= env.succulent_prob_death):
                succulent_mortality(community, sp, env)

            disturbance_mortality(community, sp, plot)


def mortality_end_of_year(community: Community,
                          rng: np.random.Generator) -> None:
    """Scheduled kills, extirpation, extra growth and annuals."""
    year = community.year
    for g in community.groups:
        if year >= g.cfg.startyr and killfreq_triggered(g, year, rng):
            g.killyr = year

        if year == g.cfg.extirp:
            community.extirpate_group(g.index)
        elif year == g.killyr:
            community.kill_group(g.index, MortalityType.SCHEDULED)

    for sp in community.species:
        sp.extragrowth = 0.0

    for g in community.groups:
        if g.is_annual:
            for sp in community.established_species(g.index):
                community.kill_species(sp.index, MortalityType.ANNUAL)
