"""Resource Partitioner: precipitation → group resource → individual PR.

Three passes per year:
  1. Base allocation. Each group converts precipitation to a resource index
     (linear in ppt, coefficients keyed by the year's wet/dry/normal class,
     eqns 2-4), requires relsize / max_density and gets min(1, required,
     index). Unused resource below index 1.0 and resource above 1.0 are
     pooled, weighted by min_res_req. Annual groups first size themselves
     from their seedbank without committing anything.
  2. Redistribution of both pools in proportion to each group's weighted
     size. Groups eligible for extra resource with xgrow > 0 keep the
     above-1.0 share as res_extra; everyone else folds it into res_avail.
  3. Individual apportionment, largest plant first. Scarce years (PR > 1)
     fill plants in turn until the resource runs out; ample years give each
     plant its size-proportional share. Extra resource is split between
     persistent growth (weight 1 - relsize) and superfluous growth.

A ResourceProvider may replace the linear formula with per-group
(baseline, actual) quantities, e.g. from a soil-water model; it receives
every group's PR once partitioning is done.

References:
  - Coffin & Lauenroth 1990, eqns 2-4
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from steppe.environment import EnvironmentYear
from steppe.population import Community, ResourceGroup, Species
from steppe.types import PR_SENTINEL, PR_ZERO_ESTAB, PptClass
from steppe.utils import EPSILON, gt, is_zero, lt, safe_ratio


# ═══════════════════════════════════════════════════════════════════════
# RESOURCE PROVIDER CAPABILITY
# ═══════════════════════════════════════════════════════════════════════

class ResourceProvider:
    """External source of per-group resource quantities.

    Subclasses override get_resource(); returning None for a group makes
    the partitioner use its internal precipitation formula for that group.
    """

    def get_resource(self, group: ResourceGroup) -> Optional[Tuple[float, float]]:
        """Return (baseline, actual) resource for a group, or None."""
        raise NotImplementedError

    def receive_pr(self, prs: Dict[str, float]) -> None:
        """Hook called with {group name: PR} after partitioning."""


class FixedResourceProvider(ResourceProvider):
    """Serves constant (baseline, actual) values.

    Args:
        resources: {group name: (baseline, actual)}. Groups not listed fall
            back to `default`, or to the precipitation formula if that is None.
        default: Optional (baseline, actual) for unlisted groups.
    """

    def __init__(self, resources: Optional[Dict[str, Tuple[float, float]]] = None,
                 default: Optional[Tuple[float, float]] = None):
        self.resources = dict(resources or {})
        self.default = default
        self.last_pr: Dict[str, float] = {}

    def get_resource(self, group: ResourceGroup) -> Optional[Tuple[float, float]]:
        return self.resources.get(group.name, self.default)

    def receive_pr(self, prs: Dict[str, float]) -> None:
        self.last_pr = dict(prs)


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def ppt_to_resource(ppt: float, wet_dry: PptClass, group: ResourceGroup) -> float:
    """Resource index for a group; 1.0 at average precipitation (eqns 2-4)."""
    return ppt * group.ppt_slope[wet_dry] + group.ppt_intcpt[wet_dry]


def group_pr(required: float, avail: float) -> float:
    """PR = required / available.

    Returns PR_SENTINEL when nothing is available but something is
    required, and 0.0 when neither is.
    """
    if not gt(required, 0.0) and not gt(avail, 0.0):
        return 0.0
    return safe_ratio(required, avail, PR_SENTINEL)


@dataclass
class BaseAllocation:
    """Result of the base pass: the two extra-resource pools and their keys."""
    xtra_base: float = 0.0
    xtra_obase: float = 0.0
    size_base: np.ndarray = field(default_factory=lambda: np.zeros(0))
    size_obase: np.ndarray = field(default_factory=lambda: np.zeros(0))
    space: np.ndarray = field(default_factory=lambda: np.zeros(0))
    noplants: bool = True


# ═══════════════════════════════════════════════════════════════════════
# ANNUAL SEEDBANK
# ═══════════════════════════════════════════════════════════════════════

def annual_max_estab(sp: Species) -> float:
    """Establishments predicted by the seedbank: Σ seedprod[i] / (i+1)^exp_decay."""
    ages = np.arange(1, len(sp.seedprod) + 1, dtype=np.float64)
    return float(np.sum(sp.seedprod / ages ** sp.cfg.exp_decay))


def add_annual_seedprod(sp: Species, pr: float) -> None:
    """Push this year's seed production; negative pr pushes zero seeds."""
    if len(sp.seedprod) == 0:
        return
    sp.seedprod[1:] = sp.seedprod[:-1].copy()
    sp.seedprod[0] = 0.0 if lt(pr, 0.0) else sp.cfg.max_seed_estab * np.exp(-pr)


def add_annuals(
    community: Community,
    g_idx: int,
    g_pr: float,
    add_seeds: bool,
    rng: np.random.Generator,
) -> float:
    """Size an annual group from its seedbank.

    With add_seeds False this only computes the group's temporary relsize
    for resource allocation; a species whose establishment-probability draw
    succeeds gets propagules added to its seedbank now, and will not get
    them again in the committing pass. With add_seeds True the sizes are
    applied and this year's seed production is pushed.

    Args:
        community: Population store.
        g_idx: Index of an annual group.
        g_pr: Group PR (1.0 in the sizing pass).
        add_seeds: Commit sizes and seed production.
        rng: Iteration random stream.

    Returns:
        Group relsize: sum of species sizes / number of member species.
    """
    group = community.groups[g_idx]
    if not group.cfg.use_me or not group.n_members:
        return 0.0

    sumsize = 0.0
    for sp_idx in group.members:
        sp = community.species[sp_idx]
        if not sp.cfg.use_me:
            continue
        newsize = 0.0

        if not add_seeds:
            sp.received_prop = False
            if rng.random() <= sp.seedling_estab_prob:
                add_annual_seedprod(sp, g_pr if group.regen_ok else -1.0)
                sp.received_prop = True

        x = annual_max_estab(sp) if group.regen_ok else 0.0
        if gt(x, 0.0):
            estabs = (x - (x / PR_ZERO_ESTAB * g_pr)) * np.exp(-g_pr)
            pr_inv = 1.0 / g_pr if gt(g_pr, 0.0) else np.inf
            newsize = max(0.0, float(min(pr_inv, estabs)))

        if add_seeds:
            community.set_annual_size(sp_idx, newsize)
            if not sp.received_prop:
                add_annual_seedprod(sp, g_pr if gt(x, 0.0) else -1.0)
            sp.received_prop = False

        sumsize += newsize

    return sumsize / group.n_members


# ═══════════════════════════════════════════════════════════════════════
# PASS 1 & 2 — GROUP LEVEL
# ═══════════════════════════════════════════════════════════════════════

def base_allocation(
    community: Community,
    env: EnvironmentYear,
    rng: np.random.Generator,
    provider: Optional[ResourceProvider] = None,
) -> BaseAllocation:
    """Basic (minimum) resource for every group and the extra pools."""
    n = len(community.groups)
    alloc = BaseAllocation(
        size_base=np.zeros(n), size_obase=np.zeros(n), space=np.zeros(n),
    )

    for g in community.groups:
        if g.is_annual:
            g.relsize = add_annuals(community, g.index, 1.0, False, rng)

        supplied = provider.get_resource(g) if provider is not None else None
        if supplied is not None:
            baseline, actual = supplied
            g.res_required = (g.relsize / g.cfg.max_density) * baseline
            g.res_avail = min(g.res_required, baseline)
            alloc.xtra_base += max(0.0, min(baseline, actual) - g.res_avail)
            alloc.xtra_obase += max(0.0, actual - baseline)
            alloc.space[g.index] = 1.0
        else:
            resource = ppt_to_resource(env.ppt, env.wet_dry, g)
            g.res_required = g.relsize / g.cfg.max_density
            g.res_avail = min(1.0, min(g.res_required, resource))
            alloc.xtra_base += (max(0.0, min(1.0, resource) - g.res_avail)
                                * g.cfg.min_res_req)
            alloc.xtra_obase += max(0.0, resource - 1.0) * g.cfg.min_res_req
            alloc.space[g.index] = g.cfg.min_res_req
        g.res_avail = max(0.0, g.res_avail)
        g.res_extra = 0.0

        alloc.size_base[g.index] = g.relsize * g.cfg.min_res_req
        alloc.size_obase[g.index] = (alloc.size_base[g.index]
                                     if g.cfg.use_extra_res else 0.0)
        if gt(g.relsize, 0.0):
            alloc.noplants = False

    return alloc


def redistribute_extra(
    community: Community,
    isextra: bool,
    extra: float,
    sizes: np.ndarray,
    space: np.ndarray,
) -> None:
    """Share a pool of unused resource among groups by weighted size.

    Args:
        isextra: True for the above-1.0 pool (eligible groups only).
        extra: Pool size.
        sizes: Proportionality key per group.
        space: Per-group divisor (min_res_req, or 1 for provider groups).
    """
    sum_size = float(sizes.sum())
    if not gt(sum_size, 0.0):
        return
    for g in community.groups:
        if is_zero(g.relsize):
            continue
        if isextra and not g.cfg.use_extra_res:
            continue
        req_prop = sizes[g.index] / sum_size
        share = req_prop * extra / space[g.index]
        if isextra and gt(g.cfg.xgrow, 0.0):
            g.res_extra = share
        else:
            g.res_avail += share


# ═══════════════════════════════════════════════════════════════════════
# PASS 3 — INDIVIDUALS
# ═══════════════════════════════════════════════════════════════════════

def partition_individuals(community: Community) -> None:
    """Divide each perennial group's resource among its individuals."""
    for g in community.groups:
        if g.is_annual or community.group_est_count(g.index) == 0:
            continue

        members = community.group_members(g.index, order='descending')
        relsize = members.get('relsize')
        prop = members.get('grp_res_prop')
        required = relsize / g.n_members / g.cfg.max_density

        if gt(g.pr, 1.0):
            # cup method: largest first until exhausted
            before = np.cumsum(required) - required
            avail = np.clip(g.res_avail - before, 0.0, required)
        else:
            avail = prop * g.res_avail

        leftover = g.res_avail - float(avail.sum())
        if gt(leftover, 0.0):
            avail = avail + prop * leftover

        extra = np.zeros(len(members))
        if g.cfg.use_extra_res and gt(g.res_extra, 0.0):
            x = np.clip(1.0 - relsize, 0.0, 1.0)
            extra = (1.0 - x) * prop * g.res_extra
            avail = avail + x * prop * g.res_extra

        pr = np.full(len(members), PR_SENTINEL)
        ok = avail > EPSILON
        pr[ok] = required[ok] / avail[ok]

        members.set('res_required', required)
        members.set('res_avail', avail)
        members.set('res_extra', extra)
        members.set('pr', pr)


def _reset_individual_resources(community: Community) -> None:
    for sp in community.species:
        if sp.is_annual:
            continue
        rec = sp.indivs
        for name in ('res_required', 'res_avail', 'res_extra', 'pr'):
            rec[name] = 0.0


# ═══════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════

def partition_resources(
    community: Community,
    env: EnvironmentYear,
    rng: np.random.Generator,
    provider: Optional[ResourceProvider] = None,
) -> None:
    """Partition this year's resource among groups and individuals.

    If no group has any size the year is a no-op from here on: group PRs,
    annual seedbanks and the provider are left untouched. Propagules
    pushed during the annual sizing pass stay in the seedbank.
    """
    _reset_individual_resources(community)
    alloc = base_allocation(community, env, rng, provider)
    if alloc.noplants:
        return

    redistribute_extra(community, False, alloc.xtra_base,
                       alloc.size_base, alloc.space)
    redistribute_extra(community, True, alloc.xtra_obase,
                       alloc.size_obase, alloc.space)

    for g in community.groups:
        g.pr = group_pr(g.res_required, g.res_avail)
        if g.is_annual:
            g.relsize = add_annuals(community, g.index, g.pr, True, rng)

    partition_individuals(community)

    if provider is not None:
        provider.receive_pr({g.name: g.pr for g in community.groups})
