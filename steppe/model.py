"""Simulation driver for STEPPE.

Runs independent Monte Carlo iterations of a plant community on one plot.
Each iteration owns a fresh Community, a PlotState and its own random
stream; years within an iteration are strictly sequential:

  1. Establishment
  2. Environment (weather + disturbance)
  3. Resource partitioning
  4. Growth
  5. Growing-season mortality
  6. Age increment
  7. Statistics hand-off (annuals still present)
  8. End-of-year mortality (scheduled kills, extra growth, annuals)

Iterations share nothing mutable, so they can run in a thread pool and
still give the same results as a serial run with the same seed.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from steppe.config import SimulationConfig, default_config
from steppe.environment import (
    EnvironmentYear,
    PlotState,
    generate_environment,
    make_disturbance,
)
from steppe.establishment import establish
from steppe.growth import grow
from steppe.mortality import mortality_end_of_year, mortality_main
from steppe.population import Community
from steppe.resources import ResourceProvider, partition_resources
from steppe.rng import create_iteration_rngs
from steppe.types import N_MORTALITY_TYPES

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# CONTEXT & RESULTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationContext:
    """Everything one iteration's yearly steps operate on."""
    config: SimulationConfig
    community: Community
    plot: PlotState
    rng: np.random.Generator
    provider: Optional[ResourceProvider] = None
    env: Optional[EnvironmentYear] = None

    @property
    def iteration(self) -> int:
        return self.community.iteration

    @property
    def year(self) -> int:
        return self.community.year


@dataclass
class IterationResult:
    """Yearly records of one iteration.

    Arrays are indexed [year - 1, group] or [year - 1, species]. Kill
    histograms are the per-iteration totals after the last year.
    """
    iteration: int = 0
    n_years: int = 0
    group_names: List[str] = field(default_factory=list)
    species_names: List[str] = field(default_factory=list)

    ppt: Optional[np.ndarray] = None
    wet_dry: Optional[np.ndarray] = None
    temp: Optional[np.ndarray] = None
    disturbance: Optional[np.ndarray] = None

    group_biomass: Optional[np.ndarray] = None
    group_relsize: Optional[np.ndarray] = None
    group_pr: Optional[np.ndarray] = None
    group_est_count: Optional[np.ndarray] = None
    group_estabs: Optional[np.ndarray] = None
    kills_by_cause: Optional[np.ndarray] = None   # (n_years, n_groups, N_MORTALITY_TYPES)

    species_biomass: Optional[np.ndarray] = None
    species_est_count: Optional[np.ndarray] = None
    species_estabs: Optional[np.ndarray] = None

    group_kills: List[np.ndarray] = field(default_factory=list)
    species_kills: List[np.ndarray] = field(default_factory=list)
    size_check_failures: int = 0


@dataclass
class SimulationResult:
    """All iterations of a run plus across-iteration summaries."""
    iterations: List[IterationResult] = field(default_factory=list)

    def _stack(self, name: str) -> np.ndarray:
        return np.stack([getattr(it, name) for it in self.iterations])

    @property
    def group_names(self) -> List[str]:
        return self.iterations[0].group_names if self.iterations else []

    @property
    def species_names(self) -> List[str]:
        return self.iterations[0].species_names if self.iterations else []

    @property
    def mean_group_biomass(self) -> np.ndarray:
        return self._stack('group_biomass').mean(axis=0)

    @property
    def std_group_biomass(self) -> np.ndarray:
        return self._stack('group_biomass').std(axis=0)

    @property
    def mean_species_biomass(self) -> np.ndarray:
        return self._stack('species_biomass').mean(axis=0)

    @property
    def std_species_biomass(self) -> np.ndarray:
        return self._stack('species_biomass').std(axis=0)

    @property
    def mean_group_pr(self) -> np.ndarray:
        return self._stack('group_pr').mean(axis=0)

    @property
    def mean_ppt(self) -> np.ndarray:
        return self._stack('ppt').mean(axis=0)

    @property
    def total_kills_by_cause(self) -> np.ndarray:
        """(n_groups, N_MORTALITY_TYPES) kills summed over years, averaged over iterations."""
        return self._stack('kills_by_cause').sum(axis=1).mean(axis=0)


def _allocate_result(config: SimulationConfig, iteration: int) -> IterationResult:
    n_years = config.simulation.n_years
    n_groups = len(config.groups)
    n_spp = len(config.species)
    return IterationResult(
        iteration=iteration,
        n_years=n_years,
        group_names=[g.name for g in config.groups],
        species_names=[s.name for s in config.species],
        ppt=np.zeros(n_years),
        wet_dry=np.zeros(n_years, dtype=np.int8),
        temp=np.zeros(n_years),
        disturbance=np.zeros(n_years, dtype=np.int8),
        group_biomass=np.zeros((n_years, n_groups)),
        group_relsize=np.zeros((n_years, n_groups)),
        group_pr=np.zeros((n_years, n_groups)),
        group_est_count=np.zeros((n_years, n_groups), dtype=np.int64),
        group_estabs=np.zeros((n_years, n_groups), dtype=np.int64),
        kills_by_cause=np.zeros((n_years, n_groups, N_MORTALITY_TYPES), dtype=np.int64),
        species_biomass=np.zeros((n_years, n_spp)),
        species_est_count=np.zeros((n_years, n_spp), dtype=np.int64),
        species_estabs=np.zeros((n_years, n_spp), dtype=np.int64),
    )


def _record_growing_season(result: IterationResult, ctx: SimulationContext) -> None:
    yi = ctx.year - 1
    community = ctx.community
    env = ctx.env
    result.ppt[yi] = env.ppt
    result.wet_dry[yi] = int(env.wet_dry)
    result.temp[yi] = env.temp
    result.disturbance[yi] = int(ctx.plot.disturbance)
    for g in community.groups:
        result.group_biomass[yi, g.index] = community.group_biomass(g.index)
        result.group_relsize[yi, g.index] = g.relsize
        result.group_pr[yi, g.index] = g.pr
        result.group_est_count[yi, g.index] = community.group_est_count(g.index)
        result.group_estabs[yi, g.index] = g.estabs
    for sp in community.species:
        result.species_biomass[yi, sp.index] = sp.biomass()
        result.species_est_count[yi, sp.index] = sp.est_count
        result.species_estabs[yi, sp.index] = sp.estabs


# ═══════════════════════════════════════════════════════════════════════
# YEAR & ITERATION LOOPS
# ═══════════════════════════════════════════════════════════════════════

def run_year(
    ctx: SimulationContext,
    year: int,
    env: Optional[EnvironmentYear] = None,
    result: Optional[IterationResult] = None,
) -> None:
    """Advance the community by one year.

    Args:
        ctx: Simulation context of the iteration.
        year: Year number (1-based).
        env: Weather for the year; drawn from the stream if None.
        result: Optional record to fill in for this year.
    """
    community = ctx.community
    check = ctx.config.simulation.check_sizes
    community.begin_year(year)
    kills_before = np.stack([g.kills_by_cause.copy() for g in community.groups])

    establish(community, ctx.plot, ctx.rng)

    if env is None:
        env = generate_environment(ctx.config, ctx.rng)
    ctx.env = env
    make_disturbance(ctx.plot, ctx.config.disturbance, ctx.rng)

    partition_resources(community, env, ctx.rng, ctx.provider)
    grow(community, env, ctx.rng)
    if check and not community.check_sizes('after growth') and result is not None:
        result.size_check_failures += 1

    mortality_main(community, env, ctx.plot, ctx.rng)
    community.increment_ages()
    if check and not community.check_sizes('after mortality') and result is not None:
        result.size_check_failures += 1

    if result is not None:
        _record_growing_season(result, ctx)

    mortality_end_of_year(community, ctx.rng)

    if result is not None:
        kills_after = np.stack([g.kills_by_cause for g in community.groups])
        result.kills_by_cause[year - 1] = kills_after - kills_before


def run_iteration(
    config: SimulationConfig,
    iteration: int,
    rng: np.random.Generator,
    provider: Optional[ResourceProvider] = None,
    weather: Optional[Sequence[EnvironmentYear]] = None,
) -> IterationResult:
    """Run all years of one iteration on a freshly reset plot.

    Args:
        config: Validated configuration.
        iteration: Iteration number (1-based).
        rng: Random stream private to this iteration.
        provider: Optional external resource provider.
        weather: Optional fixed weather, one record per year.

    Returns:
        IterationResult with yearly records.
    """
    community = Community(config, iteration)
    community.reset_plot()
    plot = PlotState()
    ctx = SimulationContext(config=config, community=community, plot=plot,
                            rng=rng, provider=provider)
    result = _allocate_result(config, iteration)

    for year in range(1, config.simulation.n_years + 1):
        env = weather[year - 1] if weather is not None else None
        run_year(ctx, year, env, result)

    result.group_kills = [g.kills.copy() for g in community.groups]
    result.species_kills = [sp.kills.copy() for sp in community.species]
    return result


def run_simulation(
    config: Optional[SimulationConfig] = None,
    provider: Optional[ResourceProvider] = None,
    weather: Optional[Sequence[EnvironmentYear]] = None,
) -> SimulationResult:
    """Run every configured iteration.

    With simulation.parallel_workers > 1 the iterations run in a thread
    pool; each gets its own stream from the master seed, so the outcome is
    identical to a serial run.

    Args:
        config: Configuration; the default community if None.
        provider: Optional external resource provider (serial runs only).
        weather: Optional fixed weather shared by all iterations.

    Returns:
        SimulationResult, iterations in order.

    Raises:
        ValueError: If weather is too short, or a provider is combined
            with parallel workers.
        SimulationError: On a fatal error in any iteration.
    """
    if config is None:
        config = default_config()
    sim = config.simulation
    if weather is not None and len(weather) < sim.n_years:
        raise ValueError(
            f"weather has {len(weather)} years, need {sim.n_years}"
        )
    if provider is not None and sim.parallel_workers > 1:
        raise ValueError("a resource provider requires parallel_workers == 1")

    rngs = create_iteration_rngs(sim.seed, sim.n_iterations)
    iterations = range(1, sim.n_iterations + 1)
    logger.info("Running %d iterations of %d years (workers=%d)",
                sim.n_iterations, sim.n_years, sim.parallel_workers)

    if sim.parallel_workers > 1:
        with ThreadPoolExecutor(max_workers=sim.parallel_workers) as pool:
            results = list(pool.map(
                lambda it: run_iteration(config, it, rngs[it - 1], None, weather),
                iterations,
            ))
    else:
        results = [run_iteration(config, it, rngs[it - 1], provider, weather)
                   for it in iterations]

    return SimulationResult(iterations=results)
