"""Population Store: species, resource groups and their individuals.

Owns all dynamic population state of one plot for one iteration:
  - Species: yearly counts/sizes, age-indexed kill histogram, annual seedbank
    ring buffer, extra-growth accumulator, and an arena of individual records
    (structured array, tombstoned slots, reused on establishment)
  - ResourceGroup: aggregate size, resource bookkeeping, PR, stretch counter,
    kill histogram and per-cause tallies, extirpation and regeneration flags
  - Community: the registry tying both together, plus every population-
    mutating operation (add, complete kill, partial kill, size updates,
    plot reset, size reconciliation)

Individuals are never created or destroyed except through Community methods.
Static parameters stay in the config dataclasses and are only read here.

Invariants kept after every mutation:
  - all sizes and counts >= 0
  - species.relsize == sum of its individuals' relsize (perennials)
  - group.relsize == sum(established species relsize) / number of member species
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from steppe.config import (
    GroupConfig,
    SimulationConfig,
    SpeciesConfig,
    parse_disturbclass,
    parse_tempclass,
    ppt_coefficients,
    veggrow_probabilities,
)
from steppe.types import (
    INDIVIDUAL_DTYPE,
    MAX_RGROUPS,
    MAX_SPECIES,
    MAX_SPP_PER_GRP,
    N_MORTALITY_TYPES,
    SIZE_CHECK_TOLERANCE,
    MortalityType,
    SimulationError,
    allocate_individuals,
)
from steppe.utils import is_zero, le, lt

logger = logging.getLogger(__name__)

_INITIAL_CAPACITY = 16


# ═══════════════════════════════════════════════════════════════════════
# SPECIES
# ═══════════════════════════════════════════════════════════════════════

class Species:
    """Dynamic state of one species plus resolved static parameters.

    Attributes:
        index: Stable species handle (position in Community.species).
        group_index: Handle of the owning resource group.
        est_count: Established individuals (annuals: rounded seedbank estimate).
        relsize: Aggregate relative size.
        estabs: Individuals established this year.
        kills: Age-indexed kill histogram (index = age - 1).
        seedprod: Seed production history, index 0 = most recent year.
        extragrowth: Superfluous growth for the current year only.
        seedling_estab_prob: Current establishment probability (zeroed on
            extirpation, restored on plot reset).
        indivs: Arena of INDIVIDUAL_DTYPE records; free slots have alive=False.
    """

    def __init__(self, index: int, cfg: SpeciesConfig, group_index: int):
        self.index = index
        self.cfg = cfg
        self.name = cfg.name
        self.group_index = group_index
        self.max_age = cfg.max_age
        self.is_annual = cfg.max_age == 1
        self.isclonal = cfg.isclonal
        self.tempclass = parse_tempclass(cfg.tempclass)
        self.disturbclass = parse_disturbclass(cfg.disturbclass)
        self.max_rate = cfg.max_rate if cfg.max_rate is not None else cfg.intrin_rate
        self.prob_veggrow: Dict[MortalityType, float] = veggrow_probabilities(
            cfg.prob_veggrow
        )

        self.est_count = 0
        self.relsize = 0.0
        self.estabs = 0
        self.extragrowth = 0.0
        self.seedling_estab_prob = cfg.seedling_estab_prob
        self.received_prop = False   # propagules added during the sizing pass
        self.kills = np.zeros(max(cfg.max_age, 1), dtype=np.int64)
        self.seedprod = np.zeros(cfg.viable_yrs if self.is_annual else 0,
                                 dtype=np.float64)
        self.indivs = allocate_individuals(0 if self.is_annual else _INITIAL_CAPACITY)

    # ── arena ────────────────────────────────────────────────────────

    def alive_slots(self) -> np.ndarray:
        """Slots of living individuals, ascending."""
        return np.flatnonzero(self.indivs['alive'])

    def n_alive(self) -> int:
        return int(np.count_nonzero(self.indivs['alive']))

    def _claim_slots(self, n: int) -> np.ndarray:
        free = np.flatnonzero(~self.indivs['alive'])
        if len(free) < n:
            cap = len(self.indivs)
            new_cap = max(2 * cap, cap + n - len(free), _INITIAL_CAPACITY)
            grown = allocate_individuals(new_cap)
            grown[:cap] = self.indivs
            self.indivs = grown
            free = np.flatnonzero(~self.indivs['alive'])
        return free[:n]

    def _free_slots(self, slots: np.ndarray) -> None:
        self.indivs[slots] = np.zeros(len(slots), dtype=INDIVIDUAL_DTYPE)

    def biomass(self) -> float:
        return (self.relsize + self.extragrowth) * self.cfg.mature_biomass

    def __repr__(self) -> str:
        return (f"Species({self.name!r}, est_count={self.est_count}, "
                f"relsize={self.relsize:.4f})")


# ═══════════════════════════════════════════════════════════════════════
# RESOURCE GROUP
# ═══════════════════════════════════════════════════════════════════════

class ResourceGroup:
    """Dynamic state of one resource group plus resolved static parameters."""

    def __init__(self, index: int, cfg: GroupConfig, members: List[int],
                 max_age: int, is_annual: bool):
        self.index = index
        self.cfg = cfg
        self.name = cfg.name
        self.members = list(members)      # all member species, config order
        self.max_age = max_age
        self.is_annual = is_annual
        self.ppt_slope = ppt_coefficients(cfg.ppt_slope)
        self.ppt_intcpt = ppt_coefficients(cfg.ppt_intcpt)

        self.relsize = 0.0
        self.res_required = 0.0
        self.res_avail = 0.0
        self.res_extra = 0.0
        self.pr = 0.0
        self.yrs_neg_pr = 0
        self.estabs = 0
        self.killyr = cfg.killyr
        self.extirpated = False
        self.regen_ok = True
        self.est_spp: List[int] = []      # established species, insertion order
        self.kills = np.zeros(max(max_age, 1), dtype=np.int64)
        self.kills_by_cause = np.zeros(N_MORTALITY_TYPES, dtype=np.int64)

    @property
    def n_members(self) -> int:
        return len(self.members)

    def __repr__(self) -> str:
        return (f"ResourceGroup({self.name!r}, relsize={self.relsize:.4f}, "
                f"pr={self.pr:.3f}, est_spp={self.est_spp})")


# ═══════════════════════════════════════════════════════════════════════
# GROUP MEMBER VIEW
# ═══════════════════════════════════════════════════════════════════════

class GroupMembers:
    """Ordered view over the living individuals of a group.

    Each entry is a (species index, slot) pair. Field reads and writes go
    straight to the species arenas; the view itself holds no state beyond
    the pairs, so it must not outlive a complete kill of its members.
    """

    def __init__(self, community: 'Community', species: np.ndarray,
                 slots: np.ndarray):
        self._community = community
        self.species = species
        self.slots = slots

    def __len__(self) -> int:
        return len(self.slots)

    def get(self, field: str) -> np.ndarray:
        out = np.empty(len(self.slots), dtype=INDIVIDUAL_DTYPE[field])
        for sp_idx, pos in self._by_species():
            out[pos] = self._community.species[sp_idx].indivs[field][self.slots[pos]]
        return out

    def set(self, field: str, values) -> None:
        values = np.broadcast_to(np.asarray(values), (len(self.slots),))
        for sp_idx, pos in self._by_species():
            self._community.species[sp_idx].indivs[field][self.slots[pos]] = values[pos]

    def subset(self, index) -> 'GroupMembers':
        """View over a subset (boolean mask or integer positions), order kept."""
        return GroupMembers(self._community, self.species[index], self.slots[index])

    def by_species(self) -> Dict[int, np.ndarray]:
        """Map species index → slots of the members belonging to it."""
        return {sp_idx: self.slots[pos] for sp_idx, pos in self._by_species()}

    def _by_species(self):
        for sp_idx in np.unique(self.species):
            yield int(sp_idx), np.flatnonzero(self.species == sp_idx)


# ═══════════════════════════════════════════════════════════════════════
# COMMUNITY REGISTRY
# ═══════════════════════════════════════════════════════════════════════

class Community:
    """Registry of all species and resource groups for one plot.

    Built once per iteration from a SimulationConfig; every simulation step
    receives it through the simulation context.

    Args:
        config: Validated simulation configuration.
        iteration: Iteration number (1-based), used in diagnostics.

    Raises:
        SimulationError: If the configuration exceeds capacity limits or a
            species names an unknown group.
    """

    def __init__(self, config: SimulationConfig, iteration: int = 1):
        self.config = config
        self.iteration = iteration
        self.year = 0

        if len(config.groups) > MAX_RGROUPS:
            raise SimulationError(
                f"Too many groups specified ({len(config.groups)} > {MAX_RGROUPS})",
                iteration,
            )
        if len(config.species) > MAX_SPECIES:
            raise SimulationError(
                f"Too many species specified ({len(config.species)} > {MAX_SPECIES})",
                iteration,
            )

        group_index = {g.name: i for i, g in enumerate(config.groups)}
        self.species: List[Species] = []
        members: List[List[int]] = [[] for _ in config.groups]
        for i, s in enumerate(config.species):
            if s.group not in group_index:
                raise SimulationError(
                    f"species '{s.name}' refers to unknown group '{s.group}'",
                    iteration,
                )
            g = group_index[s.group]
            self.species.append(Species(i, s, g))
            members[g].append(i)

        self.groups: List[ResourceGroup] = []
        for i, g in enumerate(config.groups):
            if len(members[i]) > MAX_SPP_PER_GRP:
                raise SimulationError(
                    f"Too many species in group '{g.name}' "
                    f"({len(members[i])} > {MAX_SPP_PER_GRP})",
                    iteration,
                )
            spp = [self.species[j] for j in members[i]]
            max_age = max((s.max_age for s in spp), default=1)
            is_annual = bool(spp) and all(s.is_annual for s in spp)
            self.groups.append(ResourceGroup(i, g, members[i], max_age, is_annual))

        self._species_by_name = {s.name: s.index for s in self.species}
        self._groups_by_name = {g.name: g.index for g in self.groups}

    # ── lookup ───────────────────────────────────────────────────────

    def species_index(self, name: str) -> int:
        return self._species_by_name[name]

    def group_index(self, name: str) -> int:
        return self._groups_by_name[name]

    def group_of(self, sp_idx: int) -> ResourceGroup:
        return self.groups[self.species[sp_idx].group_index]

    def established_species(self, g_idx: int) -> List[Species]:
        """Snapshot list of the group's established species."""
        return [self.species[i] for i in list(self.groups[g_idx].est_spp)]

    def group_members(self, g_idx: int, order: Optional[str] = None) -> GroupMembers:
        """All living individuals of a group.

        Args:
            g_idx: Group index.
            order: None (species then slot order), 'descending' or
                'ascending' by relsize. Sorting is stable.
        """
        sp_parts, slot_parts = [], []
        for sp_idx in self.groups[g_idx].est_spp:
            slots = self.species[sp_idx].alive_slots()
            sp_parts.append(np.full(len(slots), sp_idx, dtype=np.int64))
            slot_parts.append(slots)
        if sp_parts:
            species = np.concatenate(sp_parts)
            slots = np.concatenate(slot_parts)
        else:
            species = np.zeros(0, dtype=np.int64)
            slots = np.zeros(0, dtype=np.int64)
        view = GroupMembers(self, species, slots)
        if order is None or len(view) == 0:
            return view
        relsize = view.get('relsize')
        if order == 'descending':
            idx = np.argsort(-relsize, kind='stable')
        elif order == 'ascending':
            idx = np.argsort(relsize, kind='stable')
        else:
            raise ValueError(f"unknown sort order '{order}'")
        return view.subset(idx)

    # ── establishment ────────────────────────────────────────────────

    def add_individuals(self, sp_idx: int, n: int) -> np.ndarray:
        """Create n new individuals of a perennial species.

        New plants start at age 1 with relsize = relseedlingsize.

        Returns:
            Slots of the new individuals.
        """
        sp = self.species[sp_idx]
        if sp.is_annual:
            raise SimulationError(
                f"cannot add individuals to annual species '{sp.name}'",
                self.iteration, self.year,
            )
        if n <= 0:
            return np.zeros(0, dtype=np.int64)
        slots = sp._claim_slots(n)
        rec = sp.indivs
        rec['alive'][slots] = True
        rec['age'][slots] = 1
        rec['relsize'][slots] = sp.cfg.relseedlingsize
        rec['growthrate'][slots] = 0.0

        sp.est_count += n
        sp.estabs += n
        group = self.groups[sp.group_index]
        group.estabs += n
        self._add_established(group, sp_idx)
        self.update_species_size(sp_idx, n * sp.cfg.relseedlingsize)
        return slots

    def set_annual_size(self, sp_idx: int, newsize: float) -> None:
        """Replace an annual species' size with this year's seedbank estimate."""
        sp = self.species[sp_idx]
        group = self.groups[sp.group_index]
        newsize = max(0.0, newsize)
        if is_zero(newsize):
            newsize = 0.0
        if newsize > 0.0:
            count = max(1, int(newsize + 0.5))
            sp.estabs += count
            group.estabs += count
            sp.est_count = count
            self._add_established(group, sp_idx)
        else:
            sp.est_count = 0
        sp.relsize = newsize
        if sp.est_count == 0:
            self._drop_established(group, sp_idx)
        self.update_group_size(sp.group_index)

    # ── mortality ────────────────────────────────────────────────────

    def kill_individuals(self, sp_idx: int, slots: Sequence[int],
                         cause: MortalityType) -> int:
        """Completely kill individuals of one species.

        Each kill is entered in the species' and group's age histograms and
        in the group's cause tally. The species is dropped from its group's
        established list when no individuals remain.

        Returns:
            Number of individuals killed.
        """
        slots = np.asarray(slots, dtype=np.int64)
        if len(slots) == 0:
            return 0
        sp = self.species[sp_idx]
        group = self.groups[sp.group_index]
        rec = sp.indivs
        if not np.all(rec['alive'][slots]):
            raise SimulationError(
                f"kill requested for a dead individual of '{sp.name}'",
                self.iteration, self.year,
            )
        ages = np.minimum(rec['age'][slots], sp.max_age)
        hist_idx = np.maximum(ages, 1) - 1
        np.add.at(sp.kills, hist_idx, 1)
        np.add.at(group.kills, np.minimum(hist_idx, len(group.kills) - 1), 1)
        group.kills_by_cause[cause] += len(slots)

        lost = float(rec['relsize'][slots].sum())
        sp._free_slots(slots)
        sp.est_count -= len(slots)
        if sp.est_count <= 0:
            sp.est_count = 0
            self._drop_established(group, sp_idx)
        self.update_species_size(sp_idx, -lost)
        return len(slots)

    def kill_members(self, members: GroupMembers, cause: MortalityType) -> int:
        """Completely kill every individual in a group view."""
        killed = 0
        for sp_idx, slots in members.by_species().items():
            killed += self.kill_individuals(sp_idx, slots, cause)
        return killed

    def kill_partial(self, sp_idx: int, slot: int, amount: float,
                     cause: MortalityType) -> bool:
        """Reduce one individual's size without killing it.

        Clonal plants are flagged as killed and get the cause-specific
        vegetative-regrowth probability.

        Returns:
            False (and no change) if amount is not smaller than the plant.
        """
        sp = self.species[sp_idx]
        rec = sp.indivs
        if le(rec['relsize'][slot], amount):
            return False
        rec['relsize'][slot] -= amount
        if sp.isclonal:
            rec['killed'][slot] = True
            rec['prob_veggrow'][slot] = sp.prob_veggrow[cause]
        self.update_species_size(sp_idx, -amount)
        return True

    def kill_species(self, sp_idx: int, cause: MortalityType) -> int:
        """Kill every individual of a species (annuals: the whole cohort)."""
        sp = self.species[sp_idx]
        if sp.is_annual:
            n = sp.est_count
            if n > 0:
                sp.kills[0] += n
                group = self.groups[sp.group_index]
                group.kills[0] += n
                group.kills_by_cause[cause] += n
            sp.est_count = 0
            sp.relsize = 0.0
            self._drop_established(self.groups[sp.group_index], sp_idx)
            self.update_group_size(sp.group_index)
            return n
        return self.kill_individuals(sp_idx, sp.alive_slots(), cause)

    def kill_group(self, g_idx: int, cause: MortalityType) -> int:
        """Kill all individuals of all established species; regrowth allowed."""
        return sum(self.kill_species(sp_idx, cause)
                   for sp_idx in list(self.groups[g_idx].est_spp))

    def extirpate_group(self, g_idx: int) -> int:
        """Kill the group and bar every member species from establishing again."""
        group = self.groups[g_idx]
        killed = 0
        for sp_idx in group.members:
            killed += self.kill_species(sp_idx, MortalityType.SCHEDULED)
            self.species[sp_idx].seedling_estab_prob = 0.0
        group.extirpated = True
        return killed

    # ── sizes ────────────────────────────────────────────────────────

    def update_species_size(self, sp_idx: int, delta: float) -> None:
        """Add delta to a species' relsize, then refresh its group."""
        sp = self.species[sp_idx]
        sp.relsize += delta
        if lt(sp.relsize, 0.0):
            logger.warning(
                "%s relsize went negative (%g), set to 0. Iter=%d, Year=%d",
                sp.name, sp.relsize, self.iteration, self.year,
            )
            sp.relsize = 0.0
        elif is_zero(sp.relsize):
            sp.relsize = 0.0
        self.update_group_size(sp.group_index)

    def update_group_size(self, g_idx: int) -> None:
        """Recompute group relsize and every member's grp_res_prop."""
        group = self.groups[g_idx]
        sumsize = sum(self.species[i].relsize for i in group.est_spp)
        group.relsize = sumsize / group.n_members if group.n_members else 0.0
        if is_zero(group.relsize):
            group.relsize = 0.0
        if group.is_annual:
            return
        for sp_idx in group.est_spp:
            rec = self.species[sp_idx].indivs
            alive = rec['alive']
            if sumsize > 0.0:
                rec['grp_res_prop'][alive] = rec['relsize'][alive] / sumsize
            else:
                rec['grp_res_prop'][alive] = 0.0

    def increment_ages(self) -> None:
        """Age every perennial individual by one year, clamping at max_age."""
        for group in self.groups:
            if group.is_annual:
                continue
            for sp in self.established_species(group.index):
                rec = sp.indivs
                alive = rec['alive']
                rec['age'][alive] += 1
                over = alive & (rec['age'] > sp.max_age)
                if np.any(over):
                    logger.warning(
                        "%s grown older than max_age (%d > %d). Iter=%d, Year=%d",
                        sp.name, int(rec['age'][over].max()), sp.max_age,
                        self.iteration, self.year,
                    )
                    rec['age'][over] = sp.max_age

    # ── year/plot lifecycle ──────────────────────────────────────────

    def begin_year(self, year: int) -> None:
        """Zero the per-year counters before establishment."""
        self.year = year
        for sp in self.species:
            sp.estabs = 0
        for group in self.groups:
            group.estabs = 0
            group.res_required = 0.0
            group.res_avail = 0.0
            group.res_extra = 0.0

    def reset_plot(self) -> None:
        """Return every dynamic field to its start-of-iteration state.

        Living individuals are removed without entering the kill histograms.
        Non-zero sizes or counts surviving the removal are logged and forced
        to zero. Calling this twice is the same as calling it once.
        """
        for sp in self.species:
            if not sp.is_annual:
                residual = sp.relsize - float(sp.indivs['relsize'][sp.indivs['alive']].sum())
                count = sp.est_count - sp.n_alive()
            else:
                residual = sp.relsize
                count = sp.est_count
            if not is_zero(residual):
                logger.warning(
                    "%s relsize (%g) not zero after plot reset. Iter=%d",
                    sp.name, residual, self.iteration,
                )
            if count != 0:
                logger.warning(
                    "%s est_count (%d) not zero after plot reset. Iter=%d",
                    sp.name, count, self.iteration,
                )
            sp.est_count = 0
            sp.relsize = 0.0
            sp.estabs = 0
            sp.extragrowth = 0.0
            sp.received_prop = False
            sp.seedling_estab_prob = sp.cfg.seedling_estab_prob
            sp.kills[:] = 0
            sp.seedprod[:] = 0.0
            sp.indivs = allocate_individuals(0 if sp.is_annual else _INITIAL_CAPACITY)

        for group in self.groups:
            group.relsize = 0.0
            group.res_required = 0.0
            group.res_avail = 0.0
            group.res_extra = 0.0
            group.pr = 0.0
            group.yrs_neg_pr = 0
            group.estabs = 0
            group.killyr = group.cfg.killyr
            group.extirpated = False
            group.regen_ok = True
            group.est_spp = []
            group.kills[:] = 0
            group.kills_by_cause[:] = 0
        self.year = 0

    def check_sizes(self, label: str = '') -> bool:
        """Reconcile species and group sizes with their parts.

        Mismatches beyond SIZE_CHECK_TOLERANCE are logged, not corrected.

        Returns:
            True if everything reconciles.
        """
        ok = True
        for sp in self.species:
            if sp.is_annual:
                continue
            alive = sp.indivs['alive']
            indiv_sum = float(sp.indivs['relsize'][alive].sum())
            if abs(indiv_sum - sp.relsize) > SIZE_CHECK_TOLERANCE:
                logger.warning(
                    "%s: %s relsize (%.7f) != sum of indivs (%.7f). Iter=%d, Year=%d",
                    label, sp.name, sp.relsize, indiv_sum, self.iteration, self.year,
                )
                ok = False
            if int(np.count_nonzero(alive)) != sp.est_count:
                logger.warning(
                    "%s: %s est_count (%d) != living indivs (%d). Iter=%d, Year=%d",
                    label, sp.name, sp.est_count, int(np.count_nonzero(alive)),
                    self.iteration, self.year,
                )
                ok = False
        for group in self.groups:
            if not group.n_members:
                continue
            expected = sum(self.species[i].relsize for i in group.est_spp) / group.n_members
            if abs(expected - group.relsize) > SIZE_CHECK_TOLERANCE:
                logger.warning(
                    "%s: group %s relsize (%.7f) != mean of species (%.7f). "
                    "Iter=%d, Year=%d",
                    label, group.name, group.relsize, expected,
                    self.iteration, self.year,
                )
                ok = False
        return ok

    # ── accessors ────────────────────────────────────────────────────

    def species_biomass(self, sp_idx: int) -> float:
        return self.species[sp_idx].biomass()

    def group_biomass(self, g_idx: int) -> float:
        """Sum of established species' biomass (g on the plot)."""
        return sum(self.species[i].biomass() for i in self.groups[g_idx].est_spp)

    def group_est_count(self, g_idx: int) -> int:
        return sum(self.species[i].est_count for i in self.groups[g_idx].est_spp)

    # ── internals ────────────────────────────────────────────────────

    @staticmethod
    def _add_established(group: ResourceGroup, sp_idx: int) -> None:
        if sp_idx not in group.est_spp:
            group.est_spp.append(sp_idx)

    @staticmethod
    def _drop_established(group: ResourceGroup, sp_idx: int) -> None:
        if sp_idx in group.est_spp:
            group.est_spp.remove(sp_idx)
