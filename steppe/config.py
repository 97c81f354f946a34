"""Configuration system for STEPPE.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Static parameters of every resource group and species live here; the
engine never mutates them. Dynamic state is owned by population.Community.

Design decisions:
  - Precipitation-to-resource coefficients are keyed by 'wet'/'dry'/'normal'
    and must map average precipitation to an index of 1.0 in normal years
    (a mismatch is warned about, not rejected).
  - Annual and perennial species may not share a resource group.
  - Capacity limits (types.MAX_*) are start-up errors.
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from steppe.types import (
    MAX_RGROUPS,
    MAX_SEEDBANK_YEARS,
    MAX_SPECIES,
    MAX_SPP_PER_GRP,
    DisturbClass,
    MortalityType,
    PptClass,
    TempClass,
)


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Run length and control."""
    n_years: int = 100
    n_iterations: int = 10
    seed: int = 42
    parallel_workers: int = 1   # >1 runs iterations in a thread pool
    check_sizes: bool = False   # reconcile sizes after growth and mortality


@dataclass
class PrecipitationSection:
    """Annual precipitation (mm) distribution and wet/dry thresholds."""
    avg: float = 400.0
    std: float = 100.0
    min: float = 100.0
    max: float = 800.0
    dry: float = 300.0          # ppt <= dry → dry year
    wet: float = 500.0          # ppt >= wet → wet year
    gsppt_prop: float = 0.6     # proportion of ppt falling in the growing season


@dataclass
class TemperatureSection:
    """Mean annual temperature (°C) and growth-reduction coefficients.

    Reduction for a temperature class = a + b*T + c*T² (clipped at 0).
    """
    avg: float = 8.0
    std: float = 1.5
    min: float = 4.0
    max: float = 12.0
    cool: List[float] = field(default_factory=lambda: [0.70, 0.05, -0.0035])
    warm: List[float] = field(default_factory=lambda: [0.40, 0.10, -0.004])


@dataclass
class DisturbanceSection:
    """Fecal pat, ant mound and burrow disturbance parameters."""
    pat_use: bool = False
    pat_occur: float = 0.01          # annual probability of a pat
    pat_removal: float = 0.5         # probability a new pat is removed at once
    pat_recol_slope: float = 0.1     # removal prob = slope*years + intercept
    pat_recol_intcpt: float = 0.2
    mound_use: bool = False
    mound_occur: float = 0.005
    mound_minyr: int = 2             # mound lasts minyr..maxyr years
    mound_maxyr: int = 10
    burrow_use: bool = False
    burrow_occur: float = 0.002
    burrow_minyr: int = 3            # burrow lasts 1..minyr years


@dataclass
class SucculentSection:
    """Succulent growth-reduction (eqn 10) and mortality (eqn 16) parameters.

    Both are linear in growing-season precipitation.
    """
    growth_slope: float = 0.0005
    growth_intcpt: float = 0.05
    mort_slope: float = 0.001
    mort_intcpt: float = -0.2


@dataclass
class GroupConfig:
    """Static parameters of one resource group."""
    name: str
    min_res_req: float = 0.2       # resource needed per unit relsize
    max_density: float = 10.0      # mature plants per plot
    max_stretch: int = 3           # years PR may exceed 1 before forced mortality
    max_spp_estab: int = MAX_SPP_PER_GRP  # species that may establish per year
    slowrate: float = 0.05         # slow growth = rate <= slowrate * species max_rate
    xgrow: float = 0.0             # superfluous growth per unit extra resource
    ppt_slope: Dict[str, float] = field(
        default_factory=lambda: {'wet': 0.0025, 'dry': 0.0025, 'normal': 0.0025}
    )
    ppt_intcpt: Dict[str, float] = field(
        default_factory=lambda: {'wet': 0.0, 'dry': 0.0, 'normal': 0.0}
    )
    startyr: int = 1               # no establishment before this year
    killyr: int = 0                # kill the whole group in this year (0 = never)
    killfreq: float = 0.0          # <1: annual probability, >=1: period in years
    extirp: int = 0                # extirpate in this year (0 = never)
    succulent: bool = False
    use_extra_res: bool = False
    use_me: bool = True
    use_mort: bool = True          # age-independent and slow-growth mortality


@dataclass
class SpeciesConfig:
    """Static parameters of one species."""
    name: str
    group: str
    max_age: int = 30              # 1 flags an annual
    intrin_rate: float = 0.5
    max_rate: Optional[float] = None   # slow-growth reference; defaults to intrin_rate
    relseedlingsize: float = 0.01
    mature_biomass: float = 5.0    # g of a full-sized plant
    seedling_estab_prob: float = 0.1
    max_seed_estab: int = 5        # max seedlings per year (annuals: max seed production)
    cohort_surv: float = 0.5       # eqn 14 constant
    max_slow: int = 3
    isclonal: bool = False
    max_vegunits: int = 1
    prob_veggrow: Dict[str, float] = field(default_factory=dict)
    tempclass: str = 'none'        # 'none' | 'cool' | 'warm'
    disturbclass: str = 'insensitive'
    viable_yrs: int = 1            # annuals: seed viability window
    exp_decay: float = 1.0         # annuals: seed viability decay exponent
    use_me: bool = True


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys;
    `groups` and `species` are top-level lists.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    precipitation: PrecipitationSection = field(default_factory=PrecipitationSection)
    temperature: TemperatureSection = field(default_factory=TemperatureSection)
    disturbance: DisturbanceSection = field(default_factory=DisturbanceSection)
    succulent: SucculentSection = field(default_factory=SucculentSection)
    groups: List[GroupConfig] = field(default_factory=list)
    species: List[SpeciesConfig] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════
# ENUM PARSING
# ═══════════════════════════════════════════════════════════════════════

_TEMPCLASS_NAMES = {
    'none': TempClass.NO_SEASON,
    'cool': TempClass.COOL,
    'warm': TempClass.WARM,
}

_DISTURBCLASS_NAMES = {
    'very_sensitive': DisturbClass.VERY_SENSITIVE,
    'sensitive': DisturbClass.SENSITIVE,
    'insensitive': DisturbClass.INSENSITIVE,
    'very_insensitive': DisturbClass.VERY_INSENSITIVE,
}

_PPTCLASS_NAMES = {
    'wet': PptClass.WET,
    'dry': PptClass.DRY,
    'normal': PptClass.NORMAL,
}


def parse_tempclass(name: str) -> TempClass:
    return _TEMPCLASS_NAMES[name.lower()]


def parse_disturbclass(name: str) -> DisturbClass:
    return _DISTURBCLASS_NAMES[name.lower()]


def ppt_coefficients(values: Dict[str, float]) -> Dict[PptClass, float]:
    """Convert a {'wet': .., 'dry': .., 'normal': ..} mapping to PptClass keys."""
    return {_PPTCLASS_NAMES[k.lower()]: float(v) for k, v in values.items()}


def veggrow_probabilities(values: Dict[str, float]) -> Dict[MortalityType, float]:
    """Convert {'no_resources': p, ...} to MortalityType keys (missing → 0)."""
    out = {m: 0.0 for m in MortalityType}
    for k, v in values.items():
        out[MortalityType[k.upper()]] = float(v)
    return out


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values (including lists) are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    section_map = {
        'simulation': SimulationSection,
        'precipitation': PrecipitationSection,
        'temperature': TemperatureSection,
        'disturbance': DisturbanceSection,
        'succulent': SucculentSection,
    }
    for key, cls in section_map.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    sections['groups'] = [
        _dict_to_section(GroupConfig, g)
        for g in data.get('groups') or [] if isinstance(g, dict)
    ]
    sections['species'] = [
        _dict_to_section(SpeciesConfig, s)
        for s in data.get('species') or [] if isinstance(s, dict)
    ]
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict:
    """Plain-dict form of a configuration (YAML-serializable)."""
    return dataclasses.asdict(config)


def _check_prob(value: float, label: str) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{label} must be in [0, 1], got {value}")


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Capacity limits (groups, species per group, species)
      - Names are unique and every species belongs to a known group
      - Groups are non-empty and not a mix of annuals and perennials
      - Probabilities, densities, biomass and thresholds are sane
    """
    sim = config.simulation
    if sim.n_years < 1:
        raise ValueError("simulation.n_years must be >= 1")
    if sim.n_iterations < 1:
        raise ValueError("simulation.n_iterations must be >= 1")
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if sim.parallel_workers < 1:
        raise ValueError("simulation.parallel_workers must be >= 1")

    ppt = config.precipitation
    if ppt.min > ppt.max:
        raise ValueError(f"precipitation.min ({ppt.min}) must be <= max ({ppt.max})")
    if ppt.dry > ppt.wet:
        raise ValueError(
            f"precipitation.dry ({ppt.dry}) must be <= wet ({ppt.wet})"
        )
    if ppt.std < 0:
        raise ValueError("precipitation.std must be non-negative")
    _check_prob(ppt.gsppt_prop, "precipitation.gsppt_prop")

    temp = config.temperature
    if temp.min > temp.max:
        raise ValueError(f"temperature.min ({temp.min}) must be <= max ({temp.max})")
    for label, coefs in (('cool', temp.cool), ('warm', temp.warm)):
        if len(coefs) != 3:
            raise ValueError(
                f"temperature.{label} must have 3 coefficients, got {len(coefs)}"
            )

    dist = config.disturbance
    _check_prob(dist.pat_occur, "disturbance.pat_occur")
    _check_prob(dist.pat_removal, "disturbance.pat_removal")
    _check_prob(dist.mound_occur, "disturbance.mound_occur")
    _check_prob(dist.burrow_occur, "disturbance.burrow_occur")
    if dist.mound_use and not 0 < dist.mound_minyr <= dist.mound_maxyr:
        raise ValueError(
            f"disturbance.mound_minyr/maxyr must satisfy 0 < min <= max, "
            f"got {dist.mound_minyr}/{dist.mound_maxyr}"
        )

    # Capacity limits
    if len(config.groups) == 0:
        raise ValueError("at least one resource group is required")
    if len(config.groups) > MAX_RGROUPS:
        raise ValueError(
            f"Too many groups specified ({len(config.groups)} > {MAX_RGROUPS})"
        )
    if len(config.species) > MAX_SPECIES:
        raise ValueError(
            f"Too many species specified ({len(config.species)} > {MAX_SPECIES})"
        )

    group_names = [g.name for g in config.groups]
    if len(set(group_names)) != len(group_names):
        raise ValueError(f"duplicate group names in {group_names}")
    species_names = [s.name for s in config.species]
    if len(set(species_names)) != len(species_names):
        raise ValueError(f"duplicate species names in {species_names}")

    for g in config.groups:
        if g.max_density <= 0:
            raise ValueError(f"group '{g.name}': max_density must be positive")
        if g.min_res_req <= 0:
            raise ValueError(f"group '{g.name}': min_res_req must be positive")
        if g.max_stretch < 0:
            raise ValueError(f"group '{g.name}': max_stretch must be >= 0")
        if g.max_spp_estab < 0:
            raise ValueError(f"group '{g.name}': max_spp_estab must be >= 0")
        if g.killfreq < 0:
            raise ValueError(f"group '{g.name}': killfreq must be >= 0")
        for coefs, label in ((g.ppt_slope, 'ppt_slope'), (g.ppt_intcpt, 'ppt_intcpt')):
            if set(k.lower() for k in coefs) != set(_PPTCLASS_NAMES):
                raise ValueError(
                    f"group '{g.name}': {label} needs keys {sorted(_PPTCLASS_NAMES)}, "
                    f"got {sorted(coefs)}"
                )
        norm_index = (ppt.avg * ppt_coefficients(g.ppt_slope)[PptClass.NORMAL]
                      + ppt_coefficients(g.ppt_intcpt)[PptClass.NORMAL])
        if abs(norm_index - 1.0) > 0.01:
            warnings.warn(
                f"group '{g.name}': average precipitation maps to resource "
                f"index {norm_index:.3f}, expected 1.0",
                UserWarning,
                stacklevel=2,
            )

    members: Dict[str, List[SpeciesConfig]] = {name: [] for name in group_names}
    for s in config.species:
        if s.group not in members:
            raise ValueError(
                f"species '{s.name}' refers to unknown group '{s.group}'"
            )
        members[s.group].append(s)
        if s.max_age < 1:
            raise ValueError(f"species '{s.name}': max_age must be >= 1")
        if s.mature_biomass <= 0:
            raise ValueError(f"species '{s.name}': mature_biomass must be positive")
        if s.intrin_rate < 0:
            raise ValueError(f"species '{s.name}': intrin_rate must be >= 0")
        if not 0.0 < s.relseedlingsize <= 1.0:
            raise ValueError(
                f"species '{s.name}': relseedlingsize must be in (0, 1]"
            )
        if s.max_seed_estab < 0:
            raise ValueError(f"species '{s.name}': max_seed_estab must be >= 0")
        if s.max_vegunits < 1:
            raise ValueError(f"species '{s.name}': max_vegunits must be >= 1")
        _check_prob(s.seedling_estab_prob, f"species '{s.name}' seedling_estab_prob")
        if s.tempclass.lower() not in _TEMPCLASS_NAMES:
            raise ValueError(
                f"species '{s.name}': tempclass must be one of "
                f"{sorted(_TEMPCLASS_NAMES)}, got '{s.tempclass}'"
            )
        if s.disturbclass.lower() not in _DISTURBCLASS_NAMES:
            raise ValueError(
                f"species '{s.name}': disturbclass must be one of "
                f"{sorted(_DISTURBCLASS_NAMES)}, got '{s.disturbclass}'"
            )
        for cause, p in s.prob_veggrow.items():
            if cause.upper() not in MortalityType.__members__:
                raise ValueError(
                    f"species '{s.name}': unknown prob_veggrow cause '{cause}'"
                )
            _check_prob(p, f"species '{s.name}' prob_veggrow[{cause}]")
        if s.max_age == 1 and not 1 <= s.viable_yrs <= MAX_SEEDBANK_YEARS:
            raise ValueError(
                f"species '{s.name}': viable_yrs must be in "
                f"[1, {MAX_SEEDBANK_YEARS}], got {s.viable_yrs}"
            )

    for name, spp in members.items():
        if not spp:
            raise ValueError(f"group '{name}' has no species")
        if len(spp) > MAX_SPP_PER_GRP:
            raise ValueError(
                f"Too many species in group '{name}' "
                f"({len(spp)} > {MAX_SPP_PER_GRP})"
            )
        n_annual = sum(1 for s in spp if s.max_age == 1)
        if 0 < n_annual < len(spp):
            raise ValueError(
                f"group '{name}' mixes annual and perennial species"
            )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies; lists (groups,
    species) are replaced wholesale.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter sweep overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


# ═══════════════════════════════════════════════════════════════════════
# DEFAULT COMMUNITY — shortgrass steppe
# ═══════════════════════════════════════════════════════════════════════

def _default_groups() -> List[GroupConfig]:
    return [
        GroupConfig(
            name='a.forb', min_res_req=0.05, max_density=10.0, max_stretch=1,
            ppt_slope={'wet': 0.002, 'dry': 0.003, 'normal': 0.0025},
            ppt_intcpt={'wet': 0.2, 'dry': -0.2, 'normal': 0.0},
            use_mort=False,
        ),
        GroupConfig(
            name='p.cool.grass', min_res_req=0.2, max_density=20.0,
            max_stretch=3, slowrate=0.05, use_extra_res=True, xgrow=0.005,
        ),
        GroupConfig(
            name='p.warm.grass', min_res_req=0.4, max_density=40.0,
            max_stretch=4, slowrate=0.05, use_extra_res=True, xgrow=0.01,
        ),
        GroupConfig(
            name='shrubs', min_res_req=0.2, max_density=4.0, max_stretch=5,
            slowrate=0.05,
        ),
        GroupConfig(
            name='succulents', min_res_req=0.05, max_density=5.0,
            max_stretch=5, slowrate=0.02, succulent=True,
        ),
    ]


def _default_species() -> List[SpeciesConfig]:
    return [
        SpeciesConfig(
            name='chen', group='a.forb', max_age=1, intrin_rate=0.7,
            mature_biomass=0.5, seedling_estab_prob=0.3, max_seed_estab=20,
            viable_yrs=5, exp_decay=1.5, tempclass='cool',
            disturbclass='very_sensitive',
        ),
        SpeciesConfig(
            name='pasm', group='p.cool.grass', max_age=40, intrin_rate=0.6,
            relseedlingsize=0.01, mature_biomass=3.0, seedling_estab_prob=0.1,
            max_seed_estab=4, cohort_surv=0.5, max_slow=3, isclonal=True,
            max_vegunits=3,
            prob_veggrow={'no_resources': 0.5, 'slow': 0.3,
                          'intrinsic': 0.0, 'disturbance': 0.3},
            tempclass='cool', disturbclass='insensitive',
        ),
        SpeciesConfig(
            name='bogr', group='p.warm.grass', max_age=60, intrin_rate=0.5,
            relseedlingsize=0.01, mature_biomass=5.0, seedling_estab_prob=0.05,
            max_seed_estab=3, cohort_surv=0.6, max_slow=4, isclonal=True,
            max_vegunits=4,
            prob_veggrow={'no_resources': 0.6, 'slow': 0.4,
                          'intrinsic': 0.0, 'disturbance': 0.4},
            tempclass='warm', disturbclass='insensitive',
        ),
        SpeciesConfig(
            name='arfr', group='shrubs', max_age=30, intrin_rate=0.4,
            relseedlingsize=0.005, mature_biomass=20.0, seedling_estab_prob=0.05,
            max_seed_estab=2, cohort_surv=0.4, max_slow=3,
            tempclass='cool', disturbclass='sensitive',
        ),
        SpeciesConfig(
            name='oppo', group='succulents', max_age=50, intrin_rate=0.2,
            relseedlingsize=0.01, mature_biomass=40.0, seedling_estab_prob=0.02,
            max_seed_estab=1, cohort_surv=0.5, max_slow=5, isclonal=True,
            max_vegunits=2, prob_veggrow={'slow': 0.5, 'succulent': 0.5},
            tempclass='warm', disturbclass='very_insensitive',
        ),
    ]


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with the default shortgrass-steppe community."""
    config = SimulationConfig(
        disturbance=DisturbanceSection(
            pat_use=True, mound_use=True, burrow_use=True,
        ),
        groups=_default_groups(),
        species=_default_species(),
    )
    validate_config(config)
    return config
