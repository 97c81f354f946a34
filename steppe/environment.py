"""Environment collaborator: yearly weather and plot disturbance.

Provides, once per simulated year:
  - Precipitation (mm), its wet/dry/normal class and growing-season share
  - Mean temperature and the growth reduction for each temperature class
  - Succulent reduction amount (eqn 10) and death probability (eqn 16)
  - The plot disturbance (fecal pat, ant mound, burrow or none)

The engine only consumes EnvironmentYear records, so a caller may replace
generate_environment() with observed or scripted weather.

References:
  - Coffin & Lauenroth 1990, eqns 10, 12, 13, 16
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from steppe.config import DisturbanceSection, SimulationConfig
from steppe.types import DisturbEvent, PptClass, TempClass


# ═══════════════════════════════════════════════════════════════════════
# YEARLY WEATHER
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class EnvironmentYear:
    """Weather inputs for one simulated year."""
    ppt: float                      # annual precipitation (mm)
    wet_dry: PptClass
    gsppt: float = 0.0              # growing-season precipitation (mm)
    temp: float = 0.0               # mean annual temperature (°C)
    temp_reduction: Dict[TempClass, float] = field(
        default_factory=lambda: {TempClass.COOL: 1.0, TempClass.WARM: 1.0}
    )
    succulent_reduction: float = 0.0
    succulent_prob_death: float = 0.0

    def temp_modifier(self, tempclass: TempClass) -> float:
        """Growth multiplier for a temperature class (1.0 for no season)."""
        if tempclass == TempClass.NO_SEASON:
            return 1.0
        return self.temp_reduction[tempclass]


def classify_ppt(ppt: float, dry: float, wet: float) -> PptClass:
    """Dry at or below the dry threshold, wet at or above the wet one."""
    if ppt <= dry:
        return PptClass.DRY
    if ppt >= wet:
        return PptClass.WET
    return PptClass.NORMAL


def temperature_reduction(temp: float, coefs) -> float:
    """Quadratic growth reduction a + b*T + c*T², floored at zero (eqns 12, 13)."""
    a, b, c = coefs
    return max(0.0, a + b * temp + c * temp * temp)


def make_environment_year(
    config: SimulationConfig,
    ppt: float,
    temp: Optional[float] = None,
) -> EnvironmentYear:
    """Derive a full weather record from precipitation and temperature.

    Args:
        config: Simulation configuration (thresholds and coefficients).
        ppt: Annual precipitation (mm).
        temp: Mean temperature (°C); defaults to the configured average.

    Returns:
        EnvironmentYear for the engine.
    """
    pcfg = config.precipitation
    tcfg = config.temperature
    scfg = config.succulent
    if temp is None:
        temp = tcfg.avg

    gsppt = float(int(ppt * pcfg.gsppt_prop))
    return EnvironmentYear(
        ppt=float(ppt),
        wet_dry=classify_ppt(ppt, pcfg.dry, pcfg.wet),
        gsppt=gsppt,
        temp=float(temp),
        temp_reduction={
            TempClass.COOL: temperature_reduction(temp, tcfg.cool),
            TempClass.WARM: temperature_reduction(temp, tcfg.warm),
        },
        succulent_reduction=abs(scfg.growth_slope * gsppt + scfg.growth_intcpt),
        succulent_prob_death=float(np.clip(
            scfg.mort_slope * gsppt + scfg.mort_intcpt, 0.0, 1.0
        )),
    )


def generate_environment(
    config: SimulationConfig,
    rng: np.random.Generator,
) -> EnvironmentYear:
    """Draw this year's weather.

    Precipitation and temperature are Normal(avg, std), clipped to the
    configured [min, max]; precipitation is whole millimetres.
    """
    pcfg = config.precipitation
    tcfg = config.temperature
    ppt = float(np.clip(np.rint(rng.normal(pcfg.avg, pcfg.std)), pcfg.min, pcfg.max))
    temp = float(np.clip(rng.normal(tcfg.avg, tcfg.std), tcfg.min, tcfg.max))
    return make_environment_year(config, ppt, temp)


# ═══════════════════════════════════════════════════════════════════════
# PLOT DISTURBANCE
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class PlotState:
    """Disturbance state of the plot.

    `disturbed` counts years remaining before recolonization can begin for
    mounds and burrows; for a fecal pat it counts the years the pat has
    been in place.
    """
    disturbance: DisturbEvent = DisturbEvent.NONE
    pat_removed: bool = False
    disturbed: int = 0

    def reset(self) -> None:
        self.disturbance = DisturbEvent.NONE
        self.pat_removed = False
        self.disturbed = 0


def make_disturbance(
    plot: PlotState,
    dist: DisturbanceSection,
    rng: np.random.Generator,
) -> None:
    """Advance the plot disturbance by one year.

    An active disturbance first ages (a pat may be removed or expire, mounds
    and burrows count down). If none is active afterwards, a candidate type
    is drawn uniformly and occurs with its own probability. At most one
    disturbance is ever active.
    """
    if plot.disturbance == DisturbEvent.FECAL_PAT:
        if plot.pat_removed:
            plot.reset()
        else:
            pc = dist.pat_recol_slope * plot.disturbed + dist.pat_recol_intcpt
            if rng.random() <= pc:
                plot.pat_removed = True
            else:
                plot.disturbed += 1
    elif plot.disturbance != DisturbEvent.NONE:
        plot.disturbed = max(plot.disturbed - 1, 0)
        if plot.disturbed == 0:
            plot.reset()

    if plot.disturbance != DisturbEvent.NONE:
        return

    event = DisturbEvent(int(rng.integers(1, len(DisturbEvent))))
    plot.pat_removed = False
    if event == DisturbEvent.FECAL_PAT:
        if dist.pat_use and rng.random() <= dist.pat_occur:
            plot.disturbance = event
            plot.pat_removed = bool(rng.random() <= dist.pat_removal)
            plot.disturbed = 0
    elif event == DisturbEvent.ANT_MOUND:
        if dist.mound_use and rng.random() <= dist.mound_occur:
            plot.disturbance = event
            plot.disturbed = int(rng.integers(dist.mound_minyr, dist.mound_maxyr + 1))
    elif event == DisturbEvent.BURROW:
        if dist.burrow_use and rng.random() <= dist.burrow_occur:
            plot.disturbance = event
            plot.disturbed = (int(rng.integers(1, dist.burrow_minyr + 1))
                              if dist.burrow_minyr > 0 else 0)
