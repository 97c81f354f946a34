"""Core data types for STEPPE.

This module is the SINGLE SOURCE OF TRUTH for:
  - INDIVIDUAL_DTYPE: NumPy structured array dtype for perennial individuals
  - PptClass, TempClass, DisturbClass, DisturbEvent, MortalityType enumerations
  - Capacity limits and the named tunable constants of the demographic model
  - SimulationError / ResourceOvercommitError (fatal run errors)

All modules import these types from here. No other module defines
individual fields.

References:
  - Coffin & Lauenroth 1990, Ecol. Modelling 49:229-266 (equation numbers
    quoted below refer to that paper)
"""

from enum import IntEnum
from typing import Optional

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class PptClass(IntEnum):
    """Precipitation classification of a simulated year."""
    WET    = 0
    DRY    = 1
    NORMAL = 2


class TempClass(IntEnum):
    """Temperature response class of a species."""
    NO_SEASON = 0   # growth not modified by temperature
    COOL      = 1   # cool-season (C3) response
    WARM      = 2   # warm-season (C4) response


class DisturbClass(IntEnum):
    """Disturbance sensitivity, ordered from most to least sensitive."""
    VERY_SENSITIVE   = 0
    SENSITIVE        = 1
    INSENSITIVE      = 2
    VERY_INSENSITIVE = 3


class DisturbEvent(IntEnum):
    """Plot-level disturbance; at most one is active per year."""
    NONE      = 0
    FECAL_PAT = 1
    ANT_MOUND = 2
    BURROW    = 3


class MortalityType(IntEnum):
    """Cause of death (or of a partial kill) for tallies and regrowth."""
    NO_RESOURCES = 0   # stretched resources (eqns 7, 8, 9)
    SLOW         = 1   # consecutive years of slow growth
    INTRINSIC    = 2   # age-independent (eqn 14)
    SUCCULENT    = 3   # wet-year succulent mortality (eqn 16)
    DISTURBANCE  = 4   # fecal pat, ant mound, burrow
    SCHEDULED    = 5   # configured kill year/frequency or extirpation
    ANNUAL       = 6   # end of the annuals' single growing season


N_MORTALITY_TYPES = len(MortalityType)


# ═══════════════════════════════════════════════════════════════════════
# CAPACITY LIMITS
# ═══════════════════════════════════════════════════════════════════════

MAX_RGROUPS = 10          # resource groups per community
MAX_SPP_PER_GRP = 10      # species per resource group
MAX_SPECIES = 40          # species per community
MAX_SEEDBANK_YEARS = 50   # annuals' seed viability window


# ═══════════════════════════════════════════════════════════════════════
# MODEL CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

PR_SENTINEL = 100.0           # PR of an individual that received no resource
OPT_SLOPE = 0.05              # k in the resource growth modifier 1 - k*min(1, PR)
SLOW_GROWTH_MORT_PROB = 0.368  # C&L'90 constant death probability, ~exp(-1)
STRETCH_KILL_COEF = 0.04      # eqn 8: quota-kill probability = coef * y^2
STRETCH_KILL_QUOTA = 0.9      # eqn 9: share of clonals killed on the quota branch
STRETCH_REDUCTION_DAMPING = 0.8  # "magic" damping of the proportional reduction
PR_ZERO_ESTAB = 20.0          # annuals: PR at which no seeds can establish
SIZE_CHECK_TOLERANCE = 5.0e-6  # allowed relsize mismatch in size reconciliation


# ═══════════════════════════════════════════════════════════════════════
# INDIVIDUAL_DTYPE — record for one perennial plant
# ═══════════════════════════════════════════════════════════════════════

INDIVIDUAL_DTYPE = np.dtype([
    ('alive',         np.bool_),     # slot in use; False = tombstone
    ('age',           np.int32),     # years; new plants start at 1
    ('relsize',       np.float64),   # relative to a full-sized plant, >= 0
    ('growthrate',    np.float64),   # growth rate of the most recent step
    ('grp_res_prop',  np.float64),   # share of the group's relsize
    ('res_required',  np.float64),   # resource needed for current size
    ('res_avail',     np.float64),   # resource credited this year
    ('res_extra',     np.float64),   # resource for superfluous growth
    ('pr',            np.float64),   # res_required / res_avail
    ('slow_yrs',      np.int32),     # consecutive-ish years of slow growth
    ('killed',        np.bool_),     # partially killed; may regrow (clonal)
    ('prob_veggrow',  np.float64),   # regrowth probability set at partial kill
])


def allocate_individuals(max_n: int) -> np.ndarray:
    """Allocate a zeroed individual array (all slots free).

    Args:
        max_n: Array capacity.

    Returns:
        Zeroed structured array of shape (max_n,) with INDIVIDUAL_DTYPE.
    """
    return np.zeros(max_n, dtype=INDIVIDUAL_DTYPE)


# ═══════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════

class SimulationError(RuntimeError):
    """Fatal configuration or logic error; aborts the whole run."""

    def __init__(self, message: str, iteration: Optional[int] = None,
                 year: Optional[int] = None):
        self.iteration = iteration
        self.year = year
        super().__init__(f"{message} (iteration={iteration}, year={year})")


class ResourceOvercommitError(SimulationError):
    """Stretched-clonal reduction factor exceeded 1.0."""
