"""Growth Engine: yearly size increment of perennial individuals.

For each individual of each established perennial species:
  - gmod = 1 - OPT_SLOPE * min(1, PR), further divided by PR when PR > 1
  - rate = gmod * temperature modifier * intrin_rate * (1 - relsize)  (eqn 1)
  - relsize += rate * relsize
  - a partially killed clonal plant may instead regrow vegetatively with
    its stored probability, adding relseedlingsize * U{1..max_vegunits}

Annuals never grow here (their size comes from the seedbank) and succulent
groups do not grow in wet years. Groups that receive extra resource turn
it into superfluous growth that lasts until the end of the year.

References:
  - Coffin & Lauenroth 1990, eqns 1, 12, 13
"""

from __future__ import annotations

import numpy as np

from steppe.environment import EnvironmentYear
from steppe.population import Community, ResourceGroup
from steppe.types import OPT_SLOPE, PptClass
from steppe.utils import is_zero


def resource_modifier(pr):
    """Growth modifier from PR; non-increasing in PR. Accepts arrays."""
    pr = np.asarray(pr, dtype=np.float64)
    gmod = 1.0 - OPT_SLOPE * np.minimum(1.0, pr)
    return np.where(pr > 1.0, gmod / np.maximum(pr, 1.0), gmod)


def grow(
    community: Community,
    env: EnvironmentYear,
    rng: np.random.Generator,
) -> None:
    """Grow every established perennial individual by one year."""
    for g in community.groups:
        if g.is_annual or community.group_est_count(g.index) == 0:
            continue
        if g.cfg.succulent and env.wet_dry == PptClass.WET:
            continue

        for sp in community.established_species(g.index):
            slots = sp.alive_slots()
            if len(slots) == 0:
                continue
            rec = sp.indivs
            relsize = rec['relsize'][slots]
            tgmod = env.temp_modifier(sp.tempclass)
            gmod = resource_modifier(rec['pr'][slots]) * tgmod

            rate = gmod * sp.cfg.intrin_rate * (1.0 - relsize)
            growth = rate * relsize

            if sp.isclonal:
                killed = np.flatnonzero(rec['killed'][slots])
                if len(killed):
                    draws = rng.random(len(killed))
                    regrow = killed[draws < rec['prob_veggrow'][slots[killed]]]
                    if len(regrow):
                        units = rng.integers(1, sp.cfg.max_vegunits + 1,
                                             size=len(regrow))
                        growth[regrow] = sp.cfg.relseedlingsize * units
                        rate[regrow] = np.divide(
                            growth[regrow], relsize[regrow],
                            out=np.zeros(len(regrow)), where=relsize[regrow] > 0,
                        )
                        rec['killed'][slots[regrow]] = False

            rec['relsize'][slots] = relsize + growth
            rec['growthrate'][slots] = rate
            community.update_species_size(sp.index, float(growth.sum()))

        extra_growth(community, g, env)


def extra_growth(
    community: Community,
    g: ResourceGroup,
    env: EnvironmentYear,
) -> None:
    """Convert individuals' res_extra into the species' extragrowth.

    Extra growth is kept apart from relsize and zeroed at the end of the
    year; it only counts toward this year's biomass.
    """
    if g.is_annual or is_zero(g.cfg.xgrow) or not g.cfg.use_extra_res:
        return
    for sp in community.established_species(g.index):
        rec = sp.indivs
        extra = (rec['res_extra'][rec['alive']] * g.cfg.min_res_req
                 * env.ppt * g.cfg.xgrow)
        sp.extragrowth += float(extra.sum()) / sp.cfg.mature_biomass
