"""Tests for steppe.growth — logistic growth, regrowth and extra growth."""

import numpy as np
import pytest

from steppe.growth import extra_growth, grow, resource_modifier
from steppe.population import Community
from steppe.types import MortalityType, PptClass, TempClass

from builders import (
    ScriptedRng,
    group,
    make_config,
    normal_year,
    populate,
    single_group_community,
    species,
)


def _set_pr(community, sp_idx, pr):
    sp = community.species[sp_idx]
    sp.indivs['pr'][sp.alive_slots()] = pr


class TestResourceModifier:
    def test_values(self):
        assert resource_modifier(0.0) == pytest.approx(1.0)
        assert resource_modifier(0.5) == pytest.approx(0.975)
        assert resource_modifier(1.0) == pytest.approx(0.95)
        assert resource_modifier(2.0) == pytest.approx(0.475)

    def test_non_increasing(self):
        prs = np.linspace(0.0, 10.0, 201)
        assert np.all(np.diff(resource_modifier(prs)) <= 1e-12)

    def test_sentinel_starves(self):
        assert resource_modifier(100.0) == pytest.approx(0.0095)


class TestGrow:
    def test_logistic_increment(self):
        community = single_group_community()
        slots = populate(community, 0, [0.2])
        _set_pr(community, 0, 0.5)
        grow(community, normal_year(), ScriptedRng())
        rec = community.species[0].indivs
        assert rec['growthrate'][slots[0]] == pytest.approx(0.39)
        assert rec['relsize'][slots[0]] == pytest.approx(0.278)
        assert community.species[0].relsize == pytest.approx(0.278)
        assert community.check_sizes()

    def test_growth_slows_near_full_size(self):
        community = single_group_community()
        slots = populate(community, 0, [0.2, 0.95])
        _set_pr(community, 0, 0.5)
        grow(community, normal_year(), ScriptedRng())
        rec = community.species[0].indivs
        assert rec['growthrate'][slots[1]] < rec['growthrate'][slots[0]]
        assert rec['relsize'][slots[1]] < 1.0

    def test_scarcity_slows_growth(self):
        fed = single_group_community()
        starved = single_group_community()
        populate(fed, 0, [0.3])
        populate(starved, 0, [0.3])
        _set_pr(fed, 0, 0.5)
        _set_pr(starved, 0, 3.0)
        grow(fed, normal_year(), ScriptedRng())
        grow(starved, normal_year(), ScriptedRng())
        assert starved.species[0].relsize < fed.species[0].relsize

    def test_temperature_modifier(self):
        community = single_group_community(species_kwargs={'tempclass': 'cool'})
        slots = populate(community, 0, [0.2])
        _set_pr(community, 0, 0.5)
        env = normal_year(temp_reduction={TempClass.COOL: 0.5, TempClass.WARM: 1.0})
        grow(community, env, ScriptedRng())
        assert community.species[0].indivs['growthrate'][slots[0]] == pytest.approx(0.195)

    def test_succulents_do_not_grow_in_wet_years(self):
        community = single_group_community(group_kwargs={'succulent': True})
        populate(community, 0, [0.2])
        _set_pr(community, 0, 0.5)
        grow(community, normal_year(ppt=600.0, wet_dry=PptClass.WET), ScriptedRng())
        assert community.species[0].relsize == pytest.approx(0.2)

    def test_succulents_grow_in_normal_years(self):
        community = single_group_community(group_kwargs={'succulent': True})
        populate(community, 0, [0.2])
        _set_pr(community, 0, 0.5)
        grow(community, normal_year(), ScriptedRng())
        assert community.species[0].relsize == pytest.approx(0.278)

    def test_annuals_untouched(self):
        config = make_config([group('forbs')],
                             [species('chen', 'forbs', max_age=1, viable_yrs=2)])
        community = Community(config)
        community.reset_plot()
        community.set_annual_size(0, 2.0)
        grow(community, normal_year(), ScriptedRng())
        assert community.species[0].relsize == pytest.approx(2.0)


class TestVegetativeRegrowth:
    @pytest.fixture
    def clonal(self):
        community = single_group_community(species_kwargs={
            'isclonal': True, 'max_vegunits': 3,
            'prob_veggrow': {'no_resources': 0.6},
        })
        slots = populate(community, 0, [0.5])
        community.kill_partial(0, slots[0], 0.2, MortalityType.NO_RESOURCES)
        _set_pr(community, 0, 0.5)
        return community, slots[0]

    def test_regrowth_replaces_logistic(self, clonal):
        community, slot = clonal
        grow(community, normal_year(), ScriptedRng(uniforms=[0.1], integers=[2]))
        rec = community.species[0].indivs
        assert rec['relsize'][slot] == pytest.approx(0.32)
        assert rec['growthrate'][slot] == pytest.approx(0.02 / 0.3)
        assert not rec['killed'][slot]
        assert community.check_sizes()

    def test_failed_draw_grows_normally(self, clonal):
        community, slot = clonal
        grow(community, normal_year(), ScriptedRng(uniforms=[0.9]))
        rec = community.species[0].indivs
        assert rec['relsize'][slot] == pytest.approx(0.3 + 0.975 * 0.5 * 0.7 * 0.3)
        assert rec['killed'][slot]

    def test_intact_plants_draw_nothing(self):
        community = single_group_community(species_kwargs={'isclonal': True})
        populate(community, 0, [0.5, 0.2])
        _set_pr(community, 0, 0.5)
        rng = ScriptedRng()
        grow(community, normal_year(), rng)
        assert rng.n_uniform == 0


class TestExtraGrowth:
    def test_extra_resource_becomes_extragrowth(self):
        community = single_group_community(
            group_kwargs={'use_extra_res': True, 'xgrow': 0.5},
            species_kwargs={'mature_biomass': 5.0})
        slots = populate(community, 0, [0.5, 0.3])
        rec = community.species[0].indivs
        rec['res_extra'][slots] = [0.1, 0.1]
        extra_growth(community, community.groups[0], normal_year(ppt=400.0))
        sp = community.species[0]
        assert sp.extragrowth == pytest.approx(0.2 * 0.2 * 400.0 * 0.5 / 5.0)
        assert sp.relsize == pytest.approx(0.8)

    def test_no_xgrow_no_extragrowth(self):
        community = single_group_community(group_kwargs={'use_extra_res': True})
        slots = populate(community, 0, [0.5])
        community.species[0].indivs['res_extra'][slots] = 0.3
        extra_growth(community, community.groups[0], normal_year())
        assert community.species[0].extragrowth == 0.0

    def test_grow_applies_extra_growth(self):
        community = single_group_community(
            group_kwargs={'use_extra_res': True, 'xgrow': 1.0})
        slots = populate(community, 0, [0.5])
        rec = community.species[0].indivs
        rec['pr'][slots] = 0.5
        rec['res_extra'][slots] = 0.01
        grow(community, normal_year(), ScriptedRng())
        assert community.species[0].extragrowth > 0.0
