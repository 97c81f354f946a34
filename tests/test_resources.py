"""Tests for steppe.resources — the Resource Partitioner."""

import numpy as np
import pytest

from steppe.population import Community
from steppe.resources import (
    FixedResourceProvider,
    add_annual_seedprod,
    add_annuals,
    annual_max_estab,
    base_allocation,
    group_pr,
    partition_individuals,
    partition_resources,
    ppt_to_resource,
)
from steppe.types import PR_SENTINEL, PptClass

from builders import (
    ScriptedRng,
    group,
    make_config,
    normal_year,
    populate,
    single_group_community,
    species,
)


def _annual_community(**species_kwargs) -> Community:
    params = dict(max_age=1, viable_yrs=3, exp_decay=1.0, max_seed_estab=3)
    params.update(species_kwargs)
    config = make_config([group('forbs')], [species('chen', 'forbs', **params)])
    community = Community(config)
    community.reset_plot()
    community.year = 1
    return community


def _two_groups() -> Community:
    config = make_config(
        [group('A'), group('B')],
        [species('a', 'A'), species('b', 'B')],
    )
    community = Community(config)
    community.reset_plot()
    community.year = 1
    populate(community, 0, [0.5])
    populate(community, 1, [0.6, 0.4])
    return community


# ── helpers ──────────────────────────────────────────────────────────

class TestHelpers:
    def test_unit_index_at_average_ppt(self):
        community = single_group_community()
        g = community.groups[0]
        assert ppt_to_resource(400.0, PptClass.NORMAL, g) == pytest.approx(1.0)
        assert ppt_to_resource(600.0, PptClass.WET, g) == pytest.approx(1.5)

    def test_class_specific_coefficients(self):
        community = single_group_community(group_kwargs={
            'ppt_slope': {'wet': 0.002, 'dry': 0.003, 'normal': 0.0025},
            'ppt_intcpt': {'wet': 0.1, 'dry': 0.0, 'normal': 0.0},
        })
        g = community.groups[0]
        assert ppt_to_resource(250.0, PptClass.DRY, g) == pytest.approx(0.75)
        assert ppt_to_resource(550.0, PptClass.WET, g) == pytest.approx(1.2)

    def test_group_pr(self):
        assert group_pr(0.2, 0.4) == pytest.approx(0.5)
        assert group_pr(0.2, 0.0) == PR_SENTINEL
        assert group_pr(0.0, 0.0) == 0.0


# ── base allocation & redistribution ─────────────────────────────────

class TestGroupAllocation:
    def test_base_pass_never_exceeds_index(self):
        community = _two_groups()
        alloc = base_allocation(community, normal_year(ppt=200.0), ScriptedRng())
        for g in community.groups:
            index = ppt_to_resource(200.0, PptClass.NORMAL, g)
            assert g.res_avail <= min(1.0, index) + 1e-12
            assert g.res_avail <= g.res_required + 1e-12
        assert not alloc.noplants

    def test_single_group_topped_up(self):
        """A lone group is credited min(1, index), not just what it requires.

        The base pass caps res_avail at res_required (0.1); the unused
        0.9 goes to the pool and redistribution hands all of it back to the
        only group with size, so PR = 0.1 / 1.0.
        """
        community = single_group_community()
        populate(community, 0, [0.5, 0.3, 0.2])
        partition_resources(community, normal_year(ppt=400.0), ScriptedRng())
        g = community.groups[0]
        assert g.res_required == pytest.approx(0.1)
        assert g.res_avail == pytest.approx(1.0)
        assert g.pr == pytest.approx(0.1)
        assert g.res_extra == 0.0

    def test_two_group_redistribution(self):
        community = _two_groups()
        partition_resources(community, normal_year(ppt=400.0), ScriptedRng())
        a, b = community.groups
        pool = 0.95 * 0.2 + 0.9 * 0.2
        assert a.res_avail == pytest.approx(0.05 + pool / 3 / 0.2)
        assert b.res_avail == pytest.approx(0.1 + pool * 2 / 3 / 0.2)
        assert a.pr == pytest.approx(0.05 / a.res_avail)

    def test_extra_pool_goes_to_res_extra(self):
        community = single_group_community(
            group_kwargs={'use_extra_res': True, 'xgrow': 0.5})
        populate(community, 0, [0.5, 0.3, 0.2])
        partition_resources(community, normal_year(ppt=600.0), ScriptedRng())
        g = community.groups[0]
        assert g.res_avail == pytest.approx(1.0)
        assert g.res_extra == pytest.approx(0.5)

    def test_extra_pool_folded_in_without_xgrow(self):
        community = single_group_community(group_kwargs={'use_extra_res': True})
        populate(community, 0, [0.5, 0.3, 0.2])
        partition_resources(community, normal_year(ppt=600.0), ScriptedRng())
        g = community.groups[0]
        assert g.res_avail == pytest.approx(1.5)
        assert g.res_extra == 0.0

    def test_extra_pool_ignored_when_ineligible(self):
        community = single_group_community()
        populate(community, 0, [0.5, 0.3, 0.2])
        partition_resources(community, normal_year(ppt=600.0), ScriptedRng())
        assert community.groups[0].res_avail == pytest.approx(1.0)

    def test_empty_group_gets_nothing(self):
        config = make_config([group('A'), group('B')],
                             [species('a', 'A'), species('b', 'B')])
        community = Community(config)
        community.reset_plot()
        community.year = 1
        populate(community, 0, [0.5])
        partition_resources(community, normal_year(), ScriptedRng())
        b = community.groups[1]
        assert b.res_avail == 0.0
        assert b.pr == 0.0

    def test_dry_year_scarcity(self):
        community = single_group_community(group_kwargs={'max_density': 1.0})
        populate(community, 0, [0.6, 0.4])
        partition_resources(community, normal_year(ppt=200.0, wet_dry=PptClass.DRY),
                            ScriptedRng())
        g = community.groups[0]
        # required 1.0, index 0.5, nothing left over to share
        assert g.res_avail == pytest.approx(0.5)
        assert g.pr == pytest.approx(2.0)


# ── individual apportionment ─────────────────────────────────────────

class TestIndividualApportionment:
    @pytest.fixture
    def community(self):
        community = single_group_community(group_kwargs={'max_density': 1.0})
        populate(community, 0, [0.5, 0.3, 0.2])
        return community

    def _fields(self, community):
        members = community.group_members(0, order='descending')
        return (members.get('res_required'), members.get('res_avail'),
                members.get('res_extra'), members.get('pr'))

    def test_cup_method_largest_first(self, community):
        g = community.groups[0]
        g.res_avail = 0.6
        g.pr = 2.0
        partition_individuals(community)
        required, avail, _, pr = self._fields(community)
        np.testing.assert_allclose(required, [0.5, 0.3, 0.2])
        np.testing.assert_allclose(avail, [0.5, 0.1, 0.0], atol=1e-12)
        np.testing.assert_allclose(pr, [1.0, 3.0, PR_SENTINEL])

    def test_proportional_when_ample(self, community):
        g = community.groups[0]
        g.res_avail = 2.0
        g.pr = 0.5
        partition_individuals(community)
        _, avail, _, pr = self._fields(community)
        np.testing.assert_allclose(avail, [1.0, 0.6, 0.4])
        np.testing.assert_allclose(pr, 0.5)

    def test_individual_sum_matches_group(self, community):
        g = community.groups[0]
        g.res_avail = 0.75
        g.pr = 0.5
        partition_individuals(community)
        _, avail, _, _ = self._fields(community)
        assert avail.sum() == pytest.approx(0.75)

    def test_extra_split_by_size(self):
        community = single_group_community(
            group_kwargs={'max_density': 1.0, 'use_extra_res': True, 'xgrow': 1.0})
        populate(community, 0, [0.5, 0.3, 0.2])
        g = community.groups[0]
        g.res_avail = 1.0
        g.res_extra = 0.4
        g.pr = 0.5
        partition_individuals(community)
        _, avail, extra, _ = self._fields(community)
        np.testing.assert_allclose(extra, [0.1, 0.036, 0.016])
        np.testing.assert_allclose(avail, [0.6, 0.384, 0.264])

    def test_multi_species_by_relsize(self):
        config = make_config([group('grass', max_density=1.0)],
                             [species('x', 'grass'), species('y', 'grass')])
        community = Community(config)
        community.reset_plot()
        community.year = 1
        populate(community, 0, [0.2])
        populate(community, 1, [0.6])
        g = community.groups[0]
        g.res_avail = 0.3
        g.pr = 2.0
        partition_individuals(community)
        # the larger plant (species y) is served first
        assert community.species[1].indivs['res_avail'][0] == pytest.approx(0.3)
        assert community.species[0].indivs['res_avail'][0] == 0.0
        assert community.species[0].indivs['pr'][0] == PR_SENTINEL


# ── annual seedbank ──────────────────────────────────────────────────

class TestSeedbank:
    def test_max_estab_decays_with_age(self):
        community = _annual_community()
        sp = community.species[0]
        sp.seedprod[:] = [4.0, 2.0, 1.0]
        assert annual_max_estab(sp) == pytest.approx(4.0 + 1.0 + 1.0 / 3.0)

    def test_push_shifts_ring(self):
        community = _annual_community()
        sp = community.species[0]
        sp.seedprod[:] = [4.0, 2.0, 1.0]
        add_annual_seedprod(sp, 1.0)
        np.testing.assert_allclose(sp.seedprod, [3.0 * np.exp(-1.0), 4.0, 2.0])

    def test_negative_pr_pushes_zero(self):
        community = _annual_community()
        sp = community.species[0]
        sp.seedprod[:] = [4.0, 2.0, 1.0]
        add_annual_seedprod(sp, -1.0)
        np.testing.assert_allclose(sp.seedprod, [0.0, 4.0, 2.0])

    def test_sizing_pass_commits_nothing(self):
        community = _annual_community()
        sp = community.species[0]
        sp.seedprod[:] = [4.0, 0.0, 0.0]
        size = add_annuals(community, 0, 1.0, False, ScriptedRng())
        assert size == pytest.approx(1.0)
        assert sp.est_count == 0
        np.testing.assert_allclose(sp.seedprod, [4.0, 0.0, 0.0])

    def test_commit_pass(self):
        community = _annual_community()
        sp = community.species[0]
        sp.seedprod[:] = [4.0, 0.0, 0.0]
        partition_resources(community, normal_year(), ScriptedRng())
        g = community.groups[0]
        assert g.pr == pytest.approx(0.1)
        expected = (4.0 - 4.0 / 20.0 * 0.1) * np.exp(-0.1)
        assert sp.relsize == pytest.approx(expected)
        assert sp.est_count == 4
        assert g.relsize == pytest.approx(expected)
        np.testing.assert_allclose(sp.seedprod, [3.0 * np.exp(-0.1), 4.0, 0.0])

    def test_forced_propagules_pushed_once(self):
        community = _annual_community(seedling_estab_prob=1.0)
        sp = community.species[0]
        sp.seedprod[:] = [4.0, 0.0, 0.0]
        partition_resources(community, normal_year(), ScriptedRng())
        np.testing.assert_allclose(sp.seedprod, [3.0 * np.exp(-1.0), 4.0, 0.0])
        assert not sp.received_prop
        assert sp.est_count == 3

    def test_plantless_year_leaves_seedbank_alone(self):
        community = _annual_community()
        sp = community.species[0]
        g = community.groups[0]
        sp.seedprod[:] = [4.0, 2.0, 1.0]
        g.regen_ok = False
        g.pr = 0.7
        partition_resources(community, normal_year(), ScriptedRng())
        assert sp.relsize == 0.0
        assert sp.est_count == 0
        assert g.pr == 0.7
        np.testing.assert_allclose(sp.seedprod, [4.0, 2.0, 1.0])

    def test_plantless_year_keeps_forced_propagules(self):
        community = _annual_community(seedling_estab_prob=1.0)
        sp = community.species[0]
        community.groups[0].regen_ok = False
        sp.seedprod[:] = [4.0, 2.0, 1.0]
        partition_resources(community, normal_year(), ScriptedRng())
        assert sp.est_count == 0
        np.testing.assert_allclose(sp.seedprod, [0.0, 4.0, 2.0])

    def test_empty_seedbank_gives_no_plants(self):
        community = _annual_community()
        partition_resources(community, normal_year(), ScriptedRng())
        assert community.groups[0].relsize == 0.0
        assert community.groups[0].est_spp == []


# ── external provider ────────────────────────────────────────────────

class TestResourceProvider:
    def test_provider_quantities_used(self):
        community = single_group_community()
        populate(community, 0, [0.5, 0.3, 0.2])
        provider = FixedResourceProvider({'grass': (2.0, 3.0)})
        partition_resources(community, normal_year(), ScriptedRng(), provider)
        g = community.groups[0]
        assert g.res_required == pytest.approx(0.2)
        assert g.res_avail == pytest.approx(2.0)
        assert g.pr == pytest.approx(0.1)
        assert provider.last_pr == {'grass': pytest.approx(0.1)}

    def test_unlisted_group_falls_back_to_formula(self):
        community = single_group_community()
        populate(community, 0, [0.5, 0.3, 0.2])
        provider = FixedResourceProvider({'shrubs': (2.0, 3.0)})
        partition_resources(community, normal_year(), ScriptedRng(), provider)
        assert community.groups[0].res_avail == pytest.approx(1.0)
        assert 'grass' in provider.last_pr

    def test_default_quantities(self):
        community = single_group_community()
        populate(community, 0, [1.0])
        provider = FixedResourceProvider(default=(0.05, 0.05))
        partition_resources(community, normal_year(), ScriptedRng(), provider)
        g = community.groups[0]
        assert g.res_required == pytest.approx(0.005)
        assert g.pr == pytest.approx(0.1)

    def test_plantless_year_not_reported(self):
        community = single_group_community()
        provider = FixedResourceProvider(default=(1.0, 1.0))
        partition_resources(community, normal_year(), ScriptedRng(), provider)
        assert provider.last_pr == {}
