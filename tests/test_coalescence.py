"""Tests for iddc_abc.coalescence — backward walk through a history.

Histories are built by hand through the recorders where an exact
ancestry is needed, and by ForwardSimulator for end-to-end checks.
"""

from collections import Counter

import numpy as np
import pytest

from iddc_abc.coalescence import (
    CoalescenceProcess,
    UnresolvedPolicy,
    coalesce,
    concatenate,
    sample_occupancy_spectrum,
)
from iddc_abc.demography import ForwardSimulator
from iddc_abc.exceptions import SimulationDeadEnd, UnresolvedCoalescence
from iddc_abc.kernels import GaussianKernel
from iddc_abc.spatial import DistanceTable, Landscape, TransitionKernelCache
from iddc_abc.types import DemographicHistory, Forest, KernelParams

A = (44.0, 0.2)
B = (44.5, 0.2)


@pytest.fixture
def rng():
    return np.random.default_rng(7)


def constant_history(demes, sizes, t0=2004, sampling_time=2008, flows=None):
    """History with fixed sizes; each deme replenishes itself unless
    `flows` gives {(src, dest): count} for every generation."""
    history = DemographicHistory(demes, t0, sampling_time)
    for t in range(t0, sampling_time + 1):
        for x, n in sizes.items():
            history._set_size(x, t, n)
    for t in range(t0, sampling_time):
        if flows is None:
            for x, n in sizes.items():
                history._add_flow(t, x, x, n)
        else:
            for (src, dest), n in flows.items():
                history._add_flow(t, src, dest, n)
    return history


def leaf_forest(counts):
    forest = Forest()
    for x, n in counts.items():
        for _ in range(n):
            forest.insert(x, [x])
    return forest


def leaves(forest):
    return Counter(x for tree in forest.trees() for x in tree)


# ═══════════════════════════════════════════════════════════════════════
# OCCUPANCY SPECTRUM
# ═══════════════════════════════════════════════════════════════════════

class TestOccupancySpectrum:
    def test_single_lineage_empty(self, rng):
        assert sample_occupancy_spectrum(1, 10, rng) == {}

    def test_single_parent_one_group(self, rng):
        assert sample_occupancy_spectrum(5, 1, rng) == {5: 1}

    def test_counts_consistent(self, rng):
        for _ in range(200):
            k = int(rng.integers(2, 30))
            spectrum = sample_occupancy_spectrum(k, 10, rng)
            assert all(j >= 2 for j in spectrum)
            assert sum(j * m for j, m in spectrum.items()) <= k

    def test_pair_coincidence_rate(self):
        """Two lineages share a parent with probability 1/N."""
        rng = np.random.default_rng(1)
        n_trials, N = 20000, 8
        hits = sum(
            1 for _ in range(n_trials)
            if sample_occupancy_spectrum(2, N, rng) == {2: 1}
        )
        assert hits / n_trials == pytest.approx(1.0 / N, abs=0.01)

    def test_no_parents(self, rng):
        with pytest.raises(ValueError, match="n_parents"):
            sample_occupancy_spectrum(3, 0, rng)


# ═══════════════════════════════════════════════════════════════════════
# COALESCENCE PROCESS
# ═══════════════════════════════════════════════════════════════════════

class TestCoalescenceProcess:
    def test_concatenate(self):
        assert concatenate([A], [B, B]) == [A, B, B]

    def test_single_parent_coalesces_in_one_step(self, rng):
        history = constant_history([A], {A: 1})
        forest = leaf_forest({A: 4})
        CoalescenceProcess(history).run(forest, rng)
        assert forest.n_trees == 1
        assert leaves(forest) == Counter({A: 4})

    def test_lineages_conserved(self, rng):
        """Leaf multiset survives every merge."""
        history = constant_history([A, B], {A: 3, B: 3},
                                   flows={(A, A): 2, (B, A): 1, (A, B): 1, (B, B): 2},
                                   sampling_time=2104)
        forest = leaf_forest({A: 5, B: 4})
        CoalescenceProcess(history, policy='keep_founders').run(forest, rng)
        assert leaves(forest) == Counter({A: 5, B: 4})

    def test_migration_follows_flows(self, rng):
        """All of A's parents came from B: lineages move to B."""
        history = DemographicHistory([A, B], 2004, 2005)
        history._set_size(B, 2004, 100)
        history._add_flow(2004, B, A, 100)
        history._set_size(A, 2005, 100)
        forest = leaf_forest({A: 1})
        process = CoalescenceProcess(history)
        process._migrate(forest, 2005, rng)
        assert forest.positions() == [B]

    def test_migration_without_ancestors(self, rng):
        history = constant_history([A, B], {A: 5})
        forest = leaf_forest({B: 2})
        with pytest.raises(SimulationDeadEnd, match="no recorded ancestors"):
            CoalescenceProcess(history).run(forest, rng)

    def test_stops_once_resolved(self, rng):
        history = constant_history([A], {A: 1}, sampling_time=2010)
        forest = leaf_forest({A: 1})
        CoalescenceProcess(history).run(forest, rng)
        assert forest.n_trees == 1

    def test_abort_on_unresolved(self, rng):
        history = constant_history([A], {A: 10**9})
        forest = leaf_forest({A: 3})
        with pytest.raises(UnresolvedCoalescence, match="introduction time 2004"):
            CoalescenceProcess(history, policy=UnresolvedPolicy.ABORT).run(forest, rng)

    def test_keep_founders(self, rng):
        history = constant_history([A], {A: 10**9})
        forest = leaf_forest({A: 3})
        CoalescenceProcess(history, policy='keep_founders').run(forest, rng)
        assert forest.n_trees == 3

    def test_merge_at_introduction(self, rng):
        history = constant_history([A], {A: 10**9})
        forest = leaf_forest({A: 3})
        CoalescenceProcess(history, policy='merge_at_introduction').run(forest, rng)
        assert forest.n_trees == 1
        assert leaves(forest) == Counter({A: 3})

    def test_merge_at_introduction_needs_single_deme(self, rng):
        history = DemographicHistory([A, B], 2004, 2005)
        history._set_size(A, 2004, 10**9)
        history._set_size(B, 2004, 10**9)
        history._add_flow(2004, A, A, 10**9)
        history._add_flow(2004, B, B, 10**9)
        history._set_size(A, 2005, 10**9)
        history._set_size(B, 2005, 10**9)
        forest = leaf_forest({A: 1, B: 1})
        with pytest.raises(UnresolvedCoalescence, match="2 deme"):
            CoalescenceProcess(history, policy='merge_at_introduction').run(forest, rng)

    def test_invalid_policy(self):
        history = constant_history([A], {A: 1})
        with pytest.raises(ValueError):
            CoalescenceProcess(history, policy='retry')

    def test_custom_operator(self, rng):
        """Counting operator: the root holds the number of leaves."""
        history = constant_history([A], {A: 1})
        forest = Forest()
        for _ in range(6):
            forest.insert(A, 1)
        CoalescenceProcess(history, op=lambda p, c: p + c, init=0).run(forest, rng)
        assert list(forest.trees()) == [6]

    def test_coalesce_leaves_template_untouched(self, rng):
        history = constant_history([A], {A: 1})
        template = leaf_forest({A: 3})
        result = coalesce(template, history, rng)
        assert template.n_trees == 3
        assert result.n_trees == 1

    def test_coalesce_with_counting_operator(self, rng):
        history = constant_history([A], {A: 1})
        template = Forest([(A, 1) for _ in range(5)])
        result = coalesce(template, history, rng, op=lambda p, c: p + c, init=0)
        assert list(result.trees()) == [5]
        assert list(template.trees()) == [1] * 5


class TestSingleDemeScenario:
    def test_two_lineages_coalesce(self):
        """N0=8, k=250, r=10, a=500, 2004 -> 2008: two lineages at the
        only deme always end as one tree."""
        table = DistanceTable.from_landscape(Landscape([A]))
        params = KernelParams(r=10.0, k=250, n0=8, a=500.0)
        rng = np.random.default_rng(2008)
        for _ in range(200):
            transitions = TransitionKernelCache(table, GaussianKernel(), params)
            history = ForwardSimulator(A, 2004, 2008, params, transitions).simulate(rng)
            forest = leaf_forest({A: 2})
            CoalescenceProcess(
                history, policy=UnresolvedPolicy.MERGE_AT_INTRODUCTION
            ).run(forest, rng)
            assert forest.n_trees == 1
            assert forest.positions() == [A]
            assert leaves(forest) == Counter({A: 2})
