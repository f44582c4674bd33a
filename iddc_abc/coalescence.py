"""Backward coalescence of sampled lineages through a demographic history.

One backward generation, from t to t-1:
  1. Migration: a lineage in deme x picks the deme its parent lived in,
        P(y) = Flow(t-1, y -> x) / N(x, t)
  2. Coalescence: in each deme y holding k >= 2 lineages, every lineage
     picks one of the N(y, t-1) parents uniformly (Wright-Fisher
     exchangeability). Parents picked j >= 2 times are j-mergers; their
     counts form the occupancy spectrum applied by
     simultaneous_multiple_merge (binary_merge for a single pair).

The walk stops as soon as one lineage is left. Lineages still separate at
the introduction time are handled by the UnresolvedPolicy.

A Tree is the list of sampling demes of the gene copies it subtends;
merging concatenates child lists onto the parent.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, List, Optional

import numpy as np

from iddc_abc.exceptions import SimulationDeadEnd, UnresolvedCoalescence
from iddc_abc.merge import binary_merge, simultaneous_multiple_merge
from iddc_abc.types import DemographicHistory, Forest, OccupancySpectrum, Tree

logger = logging.getLogger(__name__)


class UnresolvedPolicy(str, Enum):
    """What to do with > 1 lineage left at the introduction time."""
    ABORT = 'abort'                                   # UnresolvedCoalescence
    MERGE_AT_INTRODUCTION = 'merge_at_introduction'   # single founding ancestor
    KEEP_FOUNDERS = 'keep_founders'                   # founders become clusters


def concatenate(parent: Tree, child: Tree) -> Tree:
    """Attach a child tree to its parent: parent's demes then child's."""
    return parent + child


def sample_occupancy_spectrum(k: int, n_parents: int,
                              rng: np.random.Generator) -> OccupancySpectrum:
    """Occupancy spectrum of k lineages choosing among n_parents.

    Returns:
        {j: m_j} for every group size j >= 2 that occurs; empty when all
        lineages picked distinct parents.
    """
    if n_parents < 1:
        raise ValueError(f"n_parents must be >= 1, got {n_parents}")
    if k < 2:
        return {}
    picks = rng.integers(0, n_parents, size=k)
    _, children = np.unique(picks, return_counts=True)
    sizes, m = np.unique(children[children >= 2], return_counts=True)
    return {int(j): int(mj) for j, mj in zip(sizes, m)}


class CoalescenceProcess:
    """Walks a DemographicHistory backward, merging a Forest in place.

    Args:
        history: Completed forward history of the replicate.
        op: Branching operator op(parent, child); concatenation by default.
        init: Initial parent value for op.
        policy: Treatment of lineages left at the introduction time.
    """

    def __init__(self, history: DemographicHistory,
                 op: Callable[[Any, Any], Any] = concatenate,
                 init: Any = None,
                 policy: UnresolvedPolicy = UnresolvedPolicy.ABORT):
        self.history = history
        self.op = op
        self.init = [] if init is None else init
        self.policy = UnresolvedPolicy(policy)

    # ── one backward generation ──────────────────────────────────────

    def _migrate(self, forest: Forest, t: int, rng: np.random.Generator) -> None:
        """Move every lineage from its deme at t to its parent's deme at t-1."""
        moves = []
        for x, trees in forest:
            sources = self.history.inflows(t - 1, x)
            if not sources:
                raise SimulationDeadEnd(
                    f"{len(trees)} lineage(s) in {x} at t={t} have no "
                    f"recorded ancestors at t={t - 1}"
                )
            demes = list(sources)
            w = np.array([sources[y] for y in demes], dtype=np.float64)
            picks = rng.choice(len(demes), size=len(trees), p=w / w.sum())
            moves.extend((demes[int(i)], tree) for i, tree in zip(picks, trees))
        forest.clear()
        for y, tree in moves:
            forest.insert(y, tree)

    def _merge(self, trees: List[Tree], spectrum: OccupancySpectrum,
               rng: np.random.Generator) -> None:
        if spectrum == {2: 1}:
            end = binary_merge(trees, self.init, self.op, rng)
        else:
            end = simultaneous_multiple_merge(trees, self.init, spectrum,
                                              self.op, rng)
        del trees[end:]

    def _coalesce(self, forest: Forest, t: int, rng: np.random.Generator) -> None:
        for x in forest.positions():
            trees = forest.trees_at(x)
            if len(trees) < 2:
                continue
            spectrum = sample_occupancy_spectrum(
                len(trees), self.history.N(x, t), rng
            )
            if spectrum:
                self._merge(trees, spectrum, rng)

    # ── full walk ────────────────────────────────────────────────────

    def run(self, forest: Forest, rng: np.random.Generator) -> Forest:
        """Coalesce `forest` (mutated in place) and return it.

        Raises:
            UnresolvedCoalescence: Lineages left at t0 under ABORT, or
                outside the introduction deme under MERGE_AT_INTRODUCTION.
            SimulationDeadEnd: A lineage sits where nothing ever arrived.
        """
        t = self.history.sampling_time
        while forest.n_trees > 1 and t > self.history.t0:
            self._migrate(forest, t, rng)
            t -= 1
            self._coalesce(forest, t, rng)

        if forest.n_trees > 1:
            self._resolve(forest, rng)
        return forest

    def _resolve(self, forest: Forest, rng: np.random.Generator) -> None:
        n = forest.n_trees
        t0 = self.history.t0
        if self.policy is UnresolvedPolicy.KEEP_FOUNDERS:
            logger.debug("%d founder lineages kept at t0=%d", n, t0)
            return
        if self.policy is UnresolvedPolicy.MERGE_AT_INTRODUCTION and len(forest) == 1:
            x = forest.positions()[0]
            trees = forest.trees_at(x)
            self._merge(trees, {len(trees): 1}, rng)
            return
        raise UnresolvedCoalescence(
            f"{n} lineages in {len(forest)} deme(s) remain at introduction time {t0}"
        )


def coalesce(forest: Forest, history: DemographicHistory,
             rng: np.random.Generator,
             policy: UnresolvedPolicy = UnresolvedPolicy.ABORT,
             op: Optional[Callable[[Any, Any], Any]] = None,
             init: Any = None) -> Forest:
    """Convenience wrapper: coalesce a copy of `forest` through `history`.

    `init` defaults to an empty list, the identity of concatenation; pass
    the identity of any other `op`.
    """
    process = CoalescenceProcess(history, op=op or concatenate, init=init,
                                 policy=policy)
    return process.run(forest.copy(), rng)
