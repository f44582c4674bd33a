"""Core data types for IDDC-ABC.

This module is the SINGLE SOURCE OF TRUTH for:
  - Deme and Tree aliases
  - KernelParams: the parameter vector of one ABC draw
  - DemographicHistory: population sizes and migration flows per generation
  - Forest: per-deme lineage containers walked by the coalescent

All modules import these types from here.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple


# ═══════════════════════════════════════════════════════════════════════
# ALIASES
# ═══════════════════════════════════════════════════════════════════════

Deme = Tuple[float, float]   # (lat, lon) of a landscape cell centroid
Tree = List[Deme]            # sampling demes of the gene copies a lineage subtends
OccupancySpectrum = Dict[int, int]   # group size j >= 2 -> number of parents m_j


# ═══════════════════════════════════════════════════════════════════════
# PARAMETERS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class KernelParams:
    """Parameter vector of one ABC draw. Immutable for a replicate."""
    r: float                 # growth rate
    k: float                 # carrying capacity per deme
    n0: int                  # founder population size
    a: float                 # dispersal kernel scale (km)
    b: Optional[float] = None    # logistic kernel tail shape (> 2)

    def as_dict(self) -> Dict[str, float]:
        d = {'r': self.r, 'k': self.k, 'n0': self.n0, 'a': self.a}
        if self.b is not None:
            d['b'] = self.b
        return d


# ═══════════════════════════════════════════════════════════════════════
# DEMOGRAPHIC HISTORY
# ═══════════════════════════════════════════════════════════════════════

class DemographicHistory:
    """Population sizes N(x, t) and migrant counts Flow(t, x -> y).

    Flow(t, x -> y) counts the individuals born in x during generation t
    that settled in y, so N(y, t+1) = sum_x Flow(t, x -> y).

    Built by ForwardSimulator only (through the underscore recorders);
    read-only for everything downstream.
    """

    def __init__(self, demes: Sequence[Deme], t0: int, sampling_time: int):
        self.demes: Tuple[Deme, ...] = tuple(demes)
        self.t0 = t0
        self.sampling_time = sampling_time
        self._sizes: Dict[int, Dict[Deme, int]] = {}
        # t -> dest -> {source: count}, insertion order follows deme order
        self._inflows: Dict[int, Dict[Deme, Dict[Deme, int]]] = {}

    # ── recorders (ForwardSimulator) ─────────────────────────────────

    def _set_size(self, x: Deme, t: int, n: int) -> None:
        if n > 0:
            self._sizes.setdefault(t, {})[x] = int(n)

    def _add_flow(self, t: int, x: Deme, y: Deme, n: int) -> None:
        if n <= 0:
            return
        dest = self._inflows.setdefault(t, {}).setdefault(y, {})
        dest[x] = dest.get(x, 0) + int(n)

    # ── queries ──────────────────────────────────────────────────────

    def N(self, x: Deme, t: int) -> int:
        return self._sizes.get(t, {}).get(x, 0)

    def occupied(self, t: int) -> List[Deme]:
        """Demes with N > 0 at time t, in deme enumeration order."""
        sizes = self._sizes.get(t, {})
        return [x for x in self.demes if sizes.get(x, 0) > 0]

    def total_size(self, t: int) -> int:
        return sum(self._sizes.get(t, {}).values())

    def flow(self, t: int, x: Deme, y: Deme) -> int:
        return self._inflows.get(t, {}).get(y, {}).get(x, 0)

    def inflows(self, t: int, y: Deme) -> Dict[Deme, int]:
        """Source deme -> migrant count for everything arriving in y at t+1."""
        return dict(self._inflows.get(t, {}).get(y, {}))

    def outflow_total(self, t: int, x: Deme) -> int:
        return sum(src.get(x, 0) for src in self._inflows.get(t, {}).values())

    @property
    def times(self) -> range:
        return range(self.t0, self.sampling_time + 1)

    def summary(self) -> str:
        """Human-readable population totals per generation."""
        lines = [f"DemographicHistory: {len(self.demes)} demes, "
                 f"t={self.t0}..{self.sampling_time}"]
        for t in self.times:
            lines.append(
                f"  t={t}: N={self.total_size(t)} "
                f"occupied={len(self.occupied(t))}"
            )
        return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════
# FOREST
# ═══════════════════════════════════════════════════════════════════════

class Forest:
    """Deme -> list of Trees currently located there.

    Iteration is over demes in sorted order so that every walk over a
    forest is independent of insertion history.
    """

    def __init__(self, items: Optional[Iterable[Tuple[Deme, Tree]]] = None):
        self._trees: Dict[Deme, List[Tree]] = {}
        if items is not None:
            for x, tree in items:
                self.insert(x, tree)

    def insert(self, x: Deme, tree: Tree) -> None:
        self._trees.setdefault(x, []).append(tree)

    def extend(self, x: Deme, trees: Iterable[Tree]) -> None:
        for tree in trees:
            self.insert(x, tree)

    def trees_at(self, x: Deme) -> List[Tree]:
        return self._trees.get(x, [])

    def set_trees(self, x: Deme, trees: List[Tree]) -> None:
        if trees:
            self._trees[x] = trees
        else:
            self._trees.pop(x, None)

    def clear(self) -> None:
        self._trees.clear()

    def positions(self) -> List[Deme]:
        return sorted(self._trees)

    @property
    def n_trees(self) -> int:
        return sum(len(v) for v in self._trees.values())

    def trees(self) -> Iterator[Tree]:
        for x in self.positions():
            yield from self._trees[x]

    def copy(self) -> 'Forest':
        """Independent working copy.

        Each tree is shallow-copied, so list trees can be extended without
        touching the original and immutable trees (ints, tuples) pass through.
        """
        out = Forest()
        for x, trees in self._trees.items():
            out._trees[x] = [copy.copy(t) for t in trees]
        return out

    def __iter__(self) -> Iterator[Tuple[Deme, List[Tree]]]:
        for x in self.positions():
            yield x, self._trees[x]

    def __len__(self) -> int:
        return len(self._trees)

    def __contains__(self, x: object) -> bool:
        return x in self._trees

    def __repr__(self) -> str:
        return f"Forest(positions={len(self)}, trees={self.n_trees})"
