"""Fuzzy partitions of sampled demes and their random coarsening.

Core classes:
  - FuzzyPartition: deme -> cluster-membership coefficients
  - RestrictedGrowthString: canonical set-partition labelling
  - PartitionSampler: random coarsening of n clusters into fewer blocks

Core functions:
  - fuzzify: coalesced Forest -> FuzzyPartition (one cluster per tree)
  - fuzzify_frequencies: observed allele frequencies -> FuzzyPartition
    (one cluster per allele)
  - stirling2, bell: exact set-partition counts, memoised

Block-count prior of PartitionSampler, for n clusters:
    P(K = k) ∝ k^n / (k! · Bell(n) · e),    k = 1..n
(Dobinski's formula makes the untruncated weights sum to one.)
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Dict, Hashable, Iterable, List, Mapping, Sequence, Tuple

import numpy as np
from scipy.special import gammaln

from iddc_abc.exceptions import DistanceUndefined
from iddc_abc.types import Deme, Forest


# ═══════════════════════════════════════════════════════════════════════
# FUZZY PARTITION
# ═══════════════════════════════════════════════════════════════════════

class FuzzyPartition:
    """Membership coefficients of each deme in each cluster.

    Every deme carries a vector of length n_clusters with entries in
    [0, 1]. Partitions built by fuzzify() have rows summing to 1.
    """

    def __init__(self, coefficients: Mapping[Deme, Sequence[float]]):
        rows = {x: np.array(v, dtype=np.float64) for x, v in coefficients.items()}
        lengths = {len(v) for v in rows.values()}
        if len(lengths) > 1:
            raise ValueError(
                f"all demes need the same number of clusters, got {sorted(lengths)}"
            )
        for x, v in rows.items():
            if np.any(v < -1e-12) or np.any(v > 1.0 + 1e-12):
                raise ValueError(f"coefficients of {x} must lie in [0, 1]")
        self._coeffs: Dict[Deme, np.ndarray] = {x: rows[x] for x in sorted(rows)}
        self._n_clusters = lengths.pop() if lengths else 0

    @property
    def n_clusters(self) -> int:
        return self._n_clusters

    @property
    def demes(self) -> List[Deme]:
        return list(self._coeffs)

    def coefficients(self, x: Deme) -> np.ndarray:
        return self._coeffs[x].copy()

    def as_matrix(self) -> Tuple[List[Deme], np.ndarray]:
        """(demes, (n_demes, n_clusters) coefficient matrix)."""
        if not self._coeffs:
            return [], np.zeros((0, self._n_clusters))
        return self.demes, np.vstack(list(self._coeffs.values()))

    def is_normalised(self, tol: float = 1e-9) -> bool:
        return all(abs(v.sum() - 1.0) <= tol for v in self._coeffs.values())

    def merge_clusters(self, rgs: 'RestrictedGrowthString') -> 'FuzzyPartition':
        """Sum the columns that share a block of `rgs`.

        Column i of this partition goes to block rgs[i] of the result,
        so the result has rgs.n_blocks clusters and row sums are kept.
        """
        if len(rgs) != self._n_clusters:
            raise ValueError(
                f"partition of {len(rgs)} items can't merge {self._n_clusters} clusters"
            )
        labels = np.array(list(rgs), dtype=np.intp)
        merged = {}
        for x, v in self._coeffs.items():
            out = np.zeros(rgs.n_blocks)
            np.add.at(out, labels, v)
            merged[x] = np.minimum(out, 1.0)
        return FuzzyPartition(merged)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FuzzyPartition):
            return NotImplemented
        return (self.demes == other.demes
                and all(np.array_equal(self._coeffs[x], other._coeffs[x])
                        for x in self._coeffs))

    def __repr__(self) -> str:
        return f"FuzzyPartition(demes={len(self._coeffs)}, clusters={self._n_clusters})"

    def __str__(self) -> str:
        lines = [repr(self)]
        for x, v in self._coeffs.items():
            lines.append(f"  {x}: " + " ".join(f"{c:.3f}" for c in v))
        return "\n".join(lines)


def fuzzify(forest: Forest, sampling_positions: Iterable[Deme]) -> FuzzyPartition:
    """Turn a coalesced forest into memberships of the sampled demes.

    Each surviving tree is a cluster. Deme x's coefficient in cluster c
    is the fraction of x's sampled gene copies found in tree c.

    Raises:
        DistanceUndefined: A sampled deme has no copy in any tree.
        ValueError: A tree holds a deme outside sampling_positions.
    """
    trees = list(forest.trees())
    counts = {x: np.zeros(len(trees)) for x in sampling_positions}
    for c, tree in enumerate(trees):
        for x in tree:
            if x not in counts:
                raise ValueError(f"tree holds {x}, which is not a sampling position")
            counts[x][c] += 1.0

    for x, v in counts.items():
        total = v.sum()
        if total <= 0:
            raise DistanceUndefined(f"no sampled lineage counted at {x}")
        v /= total
    return FuzzyPartition(counts)


def fuzzify_frequencies(
    frequencies: Mapping[Deme, Mapping[Hashable, float]],
) -> FuzzyPartition:
    """Observed-data fuzzification: one cluster per allele.

    Args:
        frequencies: deme -> {allele: relative frequency}, missing data
            already discarded.

    Returns:
        FuzzyPartition whose clusters are the alleles seen anywhere, in
        sorted allele order.
    """
    alleles = sorted({a for freqs in frequencies.values() for a in freqs})
    column = {a: i for i, a in enumerate(alleles)}
    coeffs = {}
    for x, freqs in frequencies.items():
        v = np.zeros(len(alleles))
        for a, f in freqs.items():
            v[column[a]] = f
        coeffs[x] = v
    return FuzzyPartition(coeffs)


# ═══════════════════════════════════════════════════════════════════════
# RESTRICTED GROWTH STRINGS
# ═══════════════════════════════════════════════════════════════════════

class RestrictedGrowthString(Sequence[int]):
    """Set partition of items 0..n-1 as block ids in first-appearance order.

    rgs[i] is the block of item i; rgs[0] == 0 and every id is at most
    one more than the largest id before it.
    """

    def __init__(self, blocks: Iterable[int]):
        seq = tuple(int(b) for b in blocks)
        highest = -1
        for i, b in enumerate(seq):
            if b < 0 or b > highest + 1:
                raise ValueError(
                    f"not a restricted growth string: item {i} has block {b} "
                    f"after max block {highest}"
                )
            highest = max(highest, b)
        self._seq = seq
        self._n_blocks = highest + 1

    @classmethod
    def from_labels(cls, labels: Iterable[Hashable]) -> 'RestrictedGrowthString':
        """Canonicalise arbitrary block labels (e.g. [3, 1, 3] -> [0, 1, 0])."""
        ids: Dict[Hashable, int] = {}
        out = []
        for label in labels:
            if label not in ids:
                ids[label] = len(ids)
            out.append(ids[label])
        return cls(out)

    @property
    def n_blocks(self) -> int:
        return self._n_blocks

    def blocks(self) -> List[List[int]]:
        """Items grouped by block id."""
        out: List[List[int]] = [[] for _ in range(self._n_blocks)]
        for i, b in enumerate(self._seq):
            out[b].append(i)
        return out

    def __getitem__(self, i):
        return self._seq[i]

    def __len__(self) -> int:
        return len(self._seq)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RestrictedGrowthString):
            return self._seq == other._seq
        if isinstance(other, (list, tuple)):
            return self._seq == tuple(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._seq)

    def __repr__(self) -> str:
        return f"RestrictedGrowthString({list(self._seq)})"


# ═══════════════════════════════════════════════════════════════════════
# SET-PARTITION COUNTS
# ═══════════════════════════════════════════════════════════════════════

# Row n holds S(n, 0..n); rows are appended on demand and never recomputed
_STIRLING_ROWS: List[List[int]] = [[1]]


def _stirling_row(n: int) -> List[int]:
    while len(_STIRLING_ROWS) <= n:
        m = len(_STIRLING_ROWS)
        prev = _STIRLING_ROWS[-1]
        row = [0] * (m + 1)
        for k in range(1, m + 1):
            # S(m, k) = k·S(m-1, k) + S(m-1, k-1)
            row[k] = k * (prev[k] if k < m else 0) + prev[k - 1]
        _STIRLING_ROWS.append(row)
    return _STIRLING_ROWS[n]


def stirling2(n: int, k: int) -> int:
    """Stirling number of the second kind: partitions of n items into k blocks."""
    if n < 0 or k < 0 or k > n:
        return 0
    return _stirling_row(n)[k]


@lru_cache(maxsize=None)
def bell(n: int) -> int:
    """Bell number: all partitions of n items."""
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")
    return sum(_stirling_row(n))


# ═══════════════════════════════════════════════════════════════════════
# PARTITION SAMPLER
# ═══════════════════════════════════════════════════════════════════════

class PartitionSampler:
    """Random coarsening of n clusters.

    The block-count weights for a given n are computed the first time
    that n is requested and kept in `_weights` for the sampler's lifetime.
    One sampler can serve every locus of every replicate.
    """

    def __init__(self):
        self._weights: Dict[int, np.ndarray] = {}

    @staticmethod
    def log_block_count_pdf(k: int, n: int) -> float:
        """log of k^n / (k! · Bell(n) · e)."""
        return n * math.log(k) - float(gammaln(k + 1)) - math.log(bell(n)) - 1.0

    def block_count_weights(self, n: int) -> np.ndarray:
        """P(K = k) for k = 1..n (index k-1), normalised."""
        if n < 1:
            raise ValueError(f"need at least one cluster, got n={n}")
        w = self._weights.get(n)
        if w is None:
            logw = np.array([self.log_block_count_pdf(k, n) for k in range(1, n + 1)])
            w = np.exp(logw - logw.max())
            w /= w.sum()
            w.flags.writeable = False
            self._weights[n] = w
        return w

    @property
    def cached_sizes(self) -> List[int]:
        return sorted(self._weights)

    def sample(self, n: int, rng: np.random.Generator) -> RestrictedGrowthString:
        """Draw a coarsening of n clusters.

        K ~ block-count prior, then each cluster picks one of K blocks
        uniformly; labels are canonicalised. n == 1 always yields [0] and
        draws nothing from rng.
        """
        if n < 1:
            raise ValueError(f"need at least one cluster, got n={n}")
        if n == 1:
            return RestrictedGrowthString([0])
        w = self.block_count_weights(n)
        K = 1 + int(rng.choice(n, p=w))
        labels = rng.integers(0, K, size=n)
        return RestrictedGrowthString.from_labels(labels.tolist())
