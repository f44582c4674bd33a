"""ABC reference table: prior-predictive draws and their outcomes.

Each draw is run by run_replicate(), which turns replicate-level failures
into an explicit ReplicateOutcome instead of letting them escape. The
table keeps every draw, failed or not, so acceptance rates per failure
kind can be reported; only successful draws carry a summary and take
part in distance computation.

Usage:
    rngs = create_rng_streams(config.simulation.seed, n)
    table = ReferenceTable()
    table.sample_prior_predictive(model, prior, n, rngs)
    d = table.compute_distance_to(model.observed_summary(), distance_fn)

    # validation against data simulated at known parameters
    pods = sample_pseudo_observed(model, true_params, 10, rngs)
    d_pod = table.compute_distance_to(pods[0].summary, distance_fn)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from iddc_abc.exceptions import (
    DistanceUndefined,
    DomainViolation,
    ReplicateFailure,
    SimulationDeadEnd,
    UnresolvedCoalescence,
)
from iddc_abc.partition import FuzzyPartition
from iddc_abc.rng import get_replicate_rng
from iddc_abc.types import KernelParams

logger = logging.getLogger(__name__)

DistanceFn = Callable[[FuzzyPartition, FuzzyPartition], float]


# ═══════════════════════════════════════════════════════════════════════
# REPLICATE OUTCOMES
# ═══════════════════════════════════════════════════════════════════════

class ReplicateOutcome(IntEnum):
    """How a single replicate ended."""
    SUCCESS                = 0
    DOMAIN_VIOLATION       = 1   # parameters outside kernel/growth domain
    SIMULATION_DEAD_END    = 2   # extinction, or a sampled deme left empty
    UNRESOLVED_COALESCENCE = 3   # > 1 lineage at the introduction time
    DISTANCE_UNDEFINED     = 4   # sampled deme without counted lineage


_FAILURE_OUTCOMES = (
    (DomainViolation, ReplicateOutcome.DOMAIN_VIOLATION),
    (SimulationDeadEnd, ReplicateOutcome.SIMULATION_DEAD_END),
    (UnresolvedCoalescence, ReplicateOutcome.UNRESOLVED_COALESCENCE),
    (DistanceUndefined, ReplicateOutcome.DISTANCE_UNDEFINED),
)


def outcome_of(exc: ReplicateFailure) -> ReplicateOutcome:
    """Map a replicate failure to its outcome kind."""
    for cls, outcome in _FAILURE_OUTCOMES:
        if isinstance(exc, cls):
            return outcome
    raise TypeError(f"no outcome registered for {type(exc).__name__}")


@dataclass
class ReplicateResult:
    """One row of the reference table."""
    replicate_id: int
    params: KernelParams
    outcome: ReplicateOutcome
    summary: Optional[List[FuzzyPartition]] = None   # per locus, SUCCESS only
    message: str = ''

    @property
    def ok(self) -> bool:
        return self.outcome is ReplicateOutcome.SUCCESS


def run_replicate(
    model: Callable[[np.random.Generator, KernelParams], List[FuzzyPartition]],
    params: KernelParams,
    rng: np.random.Generator,
    replicate_id: int = 0,
) -> ReplicateResult:
    """Run the model once; replicate failures become an outcome.

    Anything that is not a ReplicateFailure propagates.
    """
    try:
        summary = model(rng, params)
    except ReplicateFailure as exc:
        outcome = outcome_of(exc)
        logger.debug("replicate %d: %s (%s)", replicate_id, outcome.name, exc)
        return ReplicateResult(replicate_id, params, outcome, message=str(exc))
    return ReplicateResult(replicate_id, params, ReplicateOutcome.SUCCESS, summary)


# ═══════════════════════════════════════════════════════════════════════
# REFERENCE TABLE
# ═══════════════════════════════════════════════════════════════════════

class ReferenceTable:
    """(params, summary) pairs from prior-predictive simulation."""

    def __init__(self):
        self.results: List[ReplicateResult] = []

    def __len__(self) -> int:
        return len(self.results)

    def sample_prior_predictive(
        self,
        model: Callable[[np.random.Generator, KernelParams], List[FuzzyPartition]],
        prior: Callable[[np.random.Generator], KernelParams],
        n: int,
        rngs: Dict[str, np.random.Generator],
    ) -> List[ReplicateResult]:
        """Append n draws to the table.

        Parameters come from rngs['prior']; replicate i runs on its own
        'replicate_i' stream, with ids continuing after rows already in
        the table.

        Args:
            model: (rng, params) -> per-locus FuzzyPartitions.
            prior: (rng) -> KernelParams.
            n: Number of draws.
            rngs: Streams from create_rng_streams(); must hold a stream
                for every new replicate id.

        Returns:
            The n new rows.

        Raises:
            KeyError: A replicate id has no RNG stream.
        """
        if n < 0:
            raise ValueError(f"n must be >= 0, got {n}")
        start = len(self.results)
        if n > 0:
            # fail before drawing anything if streams are missing
            get_replicate_rng(rngs, start + n - 1)

        new_rows = []
        for i in range(start, start + n):
            params = prior(rngs['prior'])
            row = run_replicate(model, params, get_replicate_rng(rngs, i), i)
            new_rows.append(row)
        self.results.extend(new_rows)

        n_ok = sum(1 for row in new_rows if row.ok)
        logger.info("reference table: %d/%d draws accepted (%d total rows)",
                    n_ok, n, len(self.results))
        return new_rows

    def accepted(self) -> List[ReplicateResult]:
        return [row for row in self.results if row.ok]

    def outcome_counts(self) -> Dict[ReplicateOutcome, int]:
        """Rows per outcome; every outcome kind is present."""
        counts = {outcome: 0 for outcome in ReplicateOutcome}
        for row in self.results:
            counts[row.outcome] += 1
        return counts

    def accepted_params(self, names: Sequence[str] = ('r', 'k', 'n0', 'a')) -> np.ndarray:
        """(n_accepted, len(names)) matrix of accepted parameter values."""
        rows = self.accepted()
        out = np.empty((len(rows), len(names)), dtype=np.float64)
        for i, row in enumerate(rows):
            out[i] = [getattr(row.params, name) for name in names]
        return out

    def compute_distance_to(
        self,
        observed: Sequence[FuzzyPartition],
        distance_fn: DistanceFn,
    ) -> np.ndarray:
        """Per-locus distance of every accepted draw to the observed summary.

        Returns:
            (n_accepted, n_loci) array; distance_fn(simulated, observed)
            fills cell (i, j).

        Raises:
            ValueError: Locus counts differ between a draw and `observed`.
        """
        rows = self.accepted()
        out = np.empty((len(rows), len(observed)), dtype=np.float64)
        for i, row in enumerate(rows):
            if len(row.summary) != len(observed):
                raise ValueError(
                    f"replicate {row.replicate_id} has {len(row.summary)} loci, "
                    f"observed has {len(observed)}"
                )
            for j, (sim, obs) in enumerate(zip(row.summary, observed)):
                out[i, j] = distance_fn(sim, obs)
        return out

    def summary(self) -> str:
        lines = [f"ReferenceTable: {len(self.results)} draws"]
        for outcome, count in self.outcome_counts().items():
            lines.append(f"  {outcome.name}: {count}")
        return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════
# PSEUDO-OBSERVED DATASETS
# ═══════════════════════════════════════════════════════════════════════

def sample_pseudo_observed(
    model: Callable[[np.random.Generator, KernelParams], List[FuzzyPartition]],
    params: KernelParams,
    n: int,
    rngs: Dict[str, np.random.Generator],
) -> List[ReplicateResult]:
    """Simulate n pseudo-observed datasets at known parameters.

    All runs share rngs['observed'], so pseudo-observed data never
    consume the prior or replicate streams. Failed runs are dropped; the
    result may hold fewer than n rows. Each successful row's summary can
    stand in for model.observed_summary() in compute_distance_to() to
    check how well the table recovers `params`.

    Raises:
        KeyError: rngs has no 'observed' stream.
    """
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")
    rng = rngs['observed']
    pods = []
    for i in range(n):
        row = run_replicate(model, params, rng, i)
        if row.ok:
            pods.append(row)
        else:
            logger.warning("pseudo-observed dataset %d dropped: %s",
                           i, row.outcome.name)
    logger.info("%d/%d pseudo-observed datasets simulated", len(pods), n)
    return pods
