"""Forward demographic simulation of a spatial expansion.

Discrete generations t = t0 … sampling_time on the landscape demes:
  1. Expected offspring at each occupied deme (Beverton-Holt):
        g(x, t) = N(x, t)·(1 + r) / (1 + r·N(x, t)/k)
  2. Realised offspring pool ~ Poisson(g(x, t))
  3. Each offspring disperses independently following the replicate's
     TransitionKernelCache; arrivals make up N(·, t+1) and are recorded
     in Flow(t, x -> ·)

The pool of a deme is dispersed with one multinomial draw
(TransitionKernelCache.disperse), not one sample() call per offspring.
The destination law is the same, but the generator advances differently,
so histories are reproducible against this simulator only, not against a
per-offspring loop fed the same seed.

Occupied demes are visited in landscape enumeration order so a replicate
is reproducible from (seed, parameter draw) alone.

Failure modes (abort the replicate, never the inference loop):
  - every deme empty before sampling_time      -> SimulationDeadEnd
  - a sampled deme empty at sampling_time      -> SimulationDeadEnd
  - growth parameters outside their domain     -> DomainViolation
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np

from iddc_abc.exceptions import DomainViolation, SimulationDeadEnd
from iddc_abc.spatial import TransitionKernelCache
from iddc_abc.types import Deme, DemographicHistory, KernelParams

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# GROWTH
# ═══════════════════════════════════════════════════════════════════════

def beverton_holt(N, r: float, k: float):
    """Expected next-generation size under saturating growth.

    Equals N·(1+r) at low density and tends to k·(1+r)/r as N grows.
    Accepts scalars or arrays.
    """
    return N * (1.0 + r) / (1.0 + r * N / k)


def validate_growth(params: KernelParams) -> None:
    """Raise DomainViolation for growth parameters outside their domain."""
    if not (params.k > 0 and np.isfinite(params.k)):
        raise DomainViolation(f"carrying capacity k must be > 0, got {params.k}")
    if not (params.r >= 0 and np.isfinite(params.r)):
        raise DomainViolation(f"growth rate r must be >= 0, got {params.r}")
    if params.n0 < 1:
        raise DomainViolation(f"founder size n0 must be >= 1, got {params.n0}")


# ═══════════════════════════════════════════════════════════════════════
# FORWARD SIMULATOR
# ═══════════════════════════════════════════════════════════════════════

class ForwardSimulator:
    """Grow and disperse a population from its introduction to sampling.

    Per generation the generator is consumed as: one Poisson draw per
    occupied deme, then one multinomial over destinations for a non-empty
    pool, deme by deme in enumeration order.

    Args:
        x0: Introduction deme.
        t0: Introduction time (first generation).
        sampling_time: Generation at which genetic samples were taken.
        params: Parameter draw of the replicate.
        transitions: Dispersal laws of the replicate (same params).
    """

    def __init__(self, x0: Deme, t0: int, sampling_time: int,
                 params: KernelParams, transitions: TransitionKernelCache):
        if sampling_time <= t0:
            raise ValueError(
                f"sampling_time ({sampling_time}) must be > introduction time ({t0})"
            )
        validate_growth(params)
        # raises KeyError for a foreign deme
        transitions.distances.index(x0)
        self.x0 = x0
        self.t0 = int(t0)
        self.sampling_time = int(sampling_time)
        self.params = params
        self.transitions = transitions

    def simulate(self, rng: np.random.Generator,
                 sample_demes: Optional[Iterable[Deme]] = None,
                 ) -> DemographicHistory:
        """Run the forward pass and return the completed history.

        Args:
            rng: The replicate's random generator.
            sample_demes: Demes that must be populated at sampling_time.

        Raises:
            SimulationDeadEnd: Extinction before sampling_time, or an
                empty sampled deme at sampling_time.
        """
        demes = self.transitions.distances.demes
        r, k = self.params.r, self.params.k
        history = DemographicHistory(demes, self.t0, self.sampling_time)
        history._set_size(self.x0, self.t0, self.params.n0)

        for t in range(self.t0, self.sampling_time):
            arrivals = np.zeros(len(demes), dtype=np.int64)
            for x in history.occupied(t):
                g = beverton_holt(history.N(x, t), r, k)
                pool = int(rng.poisson(g))
                if pool == 0:
                    continue
                counts = self.transitions.disperse(x, pool, rng)
                for j in np.flatnonzero(counts):
                    history._add_flow(t, x, demes[j], int(counts[j]))
                arrivals += counts

            if arrivals.sum() == 0:
                raise SimulationDeadEnd(
                    f"population went extinct at t={t + 1}, "
                    f"before sampling time {self.sampling_time}"
                )
            for j in np.flatnonzero(arrivals):
                history._set_size(demes[j], t + 1, int(arrivals[j]))

        if sample_demes is not None:
            empty = [x for x in sample_demes
                     if history.N(x, self.sampling_time) == 0]
            if empty:
                raise SimulationDeadEnd(
                    f"{len(empty)} sampled deme(s) unpopulated at sampling "
                    f"time {self.sampling_time}, e.g. {empty[0]}"
                )

        logger.debug(
            "forward pass done: N=%d over %d demes at t=%d (%d laws cached)",
            history.total_size(self.sampling_time),
            len(history.occupied(self.sampling_time)),
            self.sampling_time, self.transitions.n_cached,
        )
        return history
