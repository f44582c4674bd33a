"""Generative model and prior for one IDDC-ABC inference run.

The ABC machinery consumes two callables:
  - Prior:            (rng) -> KernelParams
  - GenerativeModel:  (rng, params) -> [FuzzyPartition per locus]

GenerativeModel holds the replicate-independent state (distance table,
reprojected dataset, per-locus forest templates, partition sampler) and
builds everything replicate-scoped afresh on each call.

Usage:
    config = default_config()
    model = GenerativeModel(landscape, dataset, config)
    prior = Prior(config.prior, config.dispersal.kernel)
    rngs = create_rng_streams(config.simulation.seed, 1)
    summary = model(rngs['replicate_0'], prior(rngs['prior']))
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np

from iddc_abc.coalescence import CoalescenceProcess, UnresolvedPolicy
from iddc_abc.config import ModelConfig, PriorSection, default_config, validate_config
from iddc_abc.demography import ForwardSimulator
from iddc_abc.genetics import GeneticDataset
from iddc_abc.kernels import get_kernel
from iddc_abc.partition import (
    FuzzyPartition,
    PartitionSampler,
    fuzzify,
    fuzzify_frequencies,
)
from iddc_abc.spatial import DistanceTable, Landscape, TransitionKernelCache
from iddc_abc.types import Deme, Forest, KernelParams

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# PRIOR
# ═══════════════════════════════════════════════════════════════════════

class Prior:
    """Independent uniform prior over the parameters of one draw.

    Draw order: k (integer, bounds inclusive), r, a, then b for the
    logistic kernel. n0 is fixed.
    """

    def __init__(self, section: PriorSection, kernel: str = 'gaussian'):
        self.section = section
        self.kernel = get_kernel(kernel)

    def __call__(self, rng: np.random.Generator) -> KernelParams:
        s = self.section
        k = int(rng.integers(s.k_range[0], s.k_range[1] + 1))
        r = float(rng.uniform(*s.r_range))
        a = float(rng.uniform(*s.a_range))
        b = None
        if 'b' in self.kernel.param_names:
            b = float(rng.uniform(*s.b_range))
        return KernelParams(r=r, k=k, n0=s.n0, a=a, b=b)


# ═══════════════════════════════════════════════════════════════════════
# GENERATIVE MODEL
# ═══════════════════════════════════════════════════════════════════════

class GenerativeModel:
    """Simulates per-locus fuzzy partitions of the sampled demes.

    Args:
        landscape: Demes the population may occupy.
        dataset: Observed sample; individuals are snapped to their
            nearest deme.
        config: Model configuration; defaults when omitted.

    Raises:
        ValueError: If config fails validate_config().
    """

    def __init__(self, landscape: Landscape, dataset: GeneticDataset,
                 config: Optional[ModelConfig] = None):
        self.config = config if config is not None else default_config()
        validate_config(self.config)
        sim = self.config.simulation

        self.landscape = landscape
        self.dataset = dataset.reproject(landscape)
        self.distances = DistanceTable.from_landscape(landscape)
        self.kernel = get_kernel(self.config.dispersal.kernel)
        self.x0: Deme = landscape.reproject((sim.introduction_lat, sim.introduction_lon))
        self.t0 = sim.introduction_time
        self.sampling_time = sim.sampling_time
        self.policy = UnresolvedPolicy(self.config.coalescence.unresolved)

        self.sampling_points: List[Deme] = self.dataset.sampling_points()
        # read-only templates, copied per replicate
        self.templates: Dict[str, Forest] = self.dataset.make_forests()
        self.sampler = PartitionSampler()

        logger.info(
            "model: %d demes, %d sampling points, %d loci, x0=%s, t=%d..%d",
            landscape.n_demes, len(self.sampling_points), len(self.templates),
            self.x0, self.t0, self.sampling_time,
        )

    @property
    def loci(self) -> List[str]:
        return list(self.templates)

    def __call__(self, rng: np.random.Generator,
                 params: KernelParams) -> List[FuzzyPartition]:
        """Run one replicate.

        Raises:
            ReplicateFailure: Any subclass; the replicate is lost.
        """
        transitions = TransitionKernelCache(self.distances, self.kernel, params)
        simulator = ForwardSimulator(self.x0, self.t0, self.sampling_time,
                                     params, transitions)
        history = simulator.simulate(rng, sample_demes=self.sampling_points)
        process = CoalescenceProcess(history, policy=self.policy)

        summary = []
        for locus, template in self.templates.items():
            forest = process.run(template.copy(), rng)
            partition = fuzzify(forest, template.positions())
            if partition.n_clusters > 1 and self.config.partition.coarsen:
                rgs = self.sampler.sample(partition.n_clusters, rng)
                partition = partition.merge_clusters(rgs)
            summary.append(partition)
        return summary

    # ── observed side ────────────────────────────────────────────────

    def fuzzify_data(self, locus: str) -> FuzzyPartition:
        """Observed fuzzy partition of `locus`: one cluster per allele."""
        if locus not in self.templates:
            raise KeyError(f"unknown locus '{locus}'")
        return fuzzify_frequencies(self.dataset.frequencies_discarding_na(locus))

    def observed_summary(self) -> List[FuzzyPartition]:
        """Observed counterpart of __call__, in the same locus order."""
        return [self.fuzzify_data(locus) for locus in self.templates]
