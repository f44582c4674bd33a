"""Genetic sample: diploid genotypes of individuals at sampling demes.

Exposes what the coalescent and the observed-data summary need:
  - sampling points and individuals per deme
  - per-locus Forest templates (one single-leaf tree per allele copy)
  - allele frequencies (missing data discarded) and allelic richness

Allele states are positive integers (e.g. microsatellite repeat counts);
None or a state <= 0 marks missing data. Reading sample files is left to
the caller; datasets are assembled from Individual records.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from iddc_abc.spatial import Landscape
from iddc_abc.types import Deme, Forest

Genotype = Tuple[Optional[int], Optional[int]]


def is_missing(allele: Optional[int]) -> bool:
    return allele is None or allele <= 0


@dataclass(frozen=True)
class Individual:
    """One sampled diploid individual."""
    deme: Deme
    genotype: Mapping[str, Genotype] = field(default_factory=dict)
    name: str = ''

    def alleles(self, locus: str) -> Genotype:
        return self.genotype.get(locus, (None, None))


class GeneticDataset:
    """Individuals grouped by sampling deme."""

    def __init__(self, individuals: Iterable[Individual],
                 loci: Optional[Sequence[str]] = None):
        self.individuals: Tuple[Individual, ...] = tuple(individuals)
        if loci is None:
            loci = sorted({loc for ind in self.individuals for loc in ind.genotype})
        self.loci: Tuple[str, ...] = tuple(loci)
        self._by_deme: Dict[Deme, List[Individual]] = {}
        for ind in self.individuals:
            self._by_deme.setdefault(ind.deme, []).append(ind)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> 'GeneticDataset':
        """Build from plain dicts::

            {'name': 'ind1', 'lat': 44.1, 'lon': 0.3,
             'genotype': {'locus_1': [112, 116], 'locus_2': [None, 98]}}
        """
        individuals = []
        for rec in records:
            genotype = {
                locus: (pair[0], pair[1])
                for locus, pair in rec.get('genotype', {}).items()
            }
            individuals.append(Individual(
                deme=(float(rec['lat']), float(rec['lon'])),
                genotype=genotype,
                name=str(rec.get('name', '')),
            ))
        return cls(individuals)

    # ── sampling design ──────────────────────────────────────────────

    def sampling_points(self) -> List[Deme]:
        return sorted(self._by_deme)

    def individuals_at(self, x: Deme) -> List[Individual]:
        return list(self._by_deme.get(x, []))

    def n_individuals(self, x: Deme) -> int:
        return len(self._by_deme.get(x, []))

    def sample_sizes(self) -> Dict[Deme, int]:
        """Gene copies sampled per deme (two per diploid individual)."""
        return {x: 2 * len(inds) for x, inds in sorted(self._by_deme.items())}

    def reproject(self, landscape: Landscape) -> 'GeneticDataset':
        """Copy of the dataset with every individual snapped to its nearest deme."""
        return GeneticDataset(
            (replace(ind, deme=landscape.reproject(ind.deme))
             for ind in self.individuals),
            loci=self.loci,
        )

    # ── coalescent templates ─────────────────────────────────────────

    def make_forest(self, locus: str) -> Forest:
        """One single-leaf tree per non-missing allele copy at `locus`."""
        if locus not in self.loci:
            raise KeyError(f"unknown locus '{locus}'")
        forest = Forest()
        for x in self.sampling_points():
            for ind in self._by_deme[x]:
                for allele in ind.alleles(locus):
                    if not is_missing(allele):
                        forest.insert(x, [x])
        return forest

    def make_forests(self) -> Dict[str, Forest]:
        return {locus: self.make_forest(locus) for locus in self.loci}

    # ── observed summaries ───────────────────────────────────────────

    def frequencies_discarding_na(self, locus: str) -> Dict[Deme, Dict[int, float]]:
        """deme -> {allele: relative frequency}; demes without data omitted."""
        out: Dict[Deme, Dict[int, float]] = {}
        for x in self.sampling_points():
            counts: Counter = Counter()
            for ind in self._by_deme[x]:
                for allele in ind.alleles(locus):
                    if not is_missing(allele):
                        counts[allele] += 1
            total = sum(counts.values())
            if total > 0:
                out[x] = {a: n / total for a, n in sorted(counts.items())}
        return out

    def allelic_richness(self, locus: str) -> int:
        """Number of distinct non-missing alleles at `locus`."""
        return len({
            allele
            for ind in self.individuals
            for allele in ind.alleles(locus)
            if not is_missing(allele)
        })

    def __repr__(self) -> str:
        return (f"GeneticDataset(individuals={len(self.individuals)}, "
                f"demes={len(self._by_deme)}, loci={len(self.loci)})")
