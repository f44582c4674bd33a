"""Landscape, distances and dispersal transition laws.

Core classes:
  - Landscape: ordered demes (cell centroids) + nearest-deme reprojection
  - DistanceTable: pairwise great-circle distances, built once, read-only
  - TransitionKernelCache: per-replicate, lazily built destination laws

Core functions:
  - haversine_km: geodesic distance between two points
  - compute_distance_matrix: (N, N) great-circle matrix
  - load_landscape_yaml / save_landscape_yaml: deme list I/O

The DistanceTable depends only on the landscape and is shared by every
replicate. A TransitionKernelCache depends on the parameter draw and is
created fresh for each replicate.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np

from iddc_abc.exceptions import DomainViolation
from iddc_abc.kernels import DispersalKernel
from iddc_abc.types import Deme, KernelParams


# ═══════════════════════════════════════════════════════════════════════
# GEODESIC DISTANCE
# ═══════════════════════════════════════════════════════════════════════

_EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1, lon1, lat2, lon2):
    """Great-circle distance in km between (lat, lon) points.

    Args:
        lat1, lon1, lat2, lon2: Decimal degrees; scalars or broadcastable
            arrays.

    Returns:
        Distance in kilometres (float or ndarray).
    """
    d2r = np.pi / 180.0
    rlat1 = np.asarray(lat1) * d2r
    rlat2 = np.asarray(lat2) * d2r
    dlat = (np.asarray(lat2) - np.asarray(lat1)) * d2r
    dlon = (np.asarray(lon2) - np.asarray(lon1)) * d2r
    a = (np.sin(dlat / 2.0) ** 2
         + np.cos(rlat1) * np.cos(rlat2) * np.sin(dlon / 2.0) ** 2)
    a = np.clip(a, 0.0, 1.0)
    c = 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    return _EARTH_RADIUS_KM * c


def compute_distance_matrix(lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Pairwise great-circle distance matrix.

    Args:
        lats: (N,) deme latitudes.
        lons: (N,) deme longitudes.

    Returns:
        (N, N) symmetric distance matrix (km) with a zero diagonal.
    """
    lats = np.asarray(lats, dtype=np.float64)
    lons = np.asarray(lons, dtype=np.float64)
    dist = haversine_km(lats[:, None], lons[:, None], lats[None, :], lons[None, :])
    dist = np.asarray(dist, dtype=np.float64)
    # Exact symmetry regardless of floating evaluation order
    dist = np.triu(dist, 1)
    dist = dist + dist.T
    return dist


# ═══════════════════════════════════════════════════════════════════════
# LANDSCAPE
# ═══════════════════════════════════════════════════════════════════════

class Landscape:
    """Enumerable set of demes.

    Deme order is the enumeration order used everywhere downstream
    (distance rows, transition laws, forward iteration).
    """

    def __init__(self, demes: Iterable[Deme]):
        self.demes: Tuple[Deme, ...] = tuple(
            (float(lat), float(lon)) for lat, lon in demes
        )
        if not self.demes:
            raise ValueError("Landscape needs at least one deme")
        if len(set(self.demes)) != len(self.demes):
            raise ValueError("Landscape demes must be unique")
        self._lats = np.array([d[0] for d in self.demes])
        self._lons = np.array([d[1] for d in self.demes])

    @property
    def n_demes(self) -> int:
        return len(self.demes)

    def __contains__(self, x: object) -> bool:
        return x in self.demes

    def distance(self, x: Deme, y: Deme) -> float:
        return float(haversine_km(x[0], x[1], y[0], y[1]))

    def reproject(self, coord: Tuple[float, float]) -> Deme:
        """Snap an arbitrary (lat, lon) to the nearest deme."""
        d = haversine_km(coord[0], coord[1], self._lats, self._lons)
        return self.demes[int(np.argmin(d))]

    @classmethod
    def grid(cls, lats: Sequence[float], lons: Sequence[float]) -> 'Landscape':
        """Regular lat x lon grid, row-major (lat outer)."""
        return cls((lat, lon) for lat in lats for lon in lons)


# ═══════════════════════════════════════════════════════════════════════
# DISTANCE TABLE
# ═══════════════════════════════════════════════════════════════════════

class DistanceTable:
    """Deme -> distances to every deme, in landscape enumeration order."""

    def __init__(self, demes: Sequence[Deme], matrix: np.ndarray):
        matrix = np.array(matrix, dtype=np.float64)
        n = len(demes)
        if matrix.shape != (n, n):
            raise ValueError(
                f"distance matrix shape {matrix.shape} doesn't match {n} demes"
            )
        if not np.allclose(matrix, matrix.T):
            raise ValueError("distance matrix must be symmetric")
        matrix.flags.writeable = False
        self.demes: Tuple[Deme, ...] = tuple(demes)
        self.matrix = matrix
        self._index: Dict[Deme, int] = {x: i for i, x in enumerate(self.demes)}

    @classmethod
    def from_landscape(cls, landscape: Landscape) -> 'DistanceTable':
        lats = np.array([d[0] for d in landscape.demes])
        lons = np.array([d[1] for d in landscape.demes])
        return cls(landscape.demes, compute_distance_matrix(lats, lons))

    def __len__(self) -> int:
        return len(self.demes)

    def index(self, x: Deme) -> int:
        try:
            return self._index[x]
        except KeyError:
            raise KeyError(f"{x} is not a deme of this landscape") from None

    def distances_from(self, x: Deme) -> np.ndarray:
        return self.matrix[self.index(x)]

    def distance(self, x: Deme, y: Deme) -> float:
        return float(self.matrix[self.index(x), self.index(y)])


# ═══════════════════════════════════════════════════════════════════════
# TRANSITION KERNEL CACHE
# ═══════════════════════════════════════════════════════════════════════

class TransitionKernelCache:
    """Discrete dispersal laws, one per source deme, built on first use.

    law(x)[j] ∝ kernel.pdf(distance(x, demes[j]), params). Each law is
    built once and reused for the lifetime of the cache, which is the
    lifetime of one replicate.
    """

    def __init__(self, distances: DistanceTable, kernel: DispersalKernel,
                 params: KernelParams):
        kernel.validate(params)
        self.distances = distances
        self.kernel = kernel
        self.params = params
        self._laws: Dict[int, np.ndarray] = {}

    @property
    def n_cached(self) -> int:
        return len(self._laws)

    def distribution(self, x: Deme) -> np.ndarray:
        """Probability of landing in each deme when leaving x."""
        i = self.distances.index(x)
        law = self._laws.get(i)
        if law is None:
            weights = self.kernel.pdf(self.distances.matrix[i], self.params)
            total = float(np.sum(weights))
            if not (total > 0 and np.isfinite(total)):
                raise DomainViolation(
                    f"{self.kernel.name} kernel gives no usable weight from {x} "
                    f"(params={self.params.as_dict()})"
                )
            law = weights / total
            law.flags.writeable = False
            self._laws[i] = law
        return law

    def sample(self, x: Deme, rng: np.random.Generator) -> Deme:
        """Draw one destination deme for a unit leaving x."""
        law = self.distribution(x)
        return self.distances.demes[int(rng.choice(len(law), p=law))]

    def disperse(self, x: Deme, n: int, rng: np.random.Generator) -> np.ndarray:
        """Destination counts for n independent units leaving x.

        Same law as n calls to sample(), drawn as one multinomial.
        """
        return rng.multinomial(int(n), self.distribution(x))


# ═══════════════════════════════════════════════════════════════════════
# YAML I/O
# ═══════════════════════════════════════════════════════════════════════

def save_landscape_yaml(landscape: Landscape, path: str) -> None:
    """Save landscape demes to a YAML file."""
    import yaml

    data = {"demes": [[lat, lon] for lat, lon in landscape.demes]}
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def load_landscape_yaml(path: str) -> Landscape:
    """Load landscape demes from a YAML file.

    Expected layout::

        demes:
          - [44.0, 0.2]
          - [44.5, 0.2]
    """
    import yaml

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    demes: List[Deme] = []
    for entry in data.get("demes", []):
        if len(entry) != 2:
            raise ValueError(f"deme entries must be [lat, lon], got {entry}")
        demes.append((float(entry[0]), float(entry[1])))
    return Landscape(demes)
