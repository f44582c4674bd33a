"""Dispersal kernels: probability densities over distance.

Each kernel family exposes the same two capabilities:
  - validate(params): reject out-of-domain parameters (DomainViolation)
  - pdf(distance, params): density at distance(s) in km, vectorised

Kernels are selected at runtime by name through KERNELS / get_kernel(),
so the dispersal family is a configuration choice (dispersal.kernel).

Families:
  - Gaussian:  f(r) = 1/(π a²) · exp(-r²/a²)                         a > 0
  - Logistic:  f(r) = b / (2π a² Γ(2/b) Γ(1-2/b)) · 1/(1 + (r/a)^b)  a > 0, b > 2
    (fat-tailed; the 2D normalisation diverges for b <= 2)
"""

from __future__ import annotations

from typing import Dict, Tuple, Union

import numpy as np
from scipy.special import gamma

from iddc_abc.exceptions import DomainViolation
from iddc_abc.types import KernelParams

ArrayLike = Union[float, np.ndarray]


class DispersalKernel:
    """Interface shared by all kernel families."""

    name: str = ''
    param_names: Tuple[str, ...] = ()

    def validate(self, params: KernelParams) -> None:
        raise NotImplementedError

    def density(self, r: np.ndarray, params: KernelParams) -> np.ndarray:
        raise NotImplementedError

    def pdf(self, distance: ArrayLike, params: KernelParams) -> ArrayLike:
        """Density at `distance` (km). Raises DomainViolation if invalid."""
        self.validate(params)
        r = np.asarray(distance, dtype=np.float64)
        if np.any(r < 0) or np.any(~np.isfinite(r)):
            raise DomainViolation(
                f"{self.name} kernel: distances must be finite and >= 0"
            )
        out = self.density(r, params)
        if np.ndim(distance) == 0:
            return float(out)
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class GaussianKernel(DispersalKernel):
    name = 'gaussian'
    param_names = ('a',)

    def validate(self, params: KernelParams) -> None:
        if not (params.a > 0 and np.isfinite(params.a)):
            raise DomainViolation(f"gaussian kernel requires a > 0, got a={params.a}")

    def density(self, r: np.ndarray, params: KernelParams) -> np.ndarray:
        a = params.a
        return 1.0 / (np.pi * a * a) * np.exp(-(r * r) / (a * a))


class LogisticKernel(DispersalKernel):
    name = 'logistic'
    param_names = ('a', 'b')

    def validate(self, params: KernelParams) -> None:
        if not (params.a > 0 and np.isfinite(params.a)):
            raise DomainViolation(f"logistic kernel requires a > 0, got a={params.a}")
        if params.b is None or not params.b > 2:
            raise DomainViolation(f"logistic kernel requires b > 2, got b={params.b}")

    def density(self, r: np.ndarray, params: KernelParams) -> np.ndarray:
        a, b = params.a, params.b
        norm = b / (2.0 * np.pi * a * a * gamma(2.0 / b) * gamma(1.0 - 2.0 / b))
        return norm / (1.0 + np.power(r / a, b))


KERNELS: Dict[str, DispersalKernel] = {
    GaussianKernel.name: GaussianKernel(),
    LogisticKernel.name: LogisticKernel(),
}


def get_kernel(name: str) -> DispersalKernel:
    """Look up a kernel family by its configuration name."""
    try:
        return KERNELS[name]
    except KeyError:
        raise ValueError(
            f"Unknown dispersal kernel '{name}', expected one of {sorted(KERNELS)}"
        ) from None
