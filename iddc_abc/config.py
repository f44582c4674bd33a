"""Configuration system for IDDC-ABC.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → programmatic overrides

Sections map 1:1 to YAML top-level keys:

    simulation:
      seed: 42
      introduction_lat: 44.0
      introduction_lon: 0.2
      introduction_time: 2004
      sampling_time: 2008
      n_replicates: 20000
    dispersal:
      kernel: gaussian
    prior:
      n0: 8
      k_range: [1, 500]
      r_range: [1.0, 20.0]
      a_range: [100.0, 1000.0]
    coalescence:
      unresolved: keep_founders
    partition:
      coarsen: true
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from iddc_abc.coalescence import UnresolvedPolicy
from iddc_abc.kernels import KERNELS


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Introduction scenario and reference-table size."""
    seed: int = 42
    introduction_lat: float = 44.00    # reprojected to the nearest deme
    introduction_lon: float = 0.20
    introduction_time: int = 2004      # t0, first generation
    sampling_time: int = 2008          # generation of the genetic sample
    n_replicates: int = 20000          # prior-predictive draws


@dataclass
class DispersalSection:
    """Dispersal kernel family (see kernels.KERNELS)."""
    kernel: str = 'gaussian'


@dataclass
class PriorSection:
    """Prior over KernelParams. Ranges are (low, high), inclusive for k."""
    n0: int = 8                                    # founders, fixed
    k_range: Tuple[int, int] = (1, 500)            # carrying capacity, uniform int
    r_range: Tuple[float, float] = (1.0, 20.0)     # growth rate, uniform
    a_range: Tuple[float, float] = (100.0, 1000.0) # kernel scale (km), uniform
    b_range: Tuple[float, float] = (2.5, 10.0)     # logistic tail shape, uniform


@dataclass
class CoalescenceSection:
    """Backward process options."""
    unresolved: str = 'keep_founders'   # see coalescence.UnresolvedPolicy


@dataclass
class PartitionSection:
    """Simulated fuzzy-partition options."""
    coarsen: bool = True    # merge clusters via PartitionSampler when > 1


@dataclass
class ModelConfig:
    """Complete model configuration.

    Load from YAML via `load_config()`.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    dispersal: DispersalSection = field(default_factory=DispersalSection)
    prior: PriorSection = field(default_factory=PriorSection)
    coalescence: CoalescenceSection = field(default_factory=CoalescenceSection)
    partition: PartitionSection = field(default_factory=PartitionSection)


_SECTIONS = {
    'simulation': SimulationSection,
    'dispersal': DispersalSection,
    'prior': PriorSection,
    'coalescence': CoalescenceSection,
    'partition': PartitionSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys.

    YAML lists given for tuple-typed range fields become tuples.
    """
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {}
    for k, v in data.items():
        if k not in valid_fields:
            continue
        if k.endswith('_range') and isinstance(v, list):
            v = tuple(v)
        filtered[k] = v
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> ModelConfig:
    """Convert a merged YAML dict to a ModelConfig."""
    sections = {}
    for key, cls in _SECTIONS.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return ModelConfig(**sections)


def _check_range(name: str, rng: Tuple, low_exclusive: Optional[float] = None) -> None:
    if len(rng) != 2:
        raise ValueError(f"{name} must be (low, high), got {rng}")
    lo, hi = rng
    if lo > hi:
        raise ValueError(f"{name} low ({lo}) must be <= high ({hi})")
    if low_exclusive is not None and not lo > low_exclusive:
        raise ValueError(f"{name} must lie above {low_exclusive}, got low={lo}")


def validate_config(config: ModelConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Prior ranges are checked against the kernel and growth domains so the
    prior only ever emits in-domain parameters.
    """
    sim = config.simulation
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if sim.sampling_time <= sim.introduction_time:
        raise ValueError(
            f"simulation.sampling_time ({sim.sampling_time}) must be > "
            f"introduction_time ({sim.introduction_time})"
        )
    if sim.n_replicates < 1:
        raise ValueError("simulation.n_replicates must be >= 1")
    if not (-90.0 <= sim.introduction_lat <= 90.0):
        raise ValueError(
            f"simulation.introduction_lat must be in [-90, 90], got {sim.introduction_lat}"
        )
    if sim.sampling_time - sim.introduction_time > 1000:
        warnings.warn(
            f"{sim.sampling_time - sim.introduction_time} generations between "
            f"introduction and sampling; replicates will be slow.",
            UserWarning,
            stacklevel=2,
        )

    if config.dispersal.kernel not in KERNELS:
        raise ValueError(
            f"dispersal.kernel must be one of {sorted(KERNELS)}, "
            f"got '{config.dispersal.kernel}'"
        )

    p = config.prior
    if p.n0 < 1:
        raise ValueError(f"prior.n0 must be >= 1, got {p.n0}")
    _check_range('prior.k_range', p.k_range, low_exclusive=0)
    _check_range('prior.r_range', p.r_range)
    if p.r_range[0] < 0:
        raise ValueError(f"prior.r_range must be >= 0, got low={p.r_range[0]}")
    _check_range('prior.a_range', p.a_range, low_exclusive=0)
    if config.dispersal.kernel == 'logistic':
        _check_range('prior.b_range', p.b_range, low_exclusive=2)

    valid_policies = {policy.value for policy in UnresolvedPolicy}
    if config.coalescence.unresolved not in valid_policies:
        raise ValueError(
            f"coalescence.unresolved must be one of {sorted(valid_policies)}, "
            f"got '{config.coalescence.unresolved}'"
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> ModelConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides. Each layer overrides only
    the fields it specifies.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> ModelConfig:
    """Return a ModelConfig with all default values."""
    config = ModelConfig()
    validate_config(config)
    return config
