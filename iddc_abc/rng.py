"""Seeded RNG streams for reproducible replicates.

Uses NumPy's SeedSequence → PCG64 hierarchy so that:
  - the prior stream and every replicate stream are statistically independent
  - replicate i replays bit-exactly from (master_seed, i) alone
  - growing the reference table doesn't change earlier replicates' streams

One replicate consumes exactly one Generator, threaded explicitly through
growth draws, dispersal, merge shuffles and partition sampling, in that
order. No module keeps global random state.
"""

from __future__ import annotations

from typing import Dict

import numpy as np

# Fixed spawn positions; replicate streams start after these
_NAMED_STREAMS = ('prior', 'observed')


def make_rng(seed: int) -> np.random.Generator:
    """A single PCG64 generator seeded through SeedSequence."""
    return np.random.Generator(np.random.PCG64(np.random.SeedSequence(seed)))


def create_rng_streams(
    master_seed: int,
    n_replicates: int,
) -> Dict[str, np.random.Generator]:
    """Create independent RNG streams for prior draws + each replicate.

    Streams created:
      - 'prior':      Parameter draws from the prior
      - 'observed':   Pseudo-observed datasets and observed-side randomness
      - 'replicate_0' .. 'replicate_{n-1}': one stream per simulated replicate

    Args:
        master_seed: Master RNG seed (non-negative integer).
        n_replicates: Number of replicate streams.

    Returns:
        Dictionary mapping stream names to numpy Generator instances.

    Example:
        >>> rngs = create_rng_streams(42, n_replicates=100)
        >>> params = prior(rngs['prior'])
        >>> model(rngs['replicate_0'], params)
    """
    if master_seed < 0:
        raise ValueError(f"master_seed must be non-negative, got {master_seed}")
    ss = np.random.SeedSequence(master_seed)
    child_seeds = ss.spawn(n_replicates + len(_NAMED_STREAMS))

    rngs: Dict[str, np.random.Generator] = {
        name: np.random.Generator(np.random.PCG64(child_seeds[i]))
        for i, name in enumerate(_NAMED_STREAMS)
    }
    offset = len(_NAMED_STREAMS)
    for i in range(n_replicates):
        rngs[f'replicate_{i}'] = np.random.Generator(
            np.random.PCG64(child_seeds[offset + i])
        )
    return rngs


def get_replicate_rng(
    rngs: Dict[str, np.random.Generator],
    replicate_id: int,
) -> np.random.Generator:
    """Get the RNG stream for a specific replicate.

    Raises:
        KeyError: If replicate_id doesn't have a stream.
    """
    key = f'replicate_{replicate_id}'
    if key not in rngs:
        n = sum(1 for k in rngs if k.startswith('replicate_'))
        raise KeyError(
            f"No RNG stream for replicate {replicate_id} "
            f"({n} replicate streams available)"
        )
    return rngs[key]


def rng_state_snapshot(
    rngs: Dict[str, np.random.Generator],
) -> Dict[str, dict]:
    """Capture the bit-generator state of every stream.

    The result is picklable and lets a reference-table build resume
    exactly where it stopped.
    """
    return {name: rng.bit_generator.state for name, rng in rngs.items()}


def restore_rng_state(
    rngs: Dict[str, np.random.Generator],
    states: Dict[str, dict],
) -> None:
    """Restore stream states captured by rng_state_snapshot().

    Raises:
        KeyError: If a stream in states doesn't exist in rngs.
    """
    for name, state in states.items():
        if name not in rngs:
            raise KeyError(f"Cannot restore RNG state for unknown stream '{name}'")
        rngs[name].bit_generator.state = state
