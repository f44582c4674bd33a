"""Random merging of elements in a sequence.

The structural engine of every coalescent in the package. Both functions
are domain-agnostic: the element type and the branching operator are the
caller's.

  op(parent, child) -> parent'

attaches a child to its parent; the parent starts from `init`. Functions
work in place and cannot shrink the caller's container, so they return
the new logical end: positions [0, end) hold the surviving elements,
positions [end, len) are leftovers the caller should discard.

Randomness: one Fisher-Yates shuffle of the whole range per call, drawn
from the supplied generator.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, MutableSequence

import numpy as np

BinaryOp = Callable[[Any, Any], Any]


def _shuffle(seq: MutableSequence, rng: np.random.Generator) -> None:
    """In-place Fisher-Yates shuffle driven by rng."""
    for i in range(len(seq) - 1, 0, -1):
        j = int(rng.integers(0, i + 1))
        seq[i], seq[j] = seq[j], seq[i]


def binary_merge(
    seq: MutableSequence,
    init: Any,
    op: BinaryOp,
    rng: np.random.Generator,
) -> int:
    """Merge two randomly chosen elements of seq.

    After shuffling, the last element is attached to `init` and the
    second-to-last element is attached to the result; the parent takes
    the second-to-last slot.

    Args:
        seq: Mutable sequence with at least 2 elements (modified in place).
        init: Initial parent value.
        op: Branching operator op(parent, child).
        rng: NumPy random generator.

    Returns:
        New logical end (len(seq) - 1).

    Example:
        >>> nodes = [1, 1, 1, 1]
        >>> end = binary_merge(nodes, 0, operator.add, rng)
        >>> nodes[:end]   # one 2, two 1s in some order
    """
    n = len(seq)
    if n < 2:
        raise ValueError(f"binary_merge needs at least 2 elements, got {n}")
    _shuffle(seq, rng)
    parent = op(init, seq[n - 1])
    seq[n - 2] = op(parent, seq[n - 2])
    return n - 1


def simultaneous_multiple_merge(
    seq: MutableSequence,
    init: Any,
    spectrum: Mapping[int, int],
    op: BinaryOp,
    rng: np.random.Generator,
) -> int:
    """Merge randomly chosen groups of elements following an occupancy spectrum.

    spectrum[j] = m_j is the number of parents that receive exactly j
    children (j >= 2). After one shuffle, parents are filled from the
    front; each parent absorbs the element in its slot plus j-1 elements
    taken from the tail. Group sizes are processed in increasing order.

    Args:
        seq: Mutable sequence (modified in place).
        init: Initial parent value.
        spectrum: Group size -> number of parents, keys >= 2.
        op: Branching operator op(parent, child).
        rng: NumPy random generator.

    Returns:
        New logical end. With sum(j * m_j) == len(seq) this is
        sum(m_j); in general len(seq) - sum((j - 1) * m_j), the elements
        not involved in any group surviving untouched.

    Raises:
        ValueError: If a group size is < 2 or the spectrum needs more
            elements than seq holds.
    """
    sizes = sorted(j for j, m in spectrum.items() if m > 0)
    if sizes and sizes[0] < 2:
        raise ValueError(f"group sizes must be >= 2, got {sizes[0]}")
    needed = sum(j * spectrum[j] for j in sizes)
    if needed > len(seq):
        raise ValueError(
            f"spectrum consumes {needed} elements but only {len(seq)} are available"
        )

    _shuffle(seq, rng)
    first = 0
    last = len(seq)
    for j in sizes:
        for _ in range(spectrum[j]):
            parent = op(init, seq[first])
            for _ in range(j - 1):
                last -= 1
                parent = op(parent, seq[last])
            seq[first] = parent
            first += 1
    return last
