"""Replicate-level failures.

Every exception here aborts one replicate only. The reference-table
builder (reference_table.py) catches ReplicateFailure and records the
outcome; nothing else in the package catches them.
"""


class ReplicateFailure(Exception):
    """
    Superclass of all failures that invalidate a single replicate.
    """


class DomainViolation(ReplicateFailure):
    """
    Kernel or growth parameters lie outside their valid domain.
    """


class SimulationDeadEnd(ReplicateFailure):
    """
    The simulated population cannot reach or host the sample.
    """


class UnresolvedCoalescence(ReplicateFailure):
    """
    More than one lineage remains when the introduction time is reached.
    """


class DistanceUndefined(ReplicateFailure):
    """
    A sampled deme has no counted lineage, so its memberships cannot be
    normalised.
    """
