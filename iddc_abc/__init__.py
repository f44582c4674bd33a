"""IDDC-ABC: spatially explicit coalescent simulation for ABC inference.

A landscape-invasion model coupling:
  - Forward demography: Beverton-Holt growth + kernel-driven dispersal
    over discrete demes and discrete generations
  - Backward coalescence of sampled gene copies through the simulated
    population sizes and migration flows
  - Fuzzy partitions of sampled demes (simulated and observed) for
    comparison by a fuzzy transfer distance
  - Reference-table construction for Approximate Bayesian Computation
"""

__version__ = "0.1.0"
