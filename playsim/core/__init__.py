"""Core building blocks for the possession simulator.

This package contains pure, table-agnostic pieces:

- ``errors``     : the simulator's exception taxonomy
- ``sim_config`` : run constants (shot clock, buckets, iterations, workers)
- ``states``     : state / action / event vocabulary and ``StateIndex``
- ``shot_clock`` : shot-clock phase buckets
- ``sampling``   : validated categorical and Bernoulli draws

Nothing in this package imports from ``playsim.services``.
All modules are side-effect-free and unit-testable in isolation.
"""
