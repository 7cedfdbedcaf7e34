"""Posterior-driven basketball possession simulator."""

__version__ = "0.1.0"
