"""
Error and warning types.

Only malformed input is raised to the caller. Topology and solver problems are
recovered locally and attached to the returned reports as warning instances.
"""

from __future__ import annotations


class InputError(ValueError):
    """Malformed mesh input (empty, non-indexed, bad indices, degenerate faces)."""


class TopologyWarning(UserWarning):
    """Open boundary chains, non-manifold edges or multiple components."""


class ConvergenceWarning(UserWarning):
    """Conjugate gradient stopped before reaching the requested tolerance."""
