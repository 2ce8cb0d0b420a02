"""
Exception hierarchy for the NARX active-inference agent.

All errors raised deliberately by the package derive from NARXEFEError so callers
can catch the whole family; each also derives from the builtin it specialises.
Numerical failures from numpy (e.g. a singular precision matrix) are NOT wrapped
and propagate as ``numpy.linalg.LinAlgError``.
"""

from __future__ import annotations


class NARXEFEError(Exception):
    """Base class for agent errors."""


class DimensionMismatchError(NARXEFEError, ValueError):
    """Coefficient, precision or control dimensions disagree with the model order."""


class UndefinedVarianceError(NARXEFEError, ValueError):
    """Student-t predictive variance requested with ν ≤ 2 (shape α ≤ 1)."""

    def __init__(self, nu: float):
        self.nu = nu
        super().__init__(
            f"Predictive variance is undefined for ν = {nu:.6g} (requires ν > 2, i.e. α > 1)"
        )


class GoalHorizonError(NARXEFEError, IndexError):
    """Goal sequence is shorter than the planning horizon."""
