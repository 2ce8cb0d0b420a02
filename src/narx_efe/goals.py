"""
===============================================================================
GOALS — Target Distributions over Future Outputs
===============================================================================

A goal is any univariate distribution exposing ``mean()`` and ``var()``
(scipy.stats frozen distributions) or ``variance()``. The planner sees goals
through an explicit tagged variant, chosen by the caller:

    ConstantGoal(dist)         same target at every step of the horizon
    GoalSequence([d1, d2, …])  per-step targets, len ≥ horizon

The rolling per-step horizon is advanced by ``update_goals``:

    [g1, g2, g3]  + g4   →   [g2, g3, g4]
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, MutableSequence, Tuple, Union

import numpy as np

from narx_efe.exceptions import GoalHorizonError


def goal_moments(goal: Any) -> Tuple[float, float]:
    """(mean, variance) of a goal distribution."""
    mean = float(goal.mean())
    if hasattr(goal, "var"):
        var = float(goal.var())
    else:
        var = float(goal.variance())
    if var <= 0:
        raise ValueError(f"goal variance must be > 0, got {var}")
    return mean, var


@dataclass(frozen=True, eq=False)
class ConstantGoal:
    """One target distribution applied identically at every horizon step."""

    distribution: Any

    def at(self, t: int) -> Any:
        return self.distribution

    def check_horizon(self, horizon: int) -> None:
        return None


@dataclass(eq=False)
class GoalSequence:
    """Ordered per-step targets; element t is the goal for horizon step t."""

    goals: List[Any] = field(default_factory=list)

    def __post_init__(self):
        self.goals = list(self.goals)

    def __len__(self) -> int:
        return len(self.goals)

    def __getitem__(self, t: int) -> Any:
        return self.goals[t]

    def at(self, t: int) -> Any:
        return self.goals[t]

    def check_horizon(self, horizon: int) -> None:
        if len(self.goals) < horizon:
            raise GoalHorizonError(
                f"Goal sequence has {len(self.goals)} entries but the horizon is {horizon}"
            )

    def advance(self, new_goal: Any) -> None:
        update_goals(self.goals, new_goal)


Goal = Union[ConstantGoal, GoalSequence]


def require_goal(goals: Any) -> Goal:
    """Reject anything that is not an explicit goal variant."""
    if isinstance(goals, (ConstantGoal, GoalSequence)):
        return goals
    raise TypeError(
        f"Expected ConstantGoal or GoalSequence, got {type(goals).__name__}; "
        "wrap a single distribution in ConstantGoal or a list in GoalSequence"
    )


def update_goals(goal_buffer: Union[GoalSequence, MutableSequence], new_goal: Any) -> None:
    """Rotate the goal buffer left by one in place and overwrite the last slot with ``new_goal``."""
    if isinstance(goal_buffer, GoalSequence):
        goal_buffer = goal_buffer.goals
    if len(goal_buffer) == 0:
        raise GoalHorizonError("Cannot advance an empty goal buffer")
    goal_buffer[:] = list(goal_buffer[1:]) + [goal_buffer[0]]
    goal_buffer[-1] = new_goal


def horizon_moments(goals: Goal, horizon: int) -> Tuple[np.ndarray, np.ndarray]:
    """Per-step goal (means, variances) as arrays of length ``horizon``."""
    goals = require_goal(goals)
    goals.check_horizon(horizon)
    moments = [goal_moments(goals.at(t)) for t in range(horizon)]
    means = np.array([m for m, _ in moments], dtype=float)
    variances = np.array([v for _, v in moments], dtype=float)
    return means, variances
