"""
Tests for goal variants and the rolling goal buffer.
"""
import os
import sys

import pytest
from scipy.stats import norm

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from narx_efe.exceptions import GoalHorizonError
from narx_efe.goals import ConstantGoal, GoalSequence, goal_moments, require_goal, update_goals


class _MomentsOnly:
    """Distribution-like object exposing mean()/variance() rather than scipy's var()."""

    def mean(self):
        return 1.5

    def variance(self):
        return 0.25


class TestUpdateGoals:

    def test_rotates_and_appends(self):
        g1, g2, g3, g4 = norm(1, 1), norm(2, 1), norm(3, 1), norm(4, 1)
        buffer = [g1, g2, g3]
        update_goals(buffer, g4)
        assert buffer == [g2, g3, g4]

    def test_goal_sequence_advance_keeps_length(self):
        goals = GoalSequence([norm(k, 1) for k in range(5)])
        new = norm(10, 1)
        goals.advance(new)
        assert len(goals) == 5
        assert goals.at(4) is new
        assert goals.at(0).mean() == 1.0

    def test_update_goals_accepts_goal_sequence(self):
        g = [norm(k, 1) for k in range(3)]
        goals = GoalSequence(g)
        update_goals(goals, g[0])
        assert goals.goals == [g[1], g[2], g[0]]

    def test_empty_buffer(self):
        with pytest.raises(GoalHorizonError):
            update_goals([], norm())


class TestGoalVariants:

    def test_constant_goal_same_everywhere(self):
        dist = norm(0.3, 2.0)
        goal = ConstantGoal(dist)
        assert all(goal.at(t) is dist for t in range(10))
        goal.check_horizon(1000)

    def test_sequence_shorter_than_horizon(self):
        with pytest.raises(GoalHorizonError):
            GoalSequence([norm(), norm()]).check_horizon(3)

    def test_bare_distribution_rejected(self):
        with pytest.raises(TypeError):
            require_goal(norm())
        with pytest.raises(TypeError):
            require_goal([norm(), norm()])

    def test_moments(self):
        assert goal_moments(norm(2.0, 3.0)) == pytest.approx((2.0, 9.0))
        assert goal_moments(_MomentsOnly()) == pytest.approx((1.5, 0.25))
