"""
Tests for the expected free energy terms and the certainty-equivalent rollout.
"""
import math
import os
import sys

import numpy as np
import pytest
from scipy.stats import norm

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from narx_efe import NARXEFEAgent
from narx_efe.efe import (
    EFEObjective,
    compiled_horizon_efe,
    control_cost,
    crossentropy_from_moments,
    crossentropy_from_rollout,
    efe_horizon,
    efe_single,
    mutual_info_from_feature,
    mutual_info_from_rollout,
    rollout,
)
from narx_efe.exceptions import DimensionMismatchError, GoalHorizonError, UndefinedVarianceError
from narx_efe.goals import ConstantGoal, GoalSequence


@pytest.fixture
def agent():
    """delay_out=2, delay_inp=1, degree 2 with constant: order = 4·2 + 1 = 9."""
    rng = np.random.default_rng(5)
    A = rng.normal(size=(9, 9))
    agent = NARXEFEAgent(
        coefficients_mean=0.1 * rng.normal(size=9),
        coefficients_precision=A @ A.T + 9 * np.eye(9),
        noise_shape=3.0,
        noise_rate=0.5,
        delay_inp=1,
        delay_out=2,
        pol_degree=2,
        zero_order=True,
        time_horizon=3,
        control_prior_precision=0.7,
    )
    agent.ybuffer = np.array([0.4, -0.2])
    agent.ubuffer = np.array([0.1, 0.3])
    return agent


def _numpy_step(agent, ybuffer, ubuffer, control):
    """Independent numpy evaluation of one rollout step."""
    ubuffer = np.concatenate([[control], ubuffer[:-1]])
    x = np.concatenate([ybuffer, ubuffer])
    phi = np.concatenate([[1.0], x, x ** 2])
    q = phi @ np.linalg.inv(agent.Lambda) @ phi
    nu = 2 * agent.alpha
    m = agent.mu @ phi
    v = agent.beta / agent.alpha * (1 + q) * nu / (nu - 2)
    return phi, q, m, v, ubuffer


class TestTerms:

    def test_mutual_info_formula(self, agent):
        phi = np.linspace(-1, 1, 9)
        q = phi @ np.linalg.inv(agent.Lambda) @ phi
        assert float(mutual_info_from_feature(agent, phi)) == pytest.approx(0.5 * math.log(1 + q), rel=1e-12)

    def test_epistemic_monotone_in_feature_norm(self, agent):
        direction = np.random.default_rng(1).normal(size=9)
        values = [float(mutual_info_from_feature(agent, c * direction)) for c in [0.0, 0.1, 0.5, 1.0, 2.0, 10.0]]
        assert values[0] == 0.0
        assert all(b >= a for a, b in zip(values, values[1:]))

    def test_crossentropy_formula(self):
        goal = norm(1.0, 0.5)
        assert float(crossentropy_from_moments(goal, 2.0, 0.3)) == pytest.approx((0.3 + 1.0) / (2 * 0.25))

    def test_control_cost(self):
        assert control_cost(4.0, 0.5) == pytest.approx(0.5)

    def test_rollout_terms_match_numpy(self, agent):
        goal = norm(0.5, 0.8)
        _, q, m, v, _ = _numpy_step(agent, agent.ybuffer, agent.ubuffer, 0.6)
        assert float(mutual_info_from_rollout(agent, agent.ybuffer, agent.ubuffer, 0.6)) == pytest.approx(
            0.5 * math.log(1 + q), rel=1e-12
        )
        assert float(crossentropy_from_rollout(agent, agent.ybuffer, agent.ubuffer, goal, 0.6)) == pytest.approx(
            (v + (m - 0.5) ** 2) / (2 * 0.64), rel=1e-12
        )


class TestSingleStepEFE:

    @pytest.mark.parametrize("control", [-2.0, -0.3, 0.0, 0.8, 3.0])
    def test_decomposition_identity(self, agent, control):
        goal = norm(-0.4, 1.3)
        y_, u_ = agent.ybuffer, agent.ubuffer
        total = efe_single(agent, goal, control)
        parts = (
            crossentropy_from_rollout(agent, y_, u_, goal, control)
            - mutual_info_from_rollout(agent, y_, u_, control)
            + agent.eta / 2 * control ** 2
        )
        assert float(total) == float(parts)

    def test_decomposition_against_numpy(self, agent):
        goal = norm(0.2, 0.9)
        _, q, m, v, _ = _numpy_step(agent, agent.ybuffer, agent.ubuffer, 1.1)
        expected = (v + (m - 0.2) ** 2) / (2 * 0.81) - 0.5 * math.log(1 + q) + agent.eta / 2 * 1.1 ** 2
        assert float(efe_single(agent, goal, 1.1)) == pytest.approx(expected, rel=1e-12)


class TestRollout:

    def test_certainty_equivalent_rollout(self, agent):
        controls = np.array([0.5, -0.25, 1.0])
        means, variances = rollout(agent, controls, horizon=3)

        ybuffer, ubuffer = agent.ybuffer.copy(), agent.ubuffer.copy()
        for t in range(3):
            _, _, m, v, ubuffer = _numpy_step(agent, ybuffer, ubuffer, controls[t])
            assert float(means[t]) == pytest.approx(m, rel=1e-12)
            assert float(variances[t]) == pytest.approx(v, rel=1e-12)
            ybuffer = np.concatenate([[m], ybuffer[:-1]])

    def test_buffers_unchanged(self, agent):
        y_before, u_before = agent.ybuffer.copy(), agent.ubuffer.copy()
        rollout(agent, np.ones(3), horizon=3)
        np.testing.assert_array_equal(agent.ybuffer, y_before)
        np.testing.assert_array_equal(agent.ubuffer, u_before)

    def test_short_control_sequence(self, agent):
        with pytest.raises(DimensionMismatchError):
            rollout(agent, np.ones(2), horizon=3)

    def test_undefined_variance(self):
        agent = NARXEFEAgent(np.zeros(3), np.eye(3), 1.0, 1.0, delay_inp=0, delay_out=1)
        with pytest.raises(UndefinedVarianceError):
            rollout(agent, np.zeros(1), horizon=1)


class TestHorizonEFE:

    def test_accumulates_per_step_terms(self, agent):
        controls = np.array([0.2, -0.6, 0.9])
        goals = GoalSequence([norm(0.0, 1.0), norm(0.5, 0.7), norm(-1.0, 2.0)])

        expected = 0.0
        ybuffer, ubuffer = agent.ybuffer.copy(), agent.ubuffer.copy()
        for t in range(3):
            _, q, m, v, ubuffer = _numpy_step(agent, ybuffer, ubuffer, controls[t])
            m_g, v_g = goals.at(t).mean(), goals.at(t).var()
            expected += (v + (m - m_g) ** 2) / (2 * v_g) - 0.5 * math.log(1 + q) + agent.eta / 2 * controls[t] ** 2
            ybuffer = np.concatenate([[m], ybuffer[:-1]])

        assert float(efe_horizon(agent, goals, controls)) == pytest.approx(expected, rel=1e-12)

    def test_constant_goal_equals_repeated_sequence(self, agent):
        controls = np.array([0.3, 0.1, -0.2])
        dist = norm(0.7, 1.1)
        constant = float(efe_horizon(agent, ConstantGoal(dist), controls))
        repeated = float(efe_horizon(agent, GoalSequence([dist] * 3), controls))
        assert constant == pytest.approx(repeated, rel=1e-14)

    def test_requires_explicit_goal_variant(self, agent):
        with pytest.raises(TypeError):
            efe_horizon(agent, norm(), np.zeros(3))

    def test_goal_sequence_too_short(self, agent):
        with pytest.raises(GoalHorizonError):
            efe_horizon(agent, GoalSequence([norm(), norm()]), np.zeros(3))


class TestEFEObjective:

    def test_kernel_compiled_once_per_basis(self):
        assert compiled_horizon_efe(2, True) is compiled_horizon_efe(2, True)
        assert compiled_horizon_efe(2, True) is not compiled_horizon_efe(1, True)

    def test_objectives_share_kernel_across_timesteps(self, agent):
        goals = ConstantGoal(norm(1.0, 0.5))
        before = EFEObjective(agent, goals)
        agent.update(0.3, -0.4)
        after = EFEObjective(agent, goals)
        assert before.kernel is after.kernel
        assert float(before(np.zeros(3))) != float(after(np.zeros(3)))

    def test_value_matches_efe_horizon(self, agent):
        goals = GoalSequence([norm(0.0, 1.0), norm(0.5, 0.7), norm(-1.0, 2.0)])
        controls = np.array([0.2, -0.6, 0.9])
        J, _ = EFEObjective(agent, goals).value_and_grad(controls)
        assert isinstance(J, float)
        assert J == pytest.approx(float(efe_horizon(agent, goals, controls)), rel=1e-12)

    def test_gradient_matches_finite_differences(self, agent):
        goals = GoalSequence([norm(0.0, 1.0), norm(0.5, 0.7), norm(-1.0, 2.0)])
        objective = EFEObjective(agent, goals)
        controls = np.array([0.2, -0.6, 0.9])
        _, grad = objective.value_and_grad(controls)

        h = 1e-6
        expected = np.array([
            (float(objective(controls + h * e)) - float(objective(controls - h * e))) / (2 * h)
            for e in np.eye(3)
        ])
        assert grad.shape == (3,)
        np.testing.assert_allclose(grad, expected, rtol=1e-6, atol=1e-8)

    def test_frozen_at_construction(self, agent):
        goals = ConstantGoal(norm(1.0, 0.5))
        objective = EFEObjective(agent, goals)
        value = float(objective(np.zeros(3)))
        agent.update(0.3, -0.4)
        assert float(objective(np.zeros(3))) == value

    def test_undefined_variance(self):
        agent = NARXEFEAgent(np.zeros(4), np.eye(4), 1.0, 1.0)
        with pytest.raises(UndefinedVarianceError):
            EFEObjective(agent, ConstantGoal(norm()))
