"""
===============================================================================
EXPECTED FREE ENERGY — Pragmatic, Epistemic and Control-Cost Terms
===============================================================================

Per step t of a candidate control sequence u_1..u_H:

    ubuffer ← backshift(ubuffer, u_t)
    ϕ_t     = pol([ybuffer; ubuffer])
    (ν, m_t, s²_t) = posterior predictive at ϕ_t
    v_t     = s²_t ν / (ν − 2)
    ybuffer ← backshift(ybuffer, m_t)          (certainty-equivalent feedback)

    G_t = CE(goal_t; m_t, v_t) − MI(ϕ_t) + (η/2) u_t²

with constant terms dropped:

    CE(goal; m, v) = (v + (m − m_g)²) / (2 v_g)           pragmatic
    MI(ϕ)          = ½ log(1 + ϕᵀΛ⁻¹ϕ)                     epistemic

Predictive variance at step t uses only the current posterior; uncertainty from
earlier forecast steps is not compounded into later ones.

Every function here is written with jax.numpy so the horizon objective can be
differentiated in forward mode end to end.
===============================================================================
"""

from __future__ import annotations

from functools import lru_cache, partial
from typing import TYPE_CHECKING, Any, Callable, NamedTuple, Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from narx_efe.exceptions import DimensionMismatchError, UndefinedVarianceError
from narx_efe.features import backshift, regressor
from narx_efe.goals import Goal, goal_moments, horizon_moments

if TYPE_CHECKING:
    from narx_efe.agent import NARXEFEAgent


def control_cost(eta: float, control):
    return eta / 2.0 * control ** 2


def mutual_info_from_feature(agent: 'NARXEFEAgent', phi):
    """Information gain about the coefficients from observing the output at ``phi``."""
    return 0.5 * jnp.log1p(agent.belief.leverage(phi))


def mutual_info_from_rollout(agent: 'NARXEFEAgent', ybuffer, ubuffer, control):
    """Epistemic value of applying ``control`` next, given lag buffers."""
    phi = regressor(ybuffer, backshift(ubuffer, control), agent.pol_degree, agent.zero_order)
    return mutual_info_from_feature(agent, phi)


def crossentropy_from_moments(goal: Any, m_pred, v_pred):
    """Cross-entropy of the moment-matched predictive against ``goal``."""
    m_goal, v_goal = goal_moments(goal)
    return (v_pred + (m_pred - m_goal) ** 2) / (2.0 * v_goal)


def crossentropy_from_rollout(agent: 'NARXEFEAgent', ybuffer, ubuffer, goal: Any, control):
    """Pragmatic value of applying ``control`` next, given lag buffers."""
    phi = regressor(ybuffer, backshift(ubuffer, control), agent.pol_degree, agent.zero_order)
    predictive = agent.belief.posterior_predictive(phi)
    return crossentropy_from_moments(goal, predictive.loc, predictive.variance())


def efe_single(agent: 'NARXEFEAgent', goal: Any, control, ybuffer=None, ubuffer=None):
    """One-step EFE of ``control`` from the agent's buffers (or the given ones)."""
    if ybuffer is None:
        ybuffer = agent.ybuffer
    if ubuffer is None:
        ubuffer = agent.ubuffer
    return (
        crossentropy_from_rollout(agent, ybuffer, ubuffer, goal, control)
        - mutual_info_from_rollout(agent, ybuffer, ubuffer, control)
        + control_cost(agent.eta, control)
    )


# =============================================================================
# ARRAY KERNELS (compiled once per basis, reused across agents and timesteps)
# =============================================================================

def _rollout_arrays(controls, mu, Sigma, alpha, beta, ybuffer, ubuffer, pol_degree, zero_order):
    """Features, predictive means and variances for each control in ``controls``."""
    nu = 2.0 * alpha
    phis, means, variances = [], [], []
    for t in range(controls.shape[0]):
        ubuffer = backshift(ubuffer, controls[t])
        phi = regressor(ybuffer, ubuffer, pol_degree, zero_order)

        m_t = jnp.dot(mu, phi)
        v_t = beta / alpha * (1.0 + phi @ Sigma @ phi) * nu / (nu - 2.0)
        phis.append(phi)
        means.append(m_t)
        variances.append(v_t)

        ybuffer = backshift(ybuffer, m_t)
    return phis, jnp.stack(means), jnp.stack(variances)


def _horizon_efe_arrays(controls, mu, Sigma, alpha, beta, ybuffer, ubuffer, goal_means, goal_vars, eta,
                        pol_degree, zero_order):
    phis, means, variances = _rollout_arrays(
        controls, mu, Sigma, alpha, beta, ybuffer, ubuffer, pol_degree, zero_order
    )
    leverages = jnp.stack([phi @ Sigma @ phi for phi in phis])
    pragmatic = (variances + (means - goal_means) ** 2) / (2.0 * goal_vars)
    epistemic = 0.5 * jnp.log1p(leverages)
    return jnp.sum(pragmatic - epistemic + control_cost(eta, controls))


class HorizonEFEKernel(NamedTuple):
    value: Callable
    value_and_grad: Callable    # returns (J, dJ/du) from one forward-mode pass


@lru_cache(maxsize=None)
def compiled_horizon_efe(pol_degree: int, zero_order: bool) -> HorizonEFEKernel:
    """Jitted horizon EFE and its forward-mode gradient for one polynomial basis."""
    fn = partial(_horizon_efe_arrays, pol_degree=pol_degree, zero_order=zero_order)

    def with_value(controls, *args):
        J = fn(controls, *args)
        return J, J

    jac = jax.jacfwd(with_value, has_aux=True)

    def value_and_grad(controls, *args):
        grad, J = jac(controls, *args)
        return J, grad

    return HorizonEFEKernel(value=jax.jit(fn), value_and_grad=jax.jit(value_and_grad))


def _check_variance_defined(alpha: float) -> None:
    if 2.0 * alpha <= 2.0:
        raise UndefinedVarianceError(2.0 * alpha)


def _as_controls(controls, horizon: int):
    controls = jnp.asarray(controls, dtype=jnp.float64).reshape(-1)
    if controls.shape[0] < horizon:
        raise DimensionMismatchError(
            f"Control sequence has {controls.shape[0]} entries but the horizon is {horizon}"
        )
    return controls[:horizon]


class EFEObjective:
    """
    Horizon EFE J(u_1..u_H) frozen at the agent's current belief, buffers and goals.

    Calls go through the module-level compiled kernel, so building a new
    objective every timestep does not trigger recompilation.
    """

    def __init__(self, agent: 'NARXEFEAgent', goals: Goal, horizon: Optional[int] = None):
        self.horizon = agent.thorizon if horizon is None else horizon
        goal_means, goal_vars = horizon_moments(goals, self.horizon)
        _check_variance_defined(agent.alpha)

        self.kernel = compiled_horizon_efe(agent.pol_degree, agent.zero_order)
        self.args = (
            jnp.asarray(agent.mu, dtype=jnp.float64),
            jnp.asarray(agent.belief.covariance, dtype=jnp.float64),
            jnp.asarray(agent.alpha, dtype=jnp.float64),
            jnp.asarray(agent.beta, dtype=jnp.float64),
            jnp.asarray(agent.ybuffer, dtype=jnp.float64),
            jnp.asarray(agent.ubuffer, dtype=jnp.float64),
            jnp.asarray(goal_means),
            jnp.asarray(goal_vars),
            jnp.asarray(agent.eta, dtype=jnp.float64),
        )

    def __call__(self, controls):
        return self.kernel.value(_as_controls(controls, self.horizon), *self.args)

    def value_and_grad(self, controls) -> Tuple[float, np.ndarray]:
        J, grad = self.kernel.value_and_grad(_as_controls(controls, self.horizon), *self.args)
        return float(J), np.asarray(grad, dtype=float)


def rollout(agent: 'NARXEFEAgent', controls, horizon: int = 1):
    """Predictive means and variances over ``horizon`` steps of ``controls``."""
    controls = _as_controls(controls, horizon)
    _check_variance_defined(agent.alpha)
    _, means, variances = _rollout_arrays(
        controls,
        jnp.asarray(agent.mu),
        jnp.asarray(agent.belief.covariance),
        agent.alpha,
        agent.beta,
        jnp.asarray(agent.ybuffer),
        jnp.asarray(agent.ubuffer),
        agent.pol_degree,
        agent.zero_order,
    )
    return means, variances


def efe_horizon(agent: 'NARXEFEAgent', goals: Goal, controls, horizon: Optional[int] = None):
    """Expected free energy J(u_1..u_H) accumulated over the planning horizon."""
    return EFEObjective(agent, goals, horizon)(controls)
