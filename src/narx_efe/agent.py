"""
===============================================================================
NARX EFE AGENT — Active Inference Control of NARX Systems
===============================================================================

The agent keeps a conjugate Normal-Gamma belief over the coefficients and noise
precision of a polynomial NARX model and selects controls by minimising the
expected free energy over a receding horizon.

CONTROL LOOP (enforced by the caller, one agent per caller):

    agent.update(y_t, u_t)                 # belief + lag buffers + free energy
    goals.advance(new_goal)                # optional, rolling per-step targets
    policy = agent.minimize_efe(goals)     # full H-step control sequence
    u_{t+1} = policy[0]                    # apply only the first control

STATE:
    ybuffer      last delay_out outputs, most recent first
    ubuffer      last delay_inp+1 inputs, most recent first
    belief       NormalGammaBelief(μ, Λ, α, β)
    free_energy  −log evidence of the most recent update (+inf before any update)

The agent is not thread-safe; callers must serialise access to an instance.
===============================================================================
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy.stats import norm

from narx_efe.belief import NormalGammaBelief, log_marginal_likelihood
from narx_efe.config import AgentConfig
from narx_efe.efe import (
    EFEObjective,
    crossentropy_from_rollout,
    efe_horizon,
    mutual_info_from_rollout,
    rollout,
)
from narx_efe.exceptions import DimensionMismatchError
from narx_efe.features import backshift, regressor
from narx_efe.goals import ConstantGoal, Goal, require_goal
from narx_efe.optimizer import (
    DEFAULT_OPTIMIZER_OPTIONS,
    ForwardModeAD,
    LBFGSBMinimizer,
    OptimizerOptions,
)

logger = logging.getLogger(__name__)


class NARXEFEAgent:
    """
    Active inference agent based on a Nonlinear Auto-Regressive eXogenous model.

    Parameters are inferred through exact Bayesian filtering and controls through
    expected free energy minimisation.
    """

    def __init__(
        self,
        coefficients_mean,
        coefficients_precision,
        noise_shape: float,
        noise_rate: float,
        goal_prior: Optional[Goal] = None,
        delay_inp: int = 1,
        delay_out: int = 1,
        pol_degree: int = 1,
        zero_order: bool = True,
        time_horizon: int = 1,
        num_iters: int = 10,
        control_prior_precision: float = 0.0,
    ):
        self.config = AgentConfig(
            delay_inp=delay_inp,
            delay_out=delay_out,
            pol_degree=pol_degree,
            zero_order=zero_order,
            time_horizon=time_horizon,
            num_iters=num_iters,
            control_prior_precision=control_prior_precision,
        )

        self.order = self.config.order
        coefficients_mean = np.asarray(coefficients_mean, dtype=float).reshape(-1)
        if coefficients_mean.shape[0] != self.order:
            raise DimensionMismatchError(
                f"Dimensionality of coefficients ({coefficients_mean.shape[0]}) "
                f"and model order ({self.order}) do not match."
            )

        self.belief = NormalGammaBelief(
            mu=coefficients_mean,
            Lambda=coefficients_precision,
            alpha=noise_shape,
            beta=noise_rate,
        )

        self.ybuffer = np.zeros(self.config.delay_out)
        self.ubuffer = np.zeros(self.config.delay_inp + 1)

        self.goals = require_goal(goal_prior if goal_prior is not None else ConstantGoal(norm(0.0, 1.0)))
        self.free_energy = math.inf

    @classmethod
    def from_config(
        cls,
        coefficients_mean,
        coefficients_precision,
        noise_shape: float,
        noise_rate: float,
        config: AgentConfig,
        goal_prior: Optional[Goal] = None,
    ) -> 'NARXEFEAgent':
        return cls(
            coefficients_mean,
            coefficients_precision,
            noise_shape,
            noise_rate,
            goal_prior=goal_prior,
            **config.to_dict(),
        )

    # ------------------------------------------------------------------
    # Configuration accessors
    # ------------------------------------------------------------------

    @property
    def delay_inp(self) -> int:
        return self.config.delay_inp

    @property
    def delay_out(self) -> int:
        return self.config.delay_out

    @property
    def pol_degree(self) -> int:
        return self.config.pol_degree

    @property
    def zero_order(self) -> bool:
        return self.config.zero_order

    @property
    def thorizon(self) -> int:
        return self.config.time_horizon

    @property
    def num_iters(self) -> int:
        return self.config.num_iters

    @property
    def eta(self) -> float:
        return self.config.control_prior_precision

    # Belief accessors (μ, Λ, α, β)

    @property
    def mu(self) -> np.ndarray:
        return self.belief.mu

    @property
    def Lambda(self) -> np.ndarray:
        return self.belief.Lambda

    @property
    def alpha(self) -> float:
        return self.belief.alpha

    @property
    def beta(self) -> float:
        return self.belief.beta

    def params(self) -> Tuple[np.ndarray, np.ndarray, float, float]:
        return self.belief.params()

    # ------------------------------------------------------------------
    # Perception
    # ------------------------------------------------------------------

    def update(self, y: float, u: float) -> None:
        """Absorb the observed output ``y`` produced under input ``u``."""
        self.ubuffer = np.asarray(backshift(self.ubuffer, u))
        phi = regressor(self.ybuffer, self.ubuffer, self.pol_degree, self.zero_order)

        prior = self.belief
        self.belief = prior.update(np.asarray(phi), y)

        self.ybuffer = np.asarray(backshift(self.ybuffer, y))

        self.free_energy = -log_marginal_likelihood(self.belief, prior)
        logger.debug("update: y=%.6g u=%.6g free_energy=%.6g", y, u, self.free_energy)

    def posterior_predictive(self, phi):
        return self.belief.posterior_predictive(phi)

    def predictions(self, controls, time_horizon: int = 1) -> Tuple[np.ndarray, np.ndarray]:
        """Certainty-equivalent forecast means and variances under ``controls``."""
        means, variances = rollout(self, controls, horizon=time_horizon)
        return np.asarray(means), np.asarray(variances)

    # ------------------------------------------------------------------
    # Action
    # ------------------------------------------------------------------

    def efe(self, goals: Goal, controls) -> float:
        """Horizon expected free energy of ``controls`` under ``goals``."""
        return float(efe_horizon(self, goals, controls))

    def minimize_efe(
        self,
        goals: Optional[Goal] = None,
        u_0=None,
        time_limit: Optional[float] = None,
        verbose: Optional[bool] = None,
        control_lims: Tuple[float, float] = (-math.inf, math.inf),
        options: Optional[OptimizerOptions] = None,
        minimizer: Optional[Any] = None,
    ) -> np.ndarray:
        """
        Minimise the horizon EFE and return the full control sequence.

        Only the first control should be applied; call again at the next step.
        Explicit ``time_limit``/``verbose`` override the corresponding fields of
        ``options``. The iteration cap defaults to ``num_iters``.
        """
        goals = require_goal(goals if goals is not None else self.goals)
        goals.check_horizon(self.thorizon)

        if u_0 is None:
            u_0 = np.zeros(self.thorizon)
        u_0 = np.asarray(u_0, dtype=float).reshape(-1)
        if u_0.shape[0] != self.thorizon:
            raise DimensionMismatchError(
                f"Initial control sequence has {u_0.shape[0]} entries but the horizon is {self.thorizon}"
            )

        options = (options or DEFAULT_OPTIMIZER_OPTIONS).with_overrides(
            time_limit=time_limit,
            verbose=verbose,
        )
        if options.iterations is None:
            options = options.with_overrides(iterations=self.num_iters)

        objective = EFEObjective(self, goals)
        minimizer = minimizer if minimizer is not None else LBFGSBMinimizer()
        policy = np.asarray(minimizer.minimize(objective, control_lims, u_0, options), dtype=float)

        if logger.isEnabledFor(logging.INFO):
            logger.info(
                "minimize_efe: horizon=%d first control=%.6g EFE=%.6g",
                self.thorizon, policy[0], float(objective(policy)),
            )
        return policy

    def efe_balance(self, goal: Any, control: float) -> Tuple[float, float, float]:
        """
        Derivatives w.r.t. a single control of the epistemic, pragmatic and
        control-cost terms, evaluated from the current buffers.
        """
        ad = ForwardModeAD(jit=False)
        y_, u_ = self.ybuffer, self.ubuffer

        d_epistemic = ad.derivative(lambda a: mutual_info_from_rollout(self, y_, u_, a), control)
        d_pragmatic = ad.derivative(lambda a: crossentropy_from_rollout(self, y_, u_, goal, a), control)
        d_control = 2.0 * self.eta * control

        return d_epistemic, d_pragmatic, d_control

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of configuration, buffers and belief for logging/auditing."""
        return {
            **self.config.to_dict(),
            'order': self.order,
            'ybuffer': self.ybuffer.tolist(),
            'ubuffer': self.ubuffer.tolist(),
            'mu': self.mu.tolist(),
            'Lambda': self.Lambda.tolist(),
            'alpha': self.alpha,
            'beta': self.beta,
            'free_energy': self.free_energy,
        }
