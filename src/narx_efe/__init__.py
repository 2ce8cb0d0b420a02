"""
===============================================================================
NARX_EFE — Active Inference Control for NARX Systems
===============================================================================

Bayesian NARX agent with expected-free-energy control:

    - features.py:   pol (elementwise power basis), backshift (lag buffers)
    - belief.py:     NormalGammaBelief (conjugate recursive update, Student-t predictive)
    - efe.py:        pragmatic / epistemic / control-cost terms, horizon EFE, rollout
    - goals.py:      ConstantGoal, GoalSequence, update_goals
    - optimizer.py:  ForwardModeAD (jax), LBFGSBMinimizer (scipy L-BFGS-B)
    - agent.py:      NARXEFEAgent (update, predictions, minimize_efe, efe_balance)
    - config.py:     AgentConfig

USAGE:
    from scipy.stats import norm
    from narx_efe import NARXEFEAgent, GoalSequence

    agent = NARXEFEAgent(mu0, Lambda0, 2.0, 1.0, delay_inp=0, delay_out=1, time_horizon=3)
    goals = GoalSequence([norm(1.0, 0.1)] * 3)
    agent.update(y, u)
    u_next = agent.minimize_efe(goals, control_lims=(-1.0, 1.0))[0]

The EFE objective is differentiated with jax in float64. Importing this package
sets jax_enable_x64 process-wide, so other jax code in the same interpreter also
defaults to 64-bit arrays from then on.
"""

import jax

jax.config.update("jax_enable_x64", True)

from narx_efe.agent import NARXEFEAgent
from narx_efe.belief import (
    NormalGammaBelief,
    StudentTPredictive,
    log_marginal_likelihood,
    marginal_likelihood,
)
from narx_efe.config import AgentConfig, DEFAULT_AGENT_CONFIG
from narx_efe.efe import (
    EFEObjective,
    HorizonEFEKernel,
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
from narx_efe.exceptions import (
    DimensionMismatchError,
    GoalHorizonError,
    NARXEFEError,
    UndefinedVarianceError,
)
from narx_efe.features import backshift, feature_dimension, pol, regressor
from narx_efe.goals import ConstantGoal, GoalSequence, goal_moments, horizon_moments, update_goals
from narx_efe.optimizer import (
    DEFAULT_OPTIMIZER_OPTIONS,
    ForwardModeAD,
    LBFGSBMinimizer,
    MinimizationReport,
    OptimizerOptions,
)
