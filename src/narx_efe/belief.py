"""
===============================================================================
BELIEF — Conjugate Normal-Gamma Posterior over NARX Coefficients
===============================================================================

Generative model for one observation with feature vector ϕ:

    y | θ, τ  ~  N(θᵀϕ, 1/τ)
    θ | τ     ~  N(μ, (τΛ)⁻¹)
    τ         ~  Gamma(α, β)        (shape α, rate β)

RECURSIVE UPDATE (exact, one observation at a time):

    Λₙ = ϕϕᵀ + Λ₀
    μₙ = Λₙ⁻¹ (ϕ·y + Λ₀μ₀)
    αₙ = α₀ + ½
    βₙ = β₀ + ½ (y² + μ₀ᵀΛ₀μ₀ − (ϕy + Λ₀μ₀)ᵀ Λₙ⁻¹ (ϕy + Λ₀μ₀))

POSTERIOR PREDICTIVE (location-scale Student-t):

    ν = 2α,   m = μᵀϕ,   s² = (β/α)(1 + ϕᵀΛ⁻¹ϕ)
    Var[y] = s² ν / (ν − 2)          defined only for ν > 2

INCREMENTAL EVIDENCE (Bayes factor between posterior and prior hyperparameters):

    log p(y | prior) = ½log|Λ₀| − ½log|Λₙ| + α₀logβ₀ − αₙlogβₙ
                       + logΓ(αₙ) − logΓ(α₀) − ½log2π

Summing this over a run of single-observation updates telescopes to the batch
evidence of the whole data set under the initial prior.
===============================================================================
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import cached_property
from typing import Tuple

import jax.numpy as jnp
import numpy as np
from scipy.special import gammaln

from narx_efe.exceptions import DimensionMismatchError, UndefinedVarianceError

_LOG_2PI = math.log(2.0 * math.pi)


@dataclass(frozen=True, eq=False)
class StudentTPredictive:
    """Location-scale Student-t predictive: degrees of freedom, location, squared scale."""

    nu: float
    loc: object
    scale2: object

    def __iter__(self):
        # Unpacks as (ν, m, s²)
        return iter((self.nu, self.loc, self.scale2))

    def variance(self):
        if self.nu <= 2.0:
            raise UndefinedVarianceError(self.nu)
        return self.scale2 * self.nu / (self.nu - 2.0)

    def logpdf(self, y: float) -> float:
        nu = float(self.nu)
        scale2 = float(self.scale2)
        z2 = (y - float(self.loc)) ** 2 / scale2
        log_norm = gammaln((nu + 1.0) / 2.0) - gammaln(nu / 2.0) - 0.5 * np.log(nu * np.pi * scale2)
        return float(log_norm - (nu + 1.0) / 2.0 * np.log1p(z2 / nu))


@dataclass(eq=False)
class NormalGammaBelief:
    """
    Normal-Gamma hyperparameters (μ, Λ, α, β).

    Instances are treated as values: ``update`` returns a new belief and leaves the
    receiver untouched, so a prior can be kept around for evidence computation.
    """

    mu: np.ndarray
    Lambda: np.ndarray
    alpha: float
    beta: float

    def __post_init__(self):
        self.mu = np.asarray(self.mu, dtype=float).reshape(-1)
        self.Lambda = np.asarray(self.Lambda, dtype=float)
        self.alpha = float(self.alpha)
        self.beta = float(self.beta)

        order = self.mu.shape[0]
        if self.Lambda.shape != (order, order):
            raise DimensionMismatchError(
                f"Precision matrix shape {self.Lambda.shape} does not match coefficient dimension {order}"
            )
        if self.alpha <= 0:
            raise ValueError(f"noise shape α must be > 0, got {self.alpha}")
        if self.beta <= 0:
            raise ValueError(f"noise rate β must be > 0, got {self.beta}")

    @property
    def order(self) -> int:
        return self.mu.shape[0]

    @cached_property
    def covariance(self) -> np.ndarray:
        """Λ⁻¹. Raises numpy.linalg.LinAlgError if Λ is singular."""
        return np.linalg.inv(self.Lambda)

    def params(self) -> Tuple[np.ndarray, np.ndarray, float, float]:
        return self.mu, self.Lambda, self.alpha, self.beta

    def update(self, phi, y: float) -> 'NormalGammaBelief':
        """Conjugate update with one observation ``y`` at feature vector ``phi``."""
        phi = np.asarray(phi, dtype=float).reshape(-1)
        if phi.shape[0] != self.order:
            raise DimensionMismatchError(
                f"Feature vector length {phi.shape[0]} does not match model order {self.order}"
            )
        y = float(y)

        xi = phi * y + self.Lambda @ self.mu
        Lambda_n = np.outer(phi, phi) + self.Lambda
        mu_n = np.linalg.solve(Lambda_n, xi)
        alpha_n = self.alpha + 0.5
        beta_n = self.beta + 0.5 * (y ** 2 + self.mu @ self.Lambda @ self.mu - xi @ mu_n)

        return NormalGammaBelief(mu=mu_n, Lambda=Lambda_n, alpha=alpha_n, beta=beta_n)

    def leverage(self, phi):
        """ϕᵀΛ⁻¹ϕ, traceable by jax."""
        phi = jnp.asarray(phi)
        return phi @ jnp.asarray(self.covariance) @ phi

    def posterior_predictive(self, phi) -> StudentTPredictive:
        """Student-t predictive for the output at feature vector ``phi``."""
        phi = jnp.asarray(phi)
        nu = 2.0 * self.alpha
        m = jnp.dot(jnp.asarray(self.mu), phi)
        s2 = self.beta / self.alpha * (1.0 + self.leverage(phi))
        return StudentTPredictive(nu=nu, loc=m, scale2=s2)


def log_marginal_likelihood(posterior: NormalGammaBelief, prior: NormalGammaBelief) -> float:
    """Log Bayes factor of one observation between ``posterior`` and ``prior`` hyperparameters."""
    _, logdet_n = np.linalg.slogdet(posterior.Lambda)
    _, logdet_0 = np.linalg.slogdet(prior.Lambda)

    log_z_n = -0.5 * logdet_n + gammaln(posterior.alpha) - posterior.alpha * np.log(posterior.beta)
    log_z_0 = -0.5 * logdet_0 + gammaln(prior.alpha) - prior.alpha * np.log(prior.beta)
    n_obs = 2.0 * (posterior.alpha - prior.alpha)
    return float(log_z_n - log_z_0 - 0.5 * n_obs * _LOG_2PI)


def marginal_likelihood(posterior: NormalGammaBelief, prior: NormalGammaBelief) -> float:
    """Model evidence ratio; may underflow to 0.0 for improbable data."""
    return float(np.exp(log_marginal_likelihood(posterior, prior)))
