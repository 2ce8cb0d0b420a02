"""
===============================================================================
OPTIMIZER — Box-Constrained Receding-Horizon Minimisation
===============================================================================

Two injected capabilities, kept behind small interfaces so either can be swapped:

    ForwardModeAD     derivative(f, x) / value_and_grad(f) via jax.jacfwd
    LBFGSBMinimizer   minimize(objective, bounds, x0, options) -> np.ndarray
                      via scipy.optimize.minimize(method='L-BFGS-B')

BUDGET SEMANTICS:
    - iterations caps L-BFGS-B iterations (maxiter)
    - time_limit is checked after every objective evaluation and at every
      iteration boundary; once exceeded the run stops and the BEST iterate seen
      so far is returned
    - non-convergence is never fatal: it is logged and the best iterate returned

Options mirror the planner's recognised settings:
    time_limit, verbose, f_tol, g_tol, iterations, show_every
===============================================================================
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence, Tuple

import jax
import numpy as np
from scipy.optimize import minimize

logger = logging.getLogger(__name__)

Bounds = Sequence[Tuple[Optional[float], Optional[float]]]


@dataclass(frozen=True)
class OptimizerOptions:
    """Configuration bundle passed to the minimiser."""

    time_limit: float = 10.0
    verbose: bool = False
    f_tol: float = 1e-8
    g_tol: float = 1e-8
    iterations: Optional[int] = None   # None: use the agent's num_iters
    show_every: int = 10
    maxcor: int = 10                   # L-BFGS memory

    def with_overrides(self, **kwargs) -> 'OptimizerOptions':
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


DEFAULT_OPTIMIZER_OPTIONS = OptimizerOptions()


class ForwardModeAD:
    """Forward-mode automatic differentiation backed by jax."""

    def __init__(self, jit: bool = True):
        self.jit = jit

    def _compile(self, fn):
        return jax.jit(fn) if self.jit else fn

    def value(self, f: Callable) -> Callable:
        return self._compile(f)

    def gradient(self, f: Callable) -> Callable:
        return self._compile(jax.jacfwd(f))

    def value_and_grad(self, f: Callable) -> Callable:
        """x -> (f(x), ∇f(x)) from a single forward-mode pass."""
        def with_value(x):
            v = f(x)
            return v, v

        jac = jax.jacfwd(with_value, has_aux=True)

        def fn(x):
            grad, v = jac(x)
            return v, grad

        return self._compile(fn)

    def derivative(self, f: Callable, x: float) -> float:
        """df/dx at scalar ``x``."""
        return float(jax.jacfwd(f)(float(x)))


class _TimeBudgetExhausted(Exception):
    pass


@dataclass
class MinimizationReport:
    """Summary of the most recent minimiser run."""

    iterations: int = 0
    n_evals: int = 0
    best_f: float = math.inf
    elapsed: float = 0.0
    stopped_on_time: bool = False
    converged: bool = False


class _BestIterateTracker:
    """
    Wraps a value-and-gradient function, remembers the lowest-valued point it was
    evaluated at, and enforces the deadline on every evaluation so a long line
    search cannot overrun the budget.
    """

    def __init__(self, value_and_grad: Callable, deadline: float):
        self._value_and_grad = value_and_grad
        self._deadline = deadline
        self.best_x: Optional[np.ndarray] = None
        self.best_f = math.inf
        self.n_evals = 0
        self.last_f = math.inf
        self.last_gnorm = math.inf

    def __call__(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        self.n_evals += 1
        f, g = self._value_and_grad(x)
        f = float(f)
        g = np.asarray(g, dtype=float)
        self.last_f = f
        self.last_gnorm = float(np.max(np.abs(g))) if g.size else 0.0
        if f < self.best_f:
            self.best_f = f
            self.best_x = np.array(x, dtype=float, copy=True)
        if time.monotonic() > self._deadline:
            raise _TimeBudgetExhausted()
        return f, g


class _TraceTable:
    """Iteration trace printed with rich when verbose."""

    def __init__(self, show_every: int):
        from rich.console import Console
        from rich.table import Table

        self.console = Console()
        self.table = Table(title="EFE minimisation", show_lines=False)
        self.table.add_column("iter", justify="right")
        self.table.add_column("f(u)", justify="right")
        self.table.add_column("max|grad|", justify="right")
        self.table.add_column("elapsed [s]", justify="right")
        self.show_every = max(1, int(show_every))

    def record(self, iteration: int, f: float, gnorm: float, elapsed: float, force: bool = False) -> None:
        if force or iteration % self.show_every == 0:
            self.table.add_row(str(iteration), f"{f:.6e}", f"{gnorm:.3e}", f"{elapsed:.3f}")

    def render(self) -> None:
        self.console.print(self.table)


def _to_scipy_bounds(lower, upper, n: int) -> Bounds:
    lower = np.broadcast_to(np.asarray(lower, dtype=float), (n,))
    upper = np.broadcast_to(np.asarray(upper, dtype=float), (n,))
    if np.any(lower > upper):
        raise ValueError(f"Lower control bound exceeds upper bound: {lower} > {upper}")
    return [
        (None if np.isneginf(lo) else float(lo), None if np.isposinf(hi) else float(hi))
        for lo, hi in zip(lower, upper)
    ]


class LBFGSBMinimizer:
    """Quasi-Newton box-constrained minimiser with a wall-clock budget."""

    def __init__(self, ad: Optional[ForwardModeAD] = None):
        self.ad = ad if ad is not None else ForwardModeAD()
        self.last_report = MinimizationReport()

    def minimize(
        self,
        objective: Callable,
        bounds: Tuple,
        x0,
        options: OptimizerOptions = DEFAULT_OPTIMIZER_OPTIONS,
    ) -> np.ndarray:
        """
        Minimise ``objective`` over the box ``bounds = (lower, upper)`` from ``x0``.

        ``lower``/``upper`` are scalars or per-coordinate arrays; infinite values
        leave that side unbounded. Returns the best iterate found.

        If ``objective`` exposes ``value_and_grad`` (e.g. ``EFEObjective``) it is
        used as is; otherwise one is built with the AD provider.
        """
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        n = x0.shape[0]
        lower, upper = bounds
        scipy_bounds = _to_scipy_bounds(lower, upper, n)
        x0 = np.clip(
            x0,
            [-np.inf if lo is None else lo for lo, _ in scipy_bounds],
            [np.inf if hi is None else hi for _, hi in scipy_bounds],
        )

        value_and_grad = getattr(objective, 'value_and_grad', None)
        if value_and_grad is None:
            value_and_grad = self.ad.value_and_grad(objective)

        started = time.monotonic()
        tracker = _BestIterateTracker(value_and_grad, started + options.time_limit)
        trace = _TraceTable(options.show_every) if options.verbose else None
        maxiter = options.iterations if options.iterations is not None else 3_000
        iteration = 0
        stopped_on_time = False
        converged = False

        def _callback(xk):
            nonlocal iteration
            iteration += 1
            elapsed = time.monotonic() - started
            if trace is not None:
                trace.record(iteration, tracker.last_f, tracker.last_gnorm, elapsed)
            logger.debug("iter %d: f=%.6e |g|=%.3e (%.3fs)", iteration, tracker.last_f, tracker.last_gnorm, elapsed)
            if elapsed > options.time_limit:
                raise _TimeBudgetExhausted()

        try:
            result = minimize(
                tracker,
                x0=x0,
                jac=True,
                method='L-BFGS-B',
                bounds=scipy_bounds,
                callback=_callback,
                options={
                    'maxiter': int(maxiter),
                    'ftol': options.f_tol,
                    'gtol': options.g_tol,
                    'maxcor': options.maxcor,
                },
            )
        except _TimeBudgetExhausted:
            stopped_on_time = True
            logger.warning(
                "EFE minimisation stopped after %d iterations: time limit of %.3fs exhausted; "
                "returning best iterate (f=%.6e)",
                iteration, options.time_limit, tracker.best_f,
            )
            x_best = tracker.best_x if tracker.best_x is not None else x0
        else:
            converged = bool(result.success)
            if not converged:
                logger.warning("EFE minimisation did not converge: %s", result.message)
            x_best = np.asarray(result.x, dtype=float)
            if tracker.best_x is not None and tracker.best_f < float(result.fun):
                x_best = tracker.best_x

        if trace is not None:
            trace.record(iteration, tracker.best_f, tracker.last_gnorm, time.monotonic() - started, force=True)
            trace.render()

        self.last_report = MinimizationReport(
            iterations=iteration,
            n_evals=tracker.n_evals,
            best_f=tracker.best_f,
            elapsed=time.monotonic() - started,
            stopped_on_time=stopped_on_time,
            converged=converged,
        )
        return x_best
