"""
===============================================================================
FEATURES — Polynomial Basis Expansion and Lag Buffers
===============================================================================

The NARX regressor is built from two lag buffers:

    ybuffer = [y_{t-1}, ..., y_{t-delay_out}]          (most recent first)
    ubuffer = [u_t, u_{t-1}, ..., u_{t-delay_inp}]     (most recent first)

and expanded with an ELEMENTWISE power basis:

    pol(x, p, zero_order) = [1?, x, x², ..., x^p]

No cross terms are generated, so dim = len(x)·p + (1 if zero_order else 0).

Both functions are written against jax.numpy so they can sit inside the
differentiated EFE rollout; they accept plain numpy arrays as well.
===============================================================================
"""

from __future__ import annotations

import jax.numpy as jnp


def pol(x, degree: int = 1, zero_order: bool = True):
    """Elementwise polynomial basis expansion of ``x`` up to power ``degree``."""
    if degree < 1:
        raise ValueError(f"degree must be >= 1, got {degree}")
    x = jnp.asarray(x, dtype=jnp.float64)
    powers = [x ** k for k in range(1, degree + 1)]
    if zero_order:
        powers.insert(0, jnp.ones(1, dtype=jnp.float64))
    return jnp.concatenate(powers)


def feature_dimension(input_dim: int, degree: int = 1, zero_order: bool = True) -> int:
    """Length of ``pol`` output for an input vector of length ``input_dim``."""
    return int(pol(jnp.zeros(input_dim), degree=degree, zero_order=zero_order).shape[0])


def backshift(x, a):
    """
    Push ``a`` onto the front of buffer ``x`` and drop the oldest element.

    Fixed-capacity FIFO: backshift(x, a)[0] == a and backshift(x, a)[1:] == x[:-1].
    A zero-length buffer stays empty.
    """
    x = jnp.asarray(x, dtype=jnp.float64)
    if x.shape[0] == 0:
        return x
    head = jnp.reshape(jnp.asarray(a, dtype=jnp.float64), (1,))
    return jnp.concatenate([head, x[:-1]])


def regressor(ybuffer, ubuffer, degree: int = 1, zero_order: bool = True):
    """Feature vector ϕ from the concatenated (ybuffer, ubuffer) lags."""
    return pol(
        jnp.concatenate([jnp.asarray(ybuffer, dtype=jnp.float64), jnp.asarray(ubuffer, dtype=jnp.float64)]),
        degree=degree,
        zero_order=zero_order,
    )
