"""
===============================================================================
AGENT CONFIGURATION — Structural Settings for the NARX EFE Agent
===============================================================================

Fixed at construction and immutable for the agent's lifetime:

    delay_inp               Number of past inputs beyond u_t in the regressor
    delay_out               Number of past outputs in the regressor
    pol_degree              Highest elementwise power in the basis
    zero_order              Prepend a constant 1.0 feature
    time_horizon            Planning horizon H for EFE minimisation
    num_iters               Default optimiser iteration budget
    control_prior_precision η, precision of the zero-mean Gaussian control prior

The model ORDER (feature dimension) is derived from the first four fields:

    order = (1 + delay_inp + delay_out) · pol_degree + zero_order
===============================================================================
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

from narx_efe.features import feature_dimension


@dataclass(frozen=True)
class AgentConfig:
    """Structural configuration of a NARX EFE agent."""

    delay_inp: int = 1
    delay_out: int = 1
    pol_degree: int = 1
    zero_order: bool = True
    time_horizon: int = 1
    num_iters: int = 10
    control_prior_precision: float = 0.0

    def __post_init__(self):
        if self.delay_inp < 0 or self.delay_out < 0:
            raise ValueError(
                f"delays must be non-negative (delay_inp={self.delay_inp}, delay_out={self.delay_out})"
            )
        if self.pol_degree < 1:
            raise ValueError(f"pol_degree must be >= 1, got {self.pol_degree}")
        if self.time_horizon < 1:
            raise ValueError(f"time_horizon must be >= 1, got {self.time_horizon}")
        if self.num_iters < 1:
            raise ValueError(f"num_iters must be >= 1, got {self.num_iters}")
        if self.control_prior_precision < 0:
            raise ValueError(
                f"control_prior_precision must be >= 0, got {self.control_prior_precision}"
            )

    @property
    def input_dim(self) -> int:
        """Length of the concatenated (ybuffer, ubuffer) lag vector."""
        return 1 + self.delay_inp + self.delay_out

    @property
    def order(self) -> int:
        return feature_dimension(self.input_dim, degree=self.pol_degree, zero_order=self.zero_order)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AgentConfig':
        """Build from a dict, ignoring unknown keys (e.g. a serialized agent state)."""
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


DEFAULT_AGENT_CONFIG = AgentConfig()
