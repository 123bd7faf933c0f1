"""Constants for numerical stability and the sampler's tuning policy.

These are true constants that should not be user-configurable.
For configurable values, use SimulationParameters or function arguments.
"""

VARIANCE_FLOOR: float = 1e-4
"""Replacement for non-positive residual variances before inversion."""

ADAPTATION_INTERVAL: int = 500
"""Number of outer iterations between two proposal scale checks."""

LOW_ACCEPTANCE_RATIO: float = 0.2
"""Acceptance ratio under which the proposal covariance is shrunk."""

HIGH_ACCEPTANCE_RATIO: float = 0.4
"""Acceptance ratio above which the proposal covariance is expanded."""

SCALE_UP_FACTOR: float = 1.2 * 1.2
"""Multiplier applied to the proposal covariance when mixing is too timid."""

SCALE_DOWN_FACTOR: float = 0.8 * 0.8
"""Multiplier applied to the proposal covariance when too many rejections occur."""

LOG_EVERY_N_SAMPLES: int = 100
"""Stride for the high verbosity chain trace."""

OPTIMAL_SCALE_FACTOR: float = 2.38**2
"""Random-walk scaling of a learned covariance, divided by the dimension (Gelman et al., 1996)."""

COVARIANCE_RIDGE: float = 1e-9
"""Relative inflation of the diagonal of a learned proposal covariance."""

RANDOM_EFFECT_STEP_FRACTION: float = 0.1
"""Initial proposal spread of random-effect components as a fraction of their prior spread."""
