"""Data simulation utilities for growth meta-models."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import block_diag

from metagrowth.models.block import ar1_correlation
from metagrowth.models.curves import ModelVariant, get_curve
from metagrowth.utils.data import GrowthDataStructure


def simulate_growth_data(
    parameters: Optional[NDArray[np.float64]] = None,
    variant: ModelVariant | str = ModelVariant.CHAPMAN_RICHARDS,
    initial_ages: Sequence[float] = (20.0, 60.0, 100.0),
    times: Sequence[float] = (0.0, 10.0, 20.0, 30.0, 40.0),
    residual_variance: float = 1.0,
    rho: float = 0.0,
    random_effect_std: float = 0.0,
    output_type: str = "Volume",
    stratum_group: str = "Stratum",
    seed: Optional[int] = None,
) -> GrowthDataStructure:
    """Simulate repeated growth measurements from a known curve.

    Parameters
    ----------
    parameters : ndarray, optional
        Fixed effects of the curve. Defaults to the curve's starting values,
        e.g. ``(100, 0.02, 2)`` for Chapman-Richards.
    variant : ModelVariant or str, default="ChapmanRichards"
        Growth-curve family.
    initial_ages : sequence of float
        Initial age of each simulated run; one group per initial age.
    times : sequence of float
        Measurement times since the start of each run.
    residual_variance : float, default=1.0
        Residual variance of every observation.
    rho : float, default=0.0
        Serial correlation of the residuals inside a group.
    random_effect_std : float, default=0.0
        Standard deviation of a group-level shift of the asymptote.
    output_type : str, default="Volume"
        Output type name.
    stratum_group : str, default="Stratum"
        Stratum group label.
    seed : int, optional
        Random seed for reproducibility.

    Returns
    -------
    GrowthDataStructure
        Simulated data with the covariance used to generate the noise.

    Examples
    --------
    >>> data = simulate_growth_data(residual_variance=4.0, seed=42)
    >>> data.n_observations
    15
    """
    if residual_variance <= 0:
        raise ValueError("residual_variance must be positive")
    if not 0 <= abs(rho) < 1:
        raise ValueError("rho must be in (-1, 1)")

    rng = np.random.default_rng(seed)
    curve = get_curve(variant)
    if parameters is None:
        beta = np.array(curve.starting_values, dtype=np.float64)
    else:
        beta = np.asarray(parameters, dtype=np.float64)

    times_arr = np.asarray(times, dtype=np.float64)
    n_times = len(times_arr)
    distances = np.arange(1, n_times + 1, dtype=np.float64)
    group_cov = residual_variance * ar1_correlation(distances, rho)

    y, init_age, time_since = [], [], []
    for age0 in initial_ages:
        u = rng.normal(0.0, random_effect_std) if random_effect_std > 0 else 0.0
        mean = curve.predict(beta, age0 + times_arr, times_arr, u)
        y.append(rng.multivariate_normal(mean, group_cov))
        init_age.append(np.full(n_times, age0, dtype=np.float64))
        time_since.append(times_arr)

    covariance = block_diag(*[group_cov] * len(initial_ages))
    return GrowthDataStructure(
        y=np.concatenate(y),
        initial_age_yr=np.concatenate(init_age),
        time_since_beginning=np.concatenate(time_since),
        residual_covariance=covariance,
        output_type=output_type,
        stratum_group=stratum_group,
    )
