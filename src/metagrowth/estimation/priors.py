"""Prior distributions over growth-model parameter vectors.

This module provides:
- Bound: a closed interval checked against a single parameter
- GrowthModelPrior: independent truncated Gaussians on the fixed-effect,
  correlation and variance parameters, and a hierarchical N(0, sigma2_u)
  prior on block random effects
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from metagrowth.exceptions import ConfigurationError


@dataclass(frozen=True)
class Bound:
    """Closed interval [lower, upper] for one parameter."""

    lower: float = -np.inf
    upper: float = np.inf

    def __post_init__(self) -> None:
        if self.lower >= self.upper:
            raise ConfigurationError(
                f"lower bound ({self.lower}) must be smaller than upper bound ({self.upper})"
            )

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper


class GrowthModelPrior:
    """Prior over the full parameter vector of a growth model.

    Every component that is not a random-effect realization follows a
    Gaussian centred on its starting value and truncated to its bounds, so
    draws outside the sane region have zero density. Random-effect
    realizations, when present, follow N(0, sigma2_u) where sigma2_u is the
    parameter at ``random_effect_variance_index``.

    The Gaussian part (means and ``std``) also defines the starting sampling
    distribution: :attr:`covariance` returns ``diag(std**2)``, with the
    random-effect entries using the spread supplied by the model.

    Parameters
    ----------
    mean : ndarray of shape (n_parameters,)
        Starting values.
    std : ndarray of shape (n_parameters,)
        Standard deviations of the Gaussian part.
    bounds : list of Bound
        One bound per parameter. Random-effect entries are usually unbounded.
    random_effect_variance_index : int, optional
        Index of sigma2_u in the parameter vector.
    random_effect_indices : list of int, optional
        Indices of the random-effect realizations.
    """

    def __init__(
        self,
        mean: NDArray[np.float64],
        std: NDArray[np.float64],
        bounds: list[Bound],
        random_effect_variance_index: int | None = None,
        random_effect_indices: list[int] | None = None,
    ) -> None:
        mean = np.asarray(mean, dtype=np.float64)
        std = np.asarray(std, dtype=np.float64)

        if mean.ndim != 1 or std.shape != mean.shape:
            raise ConfigurationError("mean and std must be 1D arrays of equal length")
        if len(bounds) != mean.shape[0]:
            raise ConfigurationError(
                f"Expected {mean.shape[0]} bounds, got {len(bounds)}"
            )
        if np.any(std <= 0):
            raise ConfigurationError("std must be positive")
        if (random_effect_variance_index is None) != (random_effect_indices is None):
            raise ConfigurationError(
                "random_effect_variance_index and random_effect_indices go together"
            )

        self._mean = mean
        self._std = std
        self.bounds = list(bounds)
        self.random_effect_variance_index = random_effect_variance_index
        self.random_effect_indices = (
            list(random_effect_indices) if random_effect_indices is not None else []
        )

        re_mask = np.zeros(mean.shape[0], dtype=bool)
        re_mask[self.random_effect_indices] = True
        self._gaussian_indices = np.flatnonzero(~re_mask)

        self._lower = np.array([b.lower for b in self.bounds])
        self._upper = np.array([b.upper for b in self.bounds])
        idx = self._gaussian_indices
        self._a = (self._lower[idx] - mean[idx]) / std[idx]
        self._b = (self._upper[idx] - mean[idx]) / std[idx]

    @property
    def n_parameters(self) -> int:
        return self._mean.shape[0]

    @property
    def mean(self) -> NDArray[np.float64]:
        """Starting values."""
        return self._mean.copy()

    @property
    def std(self) -> NDArray[np.float64]:
        return self._std.copy()

    @property
    def covariance(self) -> NDArray[np.float64]:
        """Diagonal covariance of the Gaussian part."""
        return np.diag(self._std**2)

    @property
    def has_random_effects(self) -> bool:
        return self.random_effect_variance_index is not None

    def in_bounds(self, parameters: NDArray[np.float64]) -> bool:
        """Check every component against its bound."""
        parameters = np.asarray(parameters, dtype=np.float64)
        return bool(
            np.all(parameters >= self._lower) and np.all(parameters <= self._upper)
        )

    def log_pdf(self, parameters: NDArray[np.float64]) -> float:
        """Log prior density, ``-inf`` outside the support."""
        parameters = np.asarray(parameters, dtype=np.float64)
        if parameters.shape != self._mean.shape:
            raise ValueError(
                f"parameters has shape {parameters.shape}, expected {self._mean.shape}"
            )
        if not np.all(np.isfinite(parameters)) or not self.in_bounds(parameters):
            return -np.inf

        idx = self._gaussian_indices
        log_density = float(
            np.sum(
                stats.truncnorm.logpdf(
                    parameters[idx],
                    self._a,
                    self._b,
                    loc=self._mean[idx],
                    scale=self._std[idx],
                )
            )
        )

        if self.has_random_effects:
            variance = parameters[self.random_effect_variance_index]
            if variance <= 0:
                return -np.inf
            log_density += float(
                np.sum(
                    stats.norm.logpdf(
                        parameters[self.random_effect_indices],
                        loc=0.0,
                        scale=np.sqrt(variance),
                    )
                )
            )

        return log_density

    def pdf(self, parameters: NDArray[np.float64]) -> float:
        """Prior density."""
        return float(np.exp(self.log_pdf(parameters)))

    def sample(self, rng: np.random.Generator | None = None) -> NDArray[np.float64]:
        """Draw one parameter vector from the prior."""
        if rng is None:
            rng = np.random.default_rng()

        draw = self._mean.copy()
        idx = self._gaussian_indices
        draw[idx] = stats.truncnorm.rvs(
            self._a,
            self._b,
            loc=self._mean[idx],
            scale=self._std[idx],
            random_state=rng,
        )

        if self.has_random_effects:
            sd = np.sqrt(draw[self.random_effect_variance_index])
            draw[self.random_effect_indices] = rng.normal(
                0.0, sd, len(self.random_effect_indices)
            )

        return draw

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"n_parameters={self.n_parameters}, "
            f"random_effects={len(self.random_effect_indices)})"
        )
