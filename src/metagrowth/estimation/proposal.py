"""Random-walk sampling distribution for the Metropolis-Hastings chain."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import linalg

from metagrowth.exceptions import NumericalError


class GaussianProposal:
    """Multivariate Gaussian re-centred on the current state of the chain.

    The mean is moved at every iteration. The covariance is rescaled, or
    replaced by a learned one, only during burn-in; each change refreshes
    the cached Cholesky factor.

    Parameters
    ----------
    mean : ndarray of shape (k,)
        Initial centre.
    covariance : ndarray of shape (k, k)
        Initial covariance. Must be positive definite.
    """

    def __init__(
        self,
        mean: NDArray[np.float64],
        covariance: NDArray[np.float64],
    ) -> None:
        self._mean = np.asarray(mean, dtype=np.float64).copy()
        self.covariance = covariance

    @property
    def dimension(self) -> int:
        return self._mean.shape[0]

    @property
    def mean(self) -> NDArray[np.float64]:
        return self._mean.copy()

    @mean.setter
    def mean(self, value: NDArray[np.float64]) -> None:
        value = np.asarray(value, dtype=np.float64)
        if value.shape != self._mean.shape:
            raise ValueError(
                f"mean has shape {value.shape}, expected {self._mean.shape}"
            )
        self._mean = value.copy()

    @property
    def covariance(self) -> NDArray[np.float64]:
        return self._covariance.copy()

    @covariance.setter
    def covariance(self, value: NDArray[np.float64]) -> None:
        value = np.atleast_2d(np.asarray(value, dtype=np.float64))
        k = self.dimension
        if value.shape != (k, k):
            raise ValueError(f"covariance has shape {value.shape}, expected ({k}, {k})")

        try:
            chol = linalg.cholesky(value, lower=True)
        except linalg.LinAlgError as exc:
            raise NumericalError(
                "The proposal covariance is not positive definite"
            ) from exc

        self._covariance = value.copy()
        self._chol = chol
        self._log_norm = -0.5 * k * np.log(2 * np.pi) - np.sum(np.log(np.diag(chol)))

    def scale(self, factor: float) -> None:
        """Multiply the covariance by ``factor``."""
        if factor <= 0:
            raise ValueError("factor must be positive")
        self._covariance = self._covariance * factor
        self._chol = self._chol * np.sqrt(factor)
        self._log_norm -= 0.5 * self.dimension * np.log(factor)

    def sample(self, rng: np.random.Generator) -> NDArray[np.float64]:
        """Draw one candidate around the current mean."""
        return self._mean + self._chol @ rng.standard_normal(self.dimension)

    def log_pdf(
        self,
        x: NDArray[np.float64],
        center: NDArray[np.float64] | None = None,
    ) -> float:
        """Log density of ``x``, optionally under a different centre."""
        mu = self._mean if center is None else np.asarray(center, dtype=np.float64)
        z = linalg.solve_triangular(self._chol, np.asarray(x) - mu, lower=True)
        return float(self._log_norm - 0.5 * np.dot(z, z))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(dimension={self.dimension})"
