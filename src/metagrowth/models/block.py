"""Blocks of repeated measurements sharing a residual correlation structure."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy import linalg

from metagrowth.constants import VARIANCE_FLOOR
from metagrowth.exceptions import ConfigurationError, NumericalError

if TYPE_CHECKING:
    from metagrowth.utils.data import GrowthDataStructure


def floor_variances(covariance: NDArray[np.float64]) -> NDArray[np.float64]:
    """Return a copy with non-positive diagonal entries set to VARIANCE_FLOOR."""
    corrected = np.array(covariance, dtype=np.float64, copy=True)
    diag = np.diagonal(corrected).copy()
    diag[diag <= 0] = VARIANCE_FLOOR
    np.fill_diagonal(corrected, diag)
    return corrected


def ar1_correlation(distances: NDArray[np.float64], rho: float) -> NDArray[np.float64]:
    """Power correlation matrix ``rho ** |d_i - d_j|``."""
    lags = np.abs(distances[:, None] - distances[None, :])
    return np.power(rho, lags)


class CovarianceBlock:
    """One group of repeated measurements and its residual covariance.

    The block keeps the raw covariance extracted once from the full residual
    matrix and a derived inverse covariance that depends on the correlation
    parameter. The derived part is invalidated whenever a new parameter
    vector is set and must be rebuilt with :meth:`update_covariance` before
    :meth:`log_likelihood` can be called.

    Parameters
    ----------
    group_key : str
        Identifier of the group (e.g. ``"10_Volume"``).
    indices : list of int
        Rows of the full data structure belonging to this group.
    structure : GrowthDataStructure
        Full response vector, covariates and residual covariance.

    Attributes
    ----------
    y : ndarray of shape (n_g,)
        Observed responses.
    age_yr, time_since_beginning : ndarray of shape (n_g,)
        Covariates.
    distances : ndarray of shape (n_g,)
        Positions used by the serial correlation structure (1, 2, ..., n_g).
    raw_covariance : ndarray of shape (n_g, n_g)
        Residual covariance submatrix with floored diagonal.
    random_effect : float
        Realized random effect of the block (0 for fixed-effect variants).
    """

    def __init__(
        self,
        group_key: str,
        indices: list[int],
        structure: "GrowthDataStructure",
    ) -> None:
        if indices is None or len(indices) == 0:
            raise ConfigurationError(f"Group {group_key} has no observation")

        self.group_key = group_key
        self.indices = [int(i) for i in indices]
        idx = np.asarray(self.indices)

        n = structure.n_observations
        if idx.min() < 0 or idx.max() >= n:
            raise ConfigurationError(
                f"Group {group_key} refers to rows outside [0, {n})"
            )
        if structure.residual_covariance.shape != (n, n):
            raise ConfigurationError(
                f"The residual covariance has shape {structure.residual_covariance.shape}, "
                f"expected ({n}, {n})"
            )

        self.y = structure.y[idx].copy()
        self.age_yr = structure.age_yr[idx].copy()
        self.time_since_beginning = structure.time_since_beginning[idx].copy()
        self.raw_covariance = floor_variances(
            structure.residual_covariance[np.ix_(idx, idx)]
        )
        self.distances = np.arange(1, len(idx) + 1, dtype=np.float64)

        std = np.sqrt(np.diagonal(self.raw_covariance))
        self._full_correlation_covariance = np.outer(std, std)

        self.random_effect = 0.0
        self._inv_covariance: NDArray[np.float64] | None = None
        self._log_determinant = np.nan
        self._ln_constant = np.nan
        self._dirty = True

    @property
    def n_observations(self) -> int:
        return self.y.shape[0]

    @property
    def is_dirty(self) -> bool:
        """Whether the derived covariance must be recomputed."""
        return self._dirty

    @property
    def inverse_covariance(self) -> NDArray[np.float64]:
        self._check_clean()
        return self._inv_covariance.copy()

    @property
    def log_determinant(self) -> float:
        self._check_clean()
        return self._log_determinant

    @property
    def ln_constant(self) -> float:
        """``-k/2 log(2 pi) - 1/2 log|Sigma|`` for the current covariance."""
        self._check_clean()
        return self._ln_constant

    def invalidate(self) -> None:
        self._dirty = True

    def structured_covariance(self, rho: float) -> NDArray[np.float64]:
        """Covariance with variances from the data and AR(1) correlation ``rho``."""
        return self._full_correlation_covariance * ar1_correlation(self.distances, rho)

    def update_covariance(self, rho: float) -> None:
        """Rebuild the inverse covariance and the log normalizing constant.

        Parameters
        ----------
        rho : float
            Serial correlation parameter.

        Raises
        ------
        NumericalError
            If the structured covariance is not positive definite.
        """
        covariance = self.structured_covariance(rho)
        try:
            chol, lower = linalg.cho_factor(covariance, lower=True)
        except linalg.LinAlgError as exc:
            self._dirty = True
            raise NumericalError(
                f"The covariance of block {self.group_key} is not invertible "
                f"(rho = {rho})"
            ) from exc

        k = self.n_observations
        self._inv_covariance = linalg.cho_solve((chol, lower), np.eye(k))
        self._log_determinant = 2.0 * float(np.sum(np.log(np.diag(chol))))
        self._ln_constant = -0.5 * k * np.log(2 * np.pi) - 0.5 * self._log_determinant
        self._dirty = False

    def log_likelihood(self, predictions: NDArray[np.float64]) -> float:
        """Multivariate normal log density of the residuals.

        Parameters
        ----------
        predictions : ndarray of shape (n_g,)
            Model predictions for the block's observations.

        Returns
        -------
        float
            ``-1/2 r' Sigma^-1 r + ln_constant``.

        Raises
        ------
        NumericalError
            If the covariance is stale or the quadratic form is negative.
        """
        self._check_clean()
        residuals = self.y - np.asarray(predictions, dtype=np.float64)
        quadratic_form = float(residuals @ self._inv_covariance @ residuals)
        if quadratic_form < 0 or np.isnan(quadratic_form):
            raise NumericalError(
                f"The sum of squared errors is negative in block {self.group_key}"
            )
        return -0.5 * quadratic_form + self._ln_constant

    def _check_clean(self) -> None:
        if self._dirty:
            raise NumericalError(
                f"The covariance of block {self.group_key} has not been updated "
                "for the current parameters"
            )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"group_key={self.group_key!r}, "
            f"n_observations={self.n_observations})"
        )
