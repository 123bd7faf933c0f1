"""Hierarchical growth model evaluated block by block."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from metagrowth.constants import RANDOM_EFFECT_STEP_FRACTION
from metagrowth.estimation.priors import Bound, GrowthModelPrior
from metagrowth.exceptions import ConfigurationError
from metagrowth.models.block import CovarianceBlock
from metagrowth.models.curves import GrowthCurve, ModelVariant, get_curve

if TYPE_CHECKING:
    from metagrowth.utils.data import GrowthDataStructure


CORRELATION_START: float = 0.92
CORRELATION_BOUND = Bound(0.90, 0.99)
RANDOM_EFFECT_VARIANCE_START: float = 100.0
RANDOM_EFFECT_VARIANCE_BOUND = Bound(0.0001, 1000.0)


class GrowthModel:
    """A growth-curve meta-model fitted to one output type.

    The residual covariance is block diagonal with serial correlation inside
    each block, so the likelihood is the sum of independent block
    likelihoods. Each block only requires the inversion of an n_g x n_g
    matrix instead of the full N x N covariance.

    The parameter vector is laid out as the curve's fixed effects, then the
    serial correlation parameter, then, for random-effect variants, the
    random-effect variance followed by one realization per block.

    Parameters
    ----------
    structure : GrowthDataStructure
        Responses, covariates, grouping and residual covariance.
    variant : ModelVariant or str
        Growth-curve family to fit.

    Raises
    ------
    ConfigurationError
        If the variant is unknown or the data structure is inconsistent.

    Examples
    --------
    >>> model = GrowthModel(structure, "ChapmanRichards")
    >>> model.log_likelihood(np.array([100.0, 0.02, 2.0, 0.92]))
    """

    def __init__(
        self,
        structure: "GrowthDataStructure",
        variant: ModelVariant | str = ModelVariant.CHAPMAN_RICHARDS,
    ) -> None:
        if structure is None:
            raise ConfigurationError("The data structure must be non null")

        n = structure.n_observations
        if structure.residual_covariance.shape != (n, n):
            raise ConfigurationError(
                f"The residual covariance has shape {structure.residual_covariance.shape} "
                f"but the dataset has {n} observations"
            )

        self.variant = ModelVariant.from_name(variant)
        self.curve: GrowthCurve = get_curve(self.variant)
        self.structure = structure

        self.blocks = [
            CovarianceBlock(key, indices, structure)
            for key, indices in structure.group_indices().items()
        ]

        n_fixed = self.curve.n_fixed_effects
        self.fixed_effects_indices = list(range(n_fixed))
        self.correlation_index = n_fixed
        if self.curve.has_random_effect:
            self.random_effect_variance_index: int | None = n_fixed + 1
            self.random_effect_indices = [
                n_fixed + 2 + i for i in range(len(self.blocks))
            ]
        else:
            self.random_effect_variance_index = None
            self.random_effect_indices = []

        self._parameters: NDArray[np.float64] | None = None
        self._parameter_covariance: NDArray[np.float64] | None = None

    @property
    def label(self) -> str:
        """Prefix used in log messages."""
        return f"{self.structure.stratum_group} Implementation {self.variant.value}"

    @property
    def n_parameters(self) -> int:
        return self.correlation_index + 1 + (
            1 + len(self.blocks) if self.curve.has_random_effect else 0
        )

    @property
    def n_observations(self) -> int:
        return self.structure.n_observations

    @property
    def parameter_names(self) -> list[str]:
        names = list(self.curve.fixed_effect_names) + ["rho"]
        if self.curve.has_random_effect:
            names.append("sigma2_u")
            names.extend(f"u_{block.group_key}" for block in self.blocks)
        return names

    @property
    def parameters(self) -> NDArray[np.float64] | None:
        return None if self._parameters is None else self._parameters.copy()

    @property
    def parameter_covariance(self) -> NDArray[np.float64] | None:
        if self._parameter_covariance is None:
            return None
        return self._parameter_covariance.copy()

    @parameter_covariance.setter
    def parameter_covariance(self, value: NDArray[np.float64] | None) -> None:
        if value is not None:
            value = np.atleast_2d(np.asarray(value, dtype=np.float64))
            if value.shape != (self.n_parameters, self.n_parameters):
                raise ConfigurationError(
                    f"parameter covariance has shape {value.shape}, "
                    f"expected ({self.n_parameters}, {self.n_parameters})"
                )
        self._parameter_covariance = value

    def set_parameters(self, parameters: NDArray[np.float64]) -> None:
        """Set the parameter vector and recompute every block covariance.

        This is the single place where block covariances are refreshed: all
        blocks are marked dirty, then rebuilt from the correlation
        parameter, and random effects are dispatched to their blocks.

        Raises
        ------
        ValueError
            If the vector has the wrong length.
        NumericalError
            If a block covariance cannot be inverted.
        """
        parameters = np.asarray(parameters, dtype=np.float64).ravel()
        if parameters.shape[0] != self.n_parameters:
            raise ValueError(
                f"Expected {self.n_parameters} parameters for {self.variant.value}, "
                f"got {parameters.shape[0]}"
            )
        self._parameters = parameters.copy()

        for block in self.blocks:
            block.invalidate()

        rho = parameters[self.correlation_index]
        for i, block in enumerate(self.blocks):
            block.update_covariance(rho)
            if self.curve.has_random_effect:
                block.random_effect = float(parameters[self.random_effect_indices[i]])
            else:
                block.random_effect = 0.0

    def predict(
        self,
        age_yr: NDArray[np.float64],
        time_since_beginning: NDArray[np.float64],
        random_effect: float = 0.0,
        parameters: NDArray[np.float64] | None = None,
    ) -> NDArray[np.float64]:
        """Evaluate the growth curve at the given covariates."""
        beta = self._fixed_effects(parameters)
        return self.curve.predict(
            beta, np.asarray(age_yr), np.asarray(time_since_beginning), random_effect
        )

    def first_derivative(
        self,
        age_yr: NDArray[np.float64],
        time_since_beginning: NDArray[np.float64],
        random_effect: float = 0.0,
        parameters: NDArray[np.float64] | None = None,
    ) -> NDArray[np.float64]:
        """Gradient of :meth:`predict` with respect to the fixed effects."""
        beta = self._fixed_effects(parameters)
        return self.curve.first_derivative(
            beta, np.asarray(age_yr), np.asarray(time_since_beginning), random_effect
        )

    def log_likelihood(self, parameters: NDArray[np.float64]) -> float:
        """Total log-likelihood of the data given ``parameters``.

        The prior density is not included.
        """
        self.set_parameters(parameters)
        beta = self._parameters[self.fixed_effects_indices]
        total = 0.0
        for block in self.blocks:
            predictions = self.curve.predict(
                beta, block.age_yr, block.time_since_beginning, block.random_effect
            )
            total += block.log_likelihood(predictions)
        return total

    def starting_prior_and_bounds(
        self, coef_var: float
    ) -> tuple[GrowthModelPrior, list[Bound]]:
        """Prior centred on hand-tuned starting values.

        Parameters
        ----------
        coef_var : float
            Coefficient of variation: each Gaussian standard deviation is
            ``coef_var * |starting value|``.

        Returns
        -------
        prior : GrowthModelPrior
        bounds : list of Bound
            Box bounds of the sane region, one per parameter.
        """
        if coef_var <= 0:
            raise ConfigurationError("coef_var must be positive")

        start = list(self.curve.starting_values) + [CORRELATION_START]
        bounds = list(self.curve.bounds) + [CORRELATION_BOUND]
        scale = [abs(v) for v in start]

        variance_index = None
        if self.curve.has_random_effect:
            start.append(RANDOM_EFFECT_VARIANCE_START)
            bounds.append(RANDOM_EFFECT_VARIANCE_BOUND)
            scale.append(RANDOM_EFFECT_VARIANCE_START)
            re_spread = np.sqrt(RANDOM_EFFECT_VARIANCE_START)
            for _ in self.blocks:
                start.append(0.0)
                bounds.append(Bound())
                scale.append(re_spread)
            variance_index = self.random_effect_variance_index

        prior = GrowthModelPrior(
            mean=np.array(start),
            std=np.array(scale) * coef_var,
            bounds=bounds,
            random_effect_variance_index=variance_index,
            random_effect_indices=(
                self.random_effect_indices if variance_index is not None else None
            ),
        )
        return prior, bounds

    def initial_proposal_covariance(
        self, proposal_coef_var: float, prior_coef_var: float
    ) -> NDArray[np.float64]:
        """Diagonal covariance of the first sampling distribution.

        Fixed effects and the correlation parameter step
        ``proposal_coef_var * |starting value|``. The random-effect variance
        and realizations have no informative starting value; they step
        RANDOM_EFFECT_STEP_FRACTION of their prior spread, which is
        ``prior_coef_var * sigma2_u start`` and ``sqrt(sigma2_u start)``.
        """
        if proposal_coef_var <= 0 or prior_coef_var <= 0:
            raise ConfigurationError("coefficients of variation must be positive")

        start = list(self.curve.starting_values) + [CORRELATION_START]
        std = [abs(v) * proposal_coef_var for v in start]
        if self.curve.has_random_effect:
            std.append(
                RANDOM_EFFECT_STEP_FRACTION * prior_coef_var * RANDOM_EFFECT_VARIANCE_START
            )
            std.extend(
                [RANDOM_EFFECT_STEP_FRACTION * np.sqrt(RANDOM_EFFECT_VARIANCE_START)]
                * len(self.blocks)
            )
        return np.diag(np.square(std))

    def prediction_variance(
        self,
        age_yr: NDArray[np.float64],
        time_since_beginning: NDArray[np.float64],
        random_effect: float = 0.0,
    ) -> NDArray[np.float64]:
        """Delta-method variance of the predictions.

        Raises
        ------
        ConfigurationError
            If the parameter covariance has not been set.
        """
        if self._parameter_covariance is None:
            raise ConfigurationError(
                "The variance-covariance matrix of the parameter estimates has not been set"
            )
        gradient = self.first_derivative(age_yr, time_since_beginning, random_effect)
        idx = self.fixed_effects_indices
        v_fixed = self._parameter_covariance[np.ix_(idx, idx)]
        return np.einsum("...i,ij,...j->...", gradient, v_fixed, gradient)

    def population_predictions(
        self, include_variance: bool = True
    ) -> NDArray[np.float64]:
        """Population-averaged predictions for every observation.

        Returns
        -------
        ndarray of shape (n_observations, 2)
            Predictions (random effects set to 0) and their variances, in
            the row order of the data structure. The variance column is NaN
            when no parameter covariance is available or when
            ``include_variance`` is False.
        """
        output = np.full((self.n_observations, 2), np.nan)
        with_variance = include_variance and self._parameter_covariance is not None
        for block in self.blocks:
            output[block.indices, 0] = self.predict(
                block.age_yr, block.time_since_beginning
            )
            if with_variance:
                output[block.indices, 1] = self.prediction_variance(
                    block.age_yr, block.time_since_beginning
                )
        return output

    def _fixed_effects(
        self, parameters: NDArray[np.float64] | None
    ) -> NDArray[np.float64]:
        if parameters is None:
            if self._parameters is None:
                raise ConfigurationError("The parameters have not been set")
            parameters = self._parameters
        parameters = np.asarray(parameters, dtype=np.float64)
        return parameters[self.fixed_effects_indices]

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"variant={self.variant.value}, "
            f"n_blocks={len(self.blocks)}, "
            f"n_parameters={self.n_parameters})"
        )
