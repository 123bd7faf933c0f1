"""Result container for meta-model fitting."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    import pandas as pd

    from metagrowth.estimation.metropolis import MHSample, SamplerState


@dataclass
class MetaModelFitResult:
    """Container for the outcome of one Metropolis-Hastings fit.

    A failed fit (inner retry budget exhausted) is reported with
    ``converged=False`` and no estimates, so that a batch of competing
    variants can skip it.

    Parameters
    ----------
    model : GrowthModel
        The fitted model. Its parameters are set to the posterior mean.
    converged : bool
        Whether the chain reached its full length.
    state : SamplerState
        Final state of the sampler.
    parameters : ndarray, optional
        Posterior mean of the parameters.
    parameter_covariance : ndarray, optional
        Posterior covariance of the parameters.
    log_likelihood : float
        Log-likelihood at the posterior mean (prior excluded).
    log_marginal_likelihood : float
        Log model evidence.
    chain : list of MHSample
        Every accepted sample, in order.
    final_sample : list of MHSample
        Samples retained after burn-in and thinning.
    acceptance_ratio : float
        Overall acceptance ratio of the chain.
    post_burn_in_acceptance_ratio : float
        Acceptance ratio after burn-in.
    predictions : pandas.DataFrame, optional
        Copy of the dataset with ``pred`` and ``predVar`` columns.

    Examples
    --------
    >>> result = sampler.fit(model)
    >>> if result.converged:
    ...     print(result.summary())
    ...     table = result.coef()
    """

    model: Any  # GrowthModel
    converged: bool
    state: "SamplerState"
    parameters: Optional[NDArray[np.float64]] = None
    parameter_covariance: Optional[NDArray[np.float64]] = None
    log_likelihood: float = np.nan
    log_marginal_likelihood: float = np.nan
    chain: list["MHSample"] = field(default_factory=list, repr=False)
    final_sample: list["MHSample"] = field(default_factory=list, repr=False)
    acceptance_ratio: float = np.nan
    post_burn_in_acceptance_ratio: float = np.nan
    predictions: Optional["pd.DataFrame"] = field(default=None, repr=False)

    @property
    def variant(self) -> str:
        return self.model.variant.value

    @property
    def parameter_names(self) -> list[str]:
        return self.model.parameter_names

    @property
    def n_observations(self) -> int:
        return self.model.n_observations

    @property
    def n_parameters(self) -> int:
        return self.model.n_parameters

    @property
    def standard_errors(self) -> Optional[NDArray[np.float64]]:
        """Posterior standard deviations of the parameters."""
        if self.parameter_covariance is None:
            return None
        return np.sqrt(np.clip(np.diag(self.parameter_covariance), 0.0, None))

    @property
    def correlation_matrix(self) -> Optional[NDArray[np.float64]]:
        """Posterior correlation matrix of the parameters."""
        se = self.standard_errors
        if se is None:
            return None
        with np.errstate(divide="ignore", invalid="ignore"):
            return self.parameter_covariance / np.outer(se, se)

    def chain_array(self) -> NDArray[np.float64]:
        """Accepted parameter vectors stacked row-wise."""
        if not self.chain:
            return np.empty((0, self.n_parameters))
        return np.vstack([s.parameters for s in self.chain])

    def summary(self) -> str:
        """Generate a formatted summary of the results.

        Returns
        -------
        str
            Formatted summary string.
        """
        width = 72
        lines = []

        lines.append("=" * width)
        lines.append(f"{'Meta-Model MCMC Results':^{width}}")
        lines.append("=" * width)
        lines.append(
            f"Variant:            {self.variant:<30} "
            f"Converged: {str(self.converged):>8}"
        )
        lines.append(
            f"No. Observations:   {self.n_observations:<30} "
            f"Chain:     {len(self.chain):>8}"
        )

        if not self.converged:
            lines.append("-" * width)
            lines.append("The model has not converged!")
            lines.append("=" * width)
            return "\n".join(lines)

        lines.append(
            f"Log-likelihood:     {self.log_likelihood:<30.4f} "
            f"Retained:  {len(self.final_sample):>8}"
        )
        lines.append(f"Log marginal llk:   {self.log_marginal_likelihood:.4f}")
        lines.append(f"Acceptance ratio:   {self.acceptance_ratio:.4f}")
        lines.append("-" * width)
        lines.append(f"{'Parameter':<20} {'Estimate':>14} {'Std.Err':>14}")
        lines.append("-" * width)

        se = self.standard_errors
        for name, est, err in zip(self.parameter_names, self.parameters, se):
            lines.append(f"{name:<20} {est:>14.6f} {err:>14.6f}")

        lines.append("-" * width)
        lines.append("Correlation matrix:")
        with np.printoptions(precision=3, suppress=True, linewidth=width):
            lines.append(str(self.correlation_matrix))
        lines.append("=" * width)
        return "\n".join(lines)

    def coef(self) -> "pd.DataFrame":
        """Return parameter estimates as a DataFrame.

        Returns
        -------
        pandas.DataFrame
            One row per parameter with estimate and standard error.
        """
        import pandas as pd

        if not self.converged:
            return pd.DataFrame(columns=["estimate", "std_error"])

        df = pd.DataFrame(
            {"estimate": self.parameters, "std_error": self.standard_errors},
            index=self.parameter_names,
        )
        df.index.name = "parameter"
        return df

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"variant={self.variant}, "
            f"converged={self.converged}, "
            f"log_marginal_likelihood={self.log_marginal_likelihood:.4f})"
        )
