"""Marginal likelihood (model evidence) of a fitted growth model.

The estimate follows the identity of Chib & Jeliazkov (2001) for
Metropolis-Hastings output. At a high density point theta*,

    pi(theta* | y) = E_post[a(theta, theta*) q(theta* | theta)]
                     / E_q(.|theta*)[a(theta*, theta)]

where ``a`` is the capped acceptance probability and ``q`` the sampling
distribution. Then ``log p(y) = log L(theta*) + log pi(theta*) - log pi(theta* | y)``.

References
----------
Chib, S. & Jeliazkov, I. (2001). Marginal likelihood from the
Metropolis-Hastings output. JASA, 96(453), 270-281.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy.special import logsumexp

from metagrowth.exceptions import NumericalError

if TYPE_CHECKING:
    from metagrowth.estimation.metropolis import MHSample
    from metagrowth.estimation.priors import GrowthModelPrior
    from metagrowth.estimation.proposal import GaussianProposal
    from metagrowth.models.growth_model import GrowthModel


class MarginalLikelihoodEstimator:
    """Importance-sampling estimate of the log marginal likelihood.

    Both averages are fresh Monte Carlo computations; the only state shared
    with the chain is the frozen list of posterior samples. The proposal's
    mean is restored on exit.

    Parameters
    ----------
    n_draws : int, optional
        Number of draws around the evaluation point for the denominator.
        Defaults to the number of posterior samples.
    """

    def __init__(self, n_draws: int | None = None) -> None:
        if n_draws is not None and n_draws < 1:
            raise ValueError("n_draws must be at least 1")
        self.n_draws = n_draws

    def estimate(
        self,
        model: "GrowthModel",
        prior: "GrowthModelPrior",
        point: NDArray[np.float64],
        posterior_samples: Sequence["MHSample"],
        proposal: "GaussianProposal",
        rng: np.random.Generator,
    ) -> float:
        """Compute ``log p(y)`` at ``point``.

        Parameters
        ----------
        model : GrowthModel
            Model providing the log-likelihood.
        prior : GrowthModelPrior
            Prior used during the fit.
        point : ndarray
            Evaluation point, usually the posterior mean.
        posterior_samples : sequence of MHSample
            Final (burnt-in and thinned) posterior sample.
        proposal : GaussianProposal
            Final sampling distribution of the chain.
        rng : numpy.random.Generator
            Random source of the fit.

        Returns
        -------
        float
            Log marginal likelihood.

        Raises
        ------
        NumericalError
            If ``point`` lies outside the prior support.
        """
        if len(posterior_samples) == 0:
            raise ValueError("posterior_samples cannot be empty")

        point = np.asarray(point, dtype=np.float64)
        log_prior_point = prior.log_pdf(point)
        if not np.isfinite(log_prior_point):
            raise NumericalError(
                "The evaluation point of the marginal likelihood has zero prior density"
            )
        llk_point = model.log_likelihood(point) + log_prior_point

        log_numerator_terms = np.array(
            [
                min(0.0, llk_point - sample.log_likelihood)
                + proposal.log_pdf(point, center=sample.parameters)
                for sample in posterior_samples
            ]
        )
        log_numerator = logsumexp(log_numerator_terms) - np.log(len(posterior_samples))

        n_draws = self.n_draws or len(posterior_samples)
        original_mean = proposal.mean
        proposal.mean = point
        try:
            log_ratios = np.full(n_draws, -np.inf)
            for j in range(n_draws):
                candidate = proposal.sample(rng)
                log_prior = prior.log_pdf(candidate)
                if np.isfinite(log_prior):
                    llk = model.log_likelihood(candidate) + log_prior
                    log_ratios[j] = min(0.0, llk - llk_point)
        finally:
            proposal.mean = original_mean

        log_denominator = logsumexp(log_ratios) - np.log(n_draws)
        log_posterior_ordinate = log_numerator - log_denominator
        return float(llk_point - log_posterior_ordinate)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_draws={self.n_draws})"
