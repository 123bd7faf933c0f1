"""Metropolis-Hastings estimation of growth-model meta-models.

The sampler runs a single random-walk chain:

1. an initial point is chosen as the best of a pool of prior draws;
2. each outer iteration re-centres a Gaussian proposal on the last
   accepted state and draws candidates until one is accepted or the inner
   retry budget is exhausted;
3. during burn-in, every 500 iterations, the proposal covariance is
   learned from the recent samples and rescaled to keep the acceptance
   ratio between 0.2 and 0.4;
4. burn-in samples are discarded and the remainder thinned; the posterior
   mean and covariance of what is left become the estimates, and the log
   marginal likelihood is computed at the posterior mean.

An exhausted retry budget is not an error: the fit is reported as not
converged.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

import numpy as np
from numpy.typing import NDArray

from metagrowth.constants import (
    ADAPTATION_INTERVAL,
    COVARIANCE_RIDGE,
    HIGH_ACCEPTANCE_RATIO,
    LOG_EVERY_N_SAMPLES,
    LOW_ACCEPTANCE_RATIO,
    OPTIMAL_SCALE_FACTOR,
    SCALE_DOWN_FACTOR,
    SCALE_UP_FACTOR,
)
from metagrowth.estimation.base import BaseEstimator, VerboseLevel
from metagrowth.estimation.marginal import MarginalLikelihoodEstimator
from metagrowth.estimation.proposal import GaussianProposal
from metagrowth.exceptions import ConfigurationError
from metagrowth.results.fit_result import MetaModelFitResult

if TYPE_CHECKING:
    from metagrowth.estimation.priors import GrowthModelPrior
    from metagrowth.models.growth_model import GrowthModel
    from metagrowth.typing import SeedLike


class SamplerState(Enum):
    """Lifecycle of a Metropolis-Hastings fit."""

    SEARCHING_INITIAL = "searching_initial"
    BURN_IN = "burn_in"
    SAMPLING = "sampling"
    CONVERGED = "converged"
    FAILED = "failed"


@dataclass(frozen=True)
class MHSample:
    """An accepted draw of the chain.

    Attributes
    ----------
    parameters : ndarray
        Parameter vector.
    log_likelihood : float
        Log-likelihood of the data plus log prior density at ``parameters``.
    """

    parameters: NDArray[np.float64]
    log_likelihood: float

    def __repr__(self) -> str:
        with np.printoptions(precision=5):
            return f"MHSample(llk={self.log_likelihood:.4f}, parameters={self.parameters})"


@dataclass
class SimulationParameters:
    """Settings of the Metropolis-Hastings chain.

    Attributes
    ----------
    nb_realizations : int
        Length of the chain, the initial sample included.
    nb_burn_in : int
        Number of samples discarded at the beginning of the chain.
    one_each : int
        Thinning stride applied after burn-in.
    nb_internal_iter : int
        Maximum number of candidates drawn to obtain the next sample.
    nb_initial_grid : int
        Number of prior draws pooled to choose the initial sample.
    prior_coef_var : float
        Coefficient of variation of the Gaussian prior.
    proposal_coef_var : float
        Coefficient of variation of the initial sampling distribution.
    verbose : VerboseLevel
        Logging level. Has no effect on the results.
    """

    nb_realizations: int = 60000
    nb_burn_in: int = 10000
    one_each: int = 25
    nb_internal_iter: int = 50000
    nb_initial_grid: int = 1000
    prior_coef_var: float = 0.5
    proposal_coef_var: float = 0.01
    verbose: Union[VerboseLevel, bool, int, str] = VerboseLevel.NONE

    def __post_init__(self) -> None:
        if self.nb_realizations < 2:
            raise ConfigurationError("nb_realizations must be at least 2")
        if self.nb_burn_in < 0:
            raise ConfigurationError("nb_burn_in must be non-negative")
        if self.nb_burn_in >= self.nb_realizations:
            raise ConfigurationError("nb_burn_in must be smaller than nb_realizations")
        if self.one_each < 1:
            raise ConfigurationError("one_each must be at least 1")
        if self.nb_internal_iter < 1:
            raise ConfigurationError("nb_internal_iter must be at least 1")
        if self.nb_initial_grid < 1:
            raise ConfigurationError("nb_initial_grid must be at least 1")
        if self.prior_coef_var <= 0 or self.proposal_coef_var <= 0:
            raise ConfigurationError("coefficients of variation must be positive")
        self.verbose = VerboseLevel.resolve(self.verbose)


@dataclass
class StepOutcome:
    """Result of one outer iteration of the accept/reject core."""

    sample: Optional[MHSample]
    trials: int
    successes: int

    @property
    def accepted(self) -> bool:
        return self.sample is not None


def metropolis_step(
    current: MHSample,
    proposal: GaussianProposal,
    prior: "GrowthModelPrior",
    log_likelihood: Callable[[NDArray[np.float64]], float],
    rng: np.random.Generator,
    nb_internal_iter: int,
) -> StepOutcome:
    """Draw candidates around ``current`` until one is accepted.

    Candidates with zero prior density are skipped without evaluating the
    likelihood but still consume the retry budget. A NumericalError raised
    by ``log_likelihood`` for a candidate that passed the prior screening
    propagates.

    Parameters
    ----------
    current : MHSample
        Last accepted sample.
    proposal : GaussianProposal
        Sampling distribution; re-centred on ``current``.
    prior : GrowthModelPrior
        Prior of the parameters.
    log_likelihood : callable
        Log-likelihood of the data, prior excluded.
    rng : numpy.random.Generator
        Random source of the fit.
    nb_internal_iter : int
        Retry budget.

    Returns
    -------
    StepOutcome
        The accepted sample (None when the budget is exhausted) and the
        number of evaluated candidates and acceptances.
    """
    proposal.mean = current.parameters
    trials = 0

    for _ in range(nb_internal_iter):
        candidate = proposal.sample(rng)
        log_prior = prior.log_pdf(candidate)
        if not np.isfinite(log_prior):
            continue

        llk = log_likelihood(candidate) + log_prior
        trials += 1
        ratio = np.exp(min(0.0, llk - current.log_likelihood))
        if rng.random() < ratio:
            return StepOutcome(MHSample(candidate, float(llk)), trials, 1)

    return StepOutcome(None, trials, 0)


@dataclass
class ProposalScaleAdaptation:
    """Tune the proposal from the recent part of the chain.

    Called every ``interval`` outer iterations during burn-in. When
    ``learn_covariance`` is set, the covariance is first replaced by the
    empirical covariance of the later half of the window times
    ``OPTIMAL_SCALE_FACTOR / k``, provided that half holds more samples than
    there are parameters. Then, based on
    the window's acceptance ratio, it is multiplied by ``scale_up`` above
    ``high`` or by ``scale_down`` below ``low``.
    """

    interval: int = ADAPTATION_INTERVAL
    low: float = LOW_ACCEPTANCE_RATIO
    high: float = HIGH_ACCEPTANCE_RATIO
    scale_up: float = SCALE_UP_FACTOR
    scale_down: float = SCALE_DOWN_FACTOR
    learn_covariance: bool = True

    def __post_init__(self) -> None:
        if self.interval < 1:
            raise ConfigurationError("interval must be at least 1")
        if not 0 <= self.low < self.high <= 1:
            raise ConfigurationError("acceptance band must satisfy 0 <= low < high <= 1")

    def is_due(self, iteration: int, nb_burn_in: int) -> bool:
        return 0 < iteration < nb_burn_in and iteration % self.interval == 0

    def __call__(
        self,
        proposal: GaussianProposal,
        trials: int,
        successes: int,
        recent: Optional[Sequence[NDArray[np.float64]]] = None,
    ) -> float:
        """Apply the policy and return the acceptance ratio it was based on.

        Parameters
        ----------
        proposal : GaussianProposal
            Sampling distribution, modified in place.
        trials, successes : int
            Candidates evaluated and accepted since the last call.
        recent : sequence of ndarray, optional
            Parameter vectors accepted since the last call.
        """
        k = proposal.dimension
        settled = [] if recent is None else list(recent)[len(recent) // 2 :]
        if self.learn_covariance and len(settled) > k:
            empirical = np.atleast_2d(np.cov(np.vstack(settled), rowvar=False))
            empirical[np.diag_indices(k)] *= 1.0 + COVARIANCE_RIDGE
            proposal.covariance = empirical * (OPTIMAL_SCALE_FACTOR / k)

        ratio = successes / trials if trials > 0 else 0.0
        if ratio > self.high:
            proposal.scale(self.scale_up)
        elif ratio < self.low:
            proposal.scale(self.scale_down)
        return ratio


class MetropolisHastingsSampler(BaseEstimator):
    """Random-walk Metropolis-Hastings estimator for growth meta-models.

    Each sampler owns its random source, created from ``seed`` at the start
    of every fit, so that fits are reproducible and can run in parallel.

    Parameters
    ----------
    simulation_parameters : SimulationParameters, optional
        Chain settings. Keyword arguments override individual fields.
    seed : int or numpy.random.SeedSequence, optional
        Seed of the random source.
    adaptation : ProposalScaleAdaptation, optional
        Burn-in tuning policy.
    marginal_likelihood : MarginalLikelihoodEstimator, optional
        Estimator of the model evidence.
    **kwargs
        Fields of SimulationParameters.

    Examples
    --------
    >>> sampler = MetropolisHastingsSampler(
    ...     nb_realizations=5000, nb_burn_in=1000, one_each=5, seed=42
    ... )
    >>> result = sampler.fit(GrowthModel(structure, "ChapmanRichards"))
    >>> result.converged
    True
    """

    def __init__(
        self,
        simulation_parameters: SimulationParameters | None = None,
        seed: "SeedLike" = None,
        adaptation: ProposalScaleAdaptation | None = None,
        marginal_likelihood: MarginalLikelihoodEstimator | None = None,
        **kwargs,
    ) -> None:
        if simulation_parameters is None:
            simulation_parameters = SimulationParameters(**kwargs)
        elif kwargs:
            simulation_parameters = dataclasses.replace(simulation_parameters, **kwargs)

        super().__init__(verbose=simulation_parameters.verbose)
        self.simulation_parameters = simulation_parameters
        self.seed = seed
        self.adaptation = adaptation or ProposalScaleAdaptation()
        self.marginal_likelihood = marginal_likelihood or MarginalLikelihoodEstimator()

        self._state: SamplerState | None = None
        self._chain: list[MHSample] = []
        self._trials = 0
        self._successes = 0
        self._post_burn_in_trials = 0
        self._post_burn_in_successes = 0

    @property
    def state(self) -> SamplerState | None:
        """Current state, None before the first fit."""
        return self._state

    @property
    def chain(self) -> list[MHSample]:
        """Accepted samples of the last fit, in order."""
        return list(self._chain)

    @property
    def acceptance_ratio(self) -> float:
        return self._successes / self._trials if self._trials else np.nan

    @property
    def post_burn_in_acceptance_ratio(self) -> float:
        if not self._post_burn_in_trials:
            return np.nan
        return self._post_burn_in_successes / self._post_burn_in_trials

    def fit(self, model: "GrowthModel", **kwargs) -> MetaModelFitResult:
        """Run the chain to completion.

        Parameters
        ----------
        model : GrowthModel
            Model to fit. On convergence its parameters are set to the
            posterior mean and its parameter covariance to the posterior
            covariance.

        Returns
        -------
        MetaModelFitResult
            ``converged`` is False when the retry budget was exhausted.

        Raises
        ------
        NumericalError
            If a likelihood evaluation fails for a candidate inside the
            prior support.
        """
        if model is None:
            raise ConfigurationError("The model must be non null")

        params = self.simulation_parameters
        self._log_prefix = model.label
        self._chain = []
        self._convergence_history = []
        self._trials = self._successes = 0
        self._post_burn_in_trials = self._post_burn_in_successes = 0

        rng = np.random.default_rng(self.seed)
        prior, _ = model.starting_prior_and_bounds(params.prior_coef_var)
        proposal = GaussianProposal(
            prior.mean,
            model.initial_proposal_covariance(
                params.proposal_coef_var, params.prior_coef_var
            ),
        )

        self._state = SamplerState.SEARCHING_INITIAL
        first = self.find_initial_sample(model, prior, rng)
        if first is None:
            self._state = SamplerState.FAILED
            return self._failed_result(model)

        self._chain.append(first)
        self._convergence_history.append(first.log_likelihood)

        if not self._run_chain(model, prior, proposal, rng):
            self._state = SamplerState.FAILED
            return self._failed_result(model)

        final_sample = self.retrieve_final_sample(self._chain)
        draws = np.vstack([s.parameters for s in final_sample])
        mean = draws.mean(axis=0)
        if len(final_sample) > 1:
            covariance = np.atleast_2d(np.cov(draws, rowvar=False))
        else:
            covariance = np.zeros((model.n_parameters, model.n_parameters))

        log_marginal = self.marginal_likelihood.estimate(
            model, prior, mean, final_sample, proposal, rng
        )

        log_likelihood = model.log_likelihood(mean)
        model.parameter_covariance = covariance
        predictions = self._augmented_dataset(model)

        self._log(
            VerboseLevel.MEDIUM,
            f"Final sample had {len(final_sample)} sets of parameters.",
        )
        self._state = SamplerState.CONVERGED

        return MetaModelFitResult(
            model=model,
            converged=True,
            state=self._state,
            parameters=mean,
            parameter_covariance=covariance,
            log_likelihood=log_likelihood,
            log_marginal_likelihood=log_marginal,
            chain=list(self._chain),
            final_sample=final_sample,
            acceptance_ratio=self.acceptance_ratio,
            post_burn_in_acceptance_ratio=self.post_burn_in_acceptance_ratio,
            predictions=predictions,
        )

    def find_initial_sample(
        self,
        model: "GrowthModel",
        prior: "GrowthModelPrior",
        rng: np.random.Generator,
    ) -> MHSample | None:
        """Pick the best of ``nb_initial_grid`` plausible prior draws.

        A draw is plausible when its likelihood is positive, which is tested
        on the log scale so that large datasets do not underflow. The search
        gives up, returning None, after ``100 * nb_initial_grid`` draws.
        """
        start_time = time.perf_counter()
        desired_size = self.simulation_parameters.nb_initial_grid
        max_attempts = 100 * desired_size

        pool: list[MHSample] = []
        attempts = 0
        while len(pool) < desired_size:
            if attempts >= max_attempts:
                self._log(
                    VerboseLevel.MINIMUM,
                    f"Found only {len(pool)} plausible sets of parameters "
                    f"after {attempts} prior draws",
                )
                return None
            attempts += 1

            parameters = prior.sample(rng)
            log_prior = prior.log_pdf(parameters)
            if not np.isfinite(log_prior):
                continue
            llk = model.log_likelihood(parameters)
            if np.isfinite(llk):
                pool.append(MHSample(parameters, float(llk + log_prior)))

        best = max(pool, key=lambda s: s.log_likelihood)
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self._log(
            VerboseLevel.MEDIUM,
            f"Time to find a first set of plausible parameters = {elapsed_ms:.0f} ms",
        )
        self._log(VerboseLevel.HIGH, f"Starting sample: {best}")
        return best

    def retrieve_final_sample(self, chain: list[MHSample]) -> list[MHSample]:
        """Drop the burn-in and keep one sample every ``one_each``."""
        params = self.simulation_parameters
        self._log(
            VerboseLevel.MEDIUM, f"Discarding {params.nb_burn_in} samples as burn in."
        )
        self._log(
            VerboseLevel.MEDIUM,
            f"Selecting one every {params.one_each} samples as final selection.",
        )
        return chain[params.nb_burn_in :: params.one_each]

    def _run_chain(
        self,
        model: "GrowthModel",
        prior: "GrowthModelPrior",
        proposal: GaussianProposal,
        rng: np.random.Generator,
    ) -> bool:
        params = self.simulation_parameters
        start_time = time.perf_counter()
        window_trials = 0
        window_successes = 0

        for i in range(params.nb_realizations - 1):
            in_burn_in = i < params.nb_burn_in
            self._state = SamplerState.BURN_IN if in_burn_in else SamplerState.SAMPLING

            if self.adaptation.is_due(i, params.nb_burn_in):
                window_start = len(self._chain) - window_successes
                recent = [s.parameters for s in self._chain[window_start:]]
                ratio = self.adaptation(
                    proposal, window_trials, window_successes, recent
                )
                self._log(
                    VerboseLevel.MEDIUM,
                    f"After {i} realizations, the acceptance rate is {ratio:.4f}",
                )
                window_trials = 0
                window_successes = 0

            outcome = metropolis_step(
                self._chain[-1],
                proposal,
                prior,
                model.log_likelihood,
                rng,
                params.nb_internal_iter,
            )
            window_trials += outcome.trials
            window_successes += outcome.successes
            self._trials += outcome.trials
            self._successes += outcome.successes
            if not in_burn_in:
                self._post_burn_in_trials += outcome.trials
                self._post_burn_in_successes += outcome.successes

            if not outcome.accepted:
                self._log(VerboseLevel.MINIMUM, f"Stopping after {i} realization")
                return False

            self._chain.append(outcome.sample)
            self._convergence_history.append(outcome.sample.log_likelihood)
            if len(self._chain) % LOG_EVERY_N_SAMPLES == 0:
                self._log_iteration(len(self._chain), outcome.sample.log_likelihood)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self._log(
            VerboseLevel.MEDIUM,
            f"Time to obtain {len(self._chain)} samples = {elapsed_ms:.0f} ms",
        )
        self._log(VerboseLevel.MINIMUM, f"Acceptance ratio = {self.acceptance_ratio:.4f}")
        return True

    def _augmented_dataset(self, model: "GrowthModel"):
        predictions = model.population_predictions()
        df = model.structure.to_dataframe()
        df["pred"] = predictions[:, 0]
        df["predVar"] = predictions[:, 1]
        return df

    def _failed_result(self, model: "GrowthModel") -> MetaModelFitResult:
        self._log(VerboseLevel.MINIMUM, "The model has not converged!")
        return MetaModelFitResult(
            model=model,
            converged=False,
            state=SamplerState.FAILED,
            chain=list(self._chain),
            acceptance_ratio=self.acceptance_ratio,
            post_burn_in_acceptance_ratio=self.post_burn_in_acceptance_ratio,
        )

    def __repr__(self) -> str:
        p = self.simulation_parameters
        return (
            f"{self.__class__.__name__}("
            f"nb_realizations={p.nb_realizations}, "
            f"nb_burn_in={p.nb_burn_in}, "
            f"one_each={p.one_each}, "
            f"seed={self.seed})"
        )
