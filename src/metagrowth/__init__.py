from typing import Optional, Union

from metagrowth._version import __version__
from metagrowth.estimation.base import VerboseLevel
from metagrowth.estimation.marginal import MarginalLikelihoodEstimator
from metagrowth.estimation.metropolis import (
    MetropolisHastingsSampler,
    MHSample,
    ProposalScaleAdaptation,
    SamplerState,
    SimulationParameters,
)
from metagrowth.estimation.priors import Bound, GrowthModelPrior
from metagrowth.estimation.proposal import GaussianProposal
from metagrowth.exceptions import ConfigurationError, MetaModelError, NumericalError
from metagrowth.models.block import CovarianceBlock
from metagrowth.models.curves import ModelVariant
from metagrowth.models.growth_model import GrowthModel
from metagrowth.results.fit_result import MetaModelFitResult
from metagrowth.typing import SeedLike
from metagrowth.utils.data import GrowthDataStructure
from metagrowth.utils.selection import fit_competing_models, select_best_model
from metagrowth.utils.simulation import simulate_growth_data


def fit_metamodel(
    structure: GrowthDataStructure,
    variant: Union[ModelVariant, str] = ModelVariant.CHAPMAN_RICHARDS,
    nb_realizations: int = 60000,
    nb_burn_in: int = 10000,
    one_each: int = 25,
    nb_internal_iter: int = 50000,
    nb_initial_grid: int = 1000,
    prior_coef_var: float = 0.5,
    proposal_coef_var: float = 0.01,
    verbose: Union[VerboseLevel, bool, int, str] = VerboseLevel.NONE,
    seed: SeedLike = None,
    simulation_parameters: Optional[SimulationParameters] = None,
) -> MetaModelFitResult:
    """Fit a growth meta-model by Metropolis-Hastings.

    Parameters
    ----------
    structure : GrowthDataStructure
        Responses, covariates, grouping and residual covariance.
    variant : ModelVariant or str, default="ChapmanRichards"
        Growth-curve family.
    nb_realizations, nb_burn_in, one_each, nb_internal_iter, nb_initial_grid
        Chain settings, see SimulationParameters.
    prior_coef_var, proposal_coef_var : float
        Coefficients of variation of the prior and of the initial sampling
        distribution.
    verbose : VerboseLevel, bool, int or str
        Logging level.
    seed : int or numpy.random.SeedSequence, optional
        Seed of the fit's random source.
    simulation_parameters : SimulationParameters, optional
        Overrides the individual chain settings when given.

    Returns
    -------
    MetaModelFitResult

    Examples
    --------
    >>> data = simulate_growth_data(seed=1)
    >>> result = fit_metamodel(data, nb_realizations=5000, nb_burn_in=1000,
    ...                        one_each=5, seed=42)
    >>> result.coef()
    """
    if simulation_parameters is None:
        simulation_parameters = SimulationParameters(
            nb_realizations=nb_realizations,
            nb_burn_in=nb_burn_in,
            one_each=one_each,
            nb_internal_iter=nb_internal_iter,
            nb_initial_grid=nb_initial_grid,
            prior_coef_var=prior_coef_var,
            proposal_coef_var=proposal_coef_var,
            verbose=verbose,
        )

    model = GrowthModel(structure, variant)
    sampler = MetropolisHastingsSampler(simulation_parameters, seed=seed)
    return sampler.fit(model)


__all__ = [
    "__version__",
    # Entry points
    "fit_metamodel",
    "fit_competing_models",
    "select_best_model",
    "simulate_growth_data",
    # Data and models
    "GrowthDataStructure",
    "GrowthModel",
    "CovarianceBlock",
    "ModelVariant",
    # Estimation
    "MetropolisHastingsSampler",
    "MarginalLikelihoodEstimator",
    "SimulationParameters",
    "ProposalScaleAdaptation",
    "SamplerState",
    "MHSample",
    "VerboseLevel",
    "Bound",
    "GrowthModelPrior",
    "GaussianProposal",
    # Results and errors
    "MetaModelFitResult",
    "MetaModelError",
    "ConfigurationError",
    "NumericalError",
]
