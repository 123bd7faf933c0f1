from metagrowth.estimation.base import BaseEstimator, VerboseLevel
from metagrowth.estimation.marginal import MarginalLikelihoodEstimator
from metagrowth.estimation.metropolis import (
    MetropolisHastingsSampler,
    MHSample,
    ProposalScaleAdaptation,
    SamplerState,
    SimulationParameters,
    StepOutcome,
    metropolis_step,
)
from metagrowth.estimation.priors import Bound, GrowthModelPrior
from metagrowth.estimation.proposal import GaussianProposal

__all__ = [
    # Estimators
    "BaseEstimator",
    "MetropolisHastingsSampler",
    "MarginalLikelihoodEstimator",
    # Chain pieces
    "MHSample",
    "SamplerState",
    "SimulationParameters",
    "StepOutcome",
    "ProposalScaleAdaptation",
    "metropolis_step",
    "VerboseLevel",
    # Distributions
    "Bound",
    "GrowthModelPrior",
    "GaussianProposal",
]
