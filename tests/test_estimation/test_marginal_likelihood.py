"""Tests for the marginal likelihood estimator."""

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from metagrowth import (
    Bound,
    GaussianProposal,
    GrowthModelPrior,
    MarginalLikelihoodEstimator,
    MHSample,
    NumericalError,
)


class NormalMeanModel:
    """One observation y ~ N(theta, 1)."""

    def __init__(self, y):
        self.y = y

    def log_likelihood(self, parameters):
        return float(stats.norm.logpdf(self.y, loc=parameters[0], scale=1.0))


@pytest.fixture
def conjugate_setup(rng):
    """Normal likelihood with a N(0, 4) prior and exact posterior draws."""
    model = NormalMeanModel(1.0)
    prior = GrowthModelPrior(np.zeros(1), np.array([2.0]), [Bound(-100.0, 100.0)])
    post_mean, post_var = 0.8, 0.8
    draws = rng.normal(post_mean, np.sqrt(post_var), 3000)
    samples = [
        MHSample(
            np.array([d]),
            model.log_likelihood(np.array([d])) + prior.log_pdf(np.array([d])),
        )
        for d in draws
    ]
    proposal = GaussianProposal(np.zeros(1), np.eye(1) * 0.5)
    return model, prior, samples, proposal


class TestMarginalLikelihoodEstimator:
    """Tests for MarginalLikelihoodEstimator."""

    def test_conjugate_normal(self, conjugate_setup, rng):
        """Test against the closed form N(y; 0, 1 + 4)."""
        model, prior, samples, proposal = conjugate_setup
        estimate = MarginalLikelihoodEstimator().estimate(
            model, prior, np.array([0.8]), samples, proposal, rng
        )
        expected = stats.norm.logpdf(1.0, loc=0.0, scale=np.sqrt(5.0))
        assert_allclose(estimate, expected, atol=0.1)

    def test_restores_proposal_mean(self, conjugate_setup, rng):
        model, prior, samples, proposal = conjugate_setup
        proposal.mean = np.array([3.0])
        MarginalLikelihoodEstimator(n_draws=50).estimate(
            model, prior, np.array([0.8]), samples, proposal, rng
        )
        assert_allclose(proposal.mean, [3.0])

    def test_point_outside_support(self, conjugate_setup, rng):
        model, prior, samples, proposal = conjugate_setup
        with pytest.raises(NumericalError, match="zero prior density"):
            MarginalLikelihoodEstimator().estimate(
                model, prior, np.array([500.0]), samples, proposal, rng
            )

    def test_empty_sample(self, conjugate_setup, rng):
        model, prior, _, proposal = conjugate_setup
        with pytest.raises(ValueError, match="cannot be empty"):
            MarginalLikelihoodEstimator().estimate(
                model, prior, np.array([0.8]), [], proposal, rng
            )

    def test_invalid_n_draws(self):
        with pytest.raises(ValueError, match="n_draws"):
            MarginalLikelihoodEstimator(n_draws=0)
