"""Tests for the block-structured growth model."""

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats
from scipy.linalg import block_diag

from metagrowth import ConfigurationError, GrowthModel, ModelVariant
from metagrowth.models.block import ar1_correlation


class TestGrowthModelLayout:
    """Tests for parameter layout and construction."""

    def test_fixed_effect_variant(self, growth_data):
        model = GrowthModel(growth_data, "ChapmanRichards")
        assert len(model.blocks) == 3
        assert model.n_parameters == 4
        assert model.fixed_effects_indices == [0, 1, 2]
        assert model.correlation_index == 3
        assert model.random_effect_variance_index is None
        assert model.parameter_names == ["b1", "b2", "b3", "rho"]

    def test_random_effect_variant(self, growth_data):
        model = GrowthModel(growth_data, ModelVariant.CHAPMAN_RICHARDS_WITH_RANDOM_EFFECT)
        assert model.n_parameters == 4 + 1 + 3
        assert model.random_effect_variance_index == 4
        assert model.random_effect_indices == [5, 6, 7]
        assert model.parameter_names[4] == "sigma2_u"
        assert model.parameter_names[5] == "u_20_Volume"

    def test_simplified_variant(self, growth_data):
        model = GrowthModel(growth_data, ModelVariant.SIMPLIFIED_CHAPMAN_RICHARDS)
        assert model.n_parameters == 3
        assert model.parameter_names == ["b1", "b2", "rho"]

    def test_covariance_mismatch(self, growth_data):
        """Test the covariance is checked against the data again."""
        growth_data.residual_covariance = np.eye(growth_data.n_observations - 1)
        with pytest.raises(ConfigurationError, match="observations"):
            GrowthModel(growth_data)

    def test_null_structure(self):
        with pytest.raises(ConfigurationError, match="non null"):
            GrowthModel(None)

    def test_label(self, growth_data):
        model = GrowthModel(growth_data)
        assert model.label == "Stratum Implementation ChapmanRichards"


class TestGrowthModelLikelihood:
    """Tests for the block likelihood."""

    def test_matches_full_multivariate_normal(self, growth_data):
        """Test the sum of block likelihoods equals the full density."""
        model = GrowthModel(growth_data)
        theta = np.array([95.0, 0.021, 2.1, 0.93])
        llk = model.log_likelihood(theta)

        mean = 95.0 * (1 - np.exp(-0.021 * growth_data.age_yr)) ** 2.1
        blocks = []
        for block in model.blocks:
            std = np.sqrt(np.diag(block.raw_covariance))
            blocks.append(np.outer(std, std) * ar1_correlation(block.distances, 0.93))
        expected = stats.multivariate_normal.logpdf(
            growth_data.y, mean=mean, cov=block_diag(*blocks)
        )
        assert_allclose(llk, expected, rtol=1e-10)

    def test_true_parameters_beat_distant_ones(self, growth_data):
        model = GrowthModel(growth_data)
        good = model.log_likelihood(np.array([100.0, 0.02, 2.0, 0.92]))
        bad = model.log_likelihood(np.array([300.0, 0.05, 4.0, 0.92]))
        assert np.isfinite(good)
        assert good > bad

    def test_random_effects_dispatched_to_blocks(self, growth_data):
        model = GrowthModel(growth_data, ModelVariant.CHAPMAN_RICHARDS_WITH_RANDOM_EFFECT)
        theta = np.array([100.0, 0.02, 2.0, 0.92, 50.0, -1.0, 0.0, 2.0])
        model.set_parameters(theta)
        assert [b.random_effect for b in model.blocks] == [-1.0, 0.0, 2.0]
        assert all(not b.is_dirty for b in model.blocks)

    def test_wrong_parameter_length(self, growth_data):
        model = GrowthModel(growth_data)
        with pytest.raises(ValueError, match="Expected 4 parameters"):
            model.log_likelihood(np.array([100.0, 0.02, 2.0]))

    def test_single_observation(self, single_observation_data):
        model = GrowthModel(single_observation_data)
        llk = model.log_likelihood(np.array([100.0, 0.02, 2.0, 0.92]))
        pred = 100 * (1 - np.exp(-0.02 * 50.0)) ** 2
        assert_allclose(llk, stats.norm.logpdf(55.0, loc=pred, scale=2.0))


class TestStartingPrior:
    """Tests for the starting prior and bounds."""

    def test_fixed_effect_prior(self, growth_data):
        model = GrowthModel(growth_data)
        prior, bounds = model.starting_prior_and_bounds(0.01)
        assert_allclose(prior.mean, [100.0, 0.02, 2.0, 0.92])
        assert_allclose(prior.std, [1.0, 0.0002, 0.02, 0.0092])
        assert len(bounds) == 4
        assert bounds[3].lower == 0.90 and bounds[3].upper == 0.99

    def test_random_effect_prior(self, growth_data):
        model = GrowthModel(growth_data, ModelVariant.CHAPMAN_RICHARDS_WITH_RANDOM_EFFECT)
        prior, bounds = model.starting_prior_and_bounds(0.5)
        assert prior.n_parameters == model.n_parameters
        assert prior.has_random_effects
        assert_allclose(prior.mean[5:], 0.0)
        assert np.isinf(bounds[5].upper)

    def test_non_positive_coef_var(self, growth_data):
        model = GrowthModel(growth_data)
        with pytest.raises(ConfigurationError, match="coef_var"):
            model.starting_prior_and_bounds(0.0)


class TestInitialProposalCovariance:
    """Tests for the first sampling distribution."""

    def test_fixed_effect_steps(self, growth_data):
        model = GrowthModel(growth_data)
        cov = model.initial_proposal_covariance(0.01, 0.5)
        assert_allclose(np.sqrt(np.diag(cov)), [1.0, 0.0002, 0.02, 0.0092])
        assert_allclose(cov, np.diag(np.diag(cov)))

    def test_random_effect_steps_follow_prior_spread(self, growth_data):
        model = GrowthModel(growth_data, ModelVariant.CHAPMAN_RICHARDS_WITH_RANDOM_EFFECT)
        cov = model.initial_proposal_covariance(0.01, 0.5)
        assert cov.shape == (model.n_parameters, model.n_parameters)
        assert_allclose(cov[4, 4], 25.0)
        assert_allclose(np.diag(cov)[5:], 1.0)

    def test_non_positive_coef_var(self, growth_data):
        model = GrowthModel(growth_data)
        with pytest.raises(ConfigurationError, match="coefficients of variation"):
            model.initial_proposal_covariance(0.01, 0.0)


class TestPredictions:
    """Tests for predictions and their variances."""

    def test_prediction_variance_requires_covariance(self, growth_data):
        model = GrowthModel(growth_data)
        model.set_parameters(np.array([100.0, 0.02, 2.0, 0.92]))
        with pytest.raises(ConfigurationError, match="has not been set"):
            model.prediction_variance(np.array([50.0]), np.array([0.0]))

    def test_population_predictions_without_covariance(self, growth_data):
        model = GrowthModel(growth_data)
        model.set_parameters(np.array([100.0, 0.02, 2.0, 0.92]))
        output = model.population_predictions()
        assert output.shape == (growth_data.n_observations, 2)
        assert_allclose(output[:, 0], 100 * (1 - np.exp(-0.02 * growth_data.age_yr)) ** 2)
        assert np.all(np.isnan(output[:, 1]))

    def test_delta_method_variance(self, growth_data):
        """Test a variance on b1 alone gives (d pred / d b1)^2 var(b1)."""
        model = GrowthModel(growth_data)
        model.set_parameters(np.array([100.0, 0.02, 2.0, 0.92]))
        cov = np.zeros((4, 4))
        cov[0, 0] = 4.0
        model.parameter_covariance = cov

        age = np.array([50.0])
        variance = model.prediction_variance(age, np.zeros(1))
        growth = (1 - np.exp(-0.02 * 50.0)) ** 2
        assert_allclose(variance, 4.0 * growth**2)

    def test_parameter_covariance_shape(self, growth_data):
        model = GrowthModel(growth_data)
        with pytest.raises(ConfigurationError, match="expected \\(4, 4\\)"):
            model.parameter_covariance = np.eye(3)
