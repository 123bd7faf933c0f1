"""Tests for covariance blocks."""

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from metagrowth import CovarianceBlock, GrowthDataStructure, NumericalError
from metagrowth.constants import VARIANCE_FLOOR
from metagrowth.exceptions import ConfigurationError
from metagrowth.models.block import ar1_correlation, floor_variances


@pytest.fixture
def two_group_data():
    cov = np.diag([4.0, 4.0, 4.0, 9.0, 9.0])
    return GrowthDataStructure(
        y=[10.0, 12.0, 14.0, 30.0, 33.0],
        initial_age_yr=[10.0, 10.0, 10.0, 50.0, 50.0],
        time_since_beginning=[0.0, 5.0, 10.0, 0.0, 5.0],
        residual_covariance=cov,
    )


class TestHelpers:
    """Tests for the covariance helpers."""

    def test_floor_variances(self):
        """Test non-positive variances are floored."""
        cov = np.array([[0.0, 0.0], [0.0, -1.0]])
        floored = floor_variances(cov)
        assert_allclose(np.diag(floored), [VARIANCE_FLOOR, VARIANCE_FLOOR])
        assert cov[0, 0] == 0.0

    def test_ar1_correlation(self):
        """Test correlation decays with the lag."""
        corr = ar1_correlation(np.array([1.0, 2.0, 3.0]), 0.5)
        expected = np.array([[1.0, 0.5, 0.25], [0.5, 1.0, 0.5], [0.25, 0.5, 1.0]])
        assert_allclose(corr, expected)


class TestCovarianceBlock:
    """Tests for CovarianceBlock."""

    def test_extracts_submatrix(self, two_group_data):
        """Test the block holds its rows only."""
        block = CovarianceBlock("50_Estimate", [3, 4], two_group_data)
        assert block.n_observations == 2
        assert_allclose(block.y, [30.0, 33.0])
        assert_allclose(block.age_yr, [50.0, 55.0])
        assert_allclose(block.raw_covariance, np.eye(2) * 9.0)
        assert_allclose(block.distances, [1.0, 2.0])

    def test_empty_indices(self, two_group_data):
        """Test a block needs at least one observation."""
        with pytest.raises(ConfigurationError, match="no observation"):
            CovarianceBlock("empty", [], two_group_data)

    def test_out_of_range_indices(self, two_group_data):
        """Test indices must refer to existing rows."""
        with pytest.raises(ConfigurationError, match="outside"):
            CovarianceBlock("bad", [4, 5], two_group_data)

    def test_dirty_until_updated(self, two_group_data):
        """Test the log-likelihood requires an up-to-date covariance."""
        block = CovarianceBlock("10_Estimate", [0, 1, 2], two_group_data)
        assert block.is_dirty
        with pytest.raises(NumericalError, match="not been updated"):
            block.log_likelihood(np.zeros(3))

        block.update_covariance(0.5)
        assert not block.is_dirty
        block.invalidate()
        assert block.is_dirty

    def test_structured_covariance(self, two_group_data):
        """Test variances times AR(1) correlation."""
        block = CovarianceBlock("10_Estimate", [0, 1, 2], two_group_data)
        cov = block.structured_covariance(0.9)
        assert_allclose(np.diag(cov), [4.0, 4.0, 4.0])
        assert_allclose(cov[0, 1], 4.0 * 0.9)
        assert_allclose(cov[0, 2], 4.0 * 0.81)

    def test_log_likelihood_matches_scipy(self, two_group_data):
        """Test against the multivariate normal log density."""
        block = CovarianceBlock("10_Estimate", [0, 1, 2], two_group_data)
        block.update_covariance(0.92)
        predictions = np.array([9.0, 12.5, 13.0])

        expected = stats.multivariate_normal.logpdf(
            block.y, mean=predictions, cov=block.structured_covariance(0.92)
        )
        assert_allclose(block.log_likelihood(predictions), expected, rtol=1e-10)

    def test_ln_constant(self, two_group_data):
        """Test the normalizing constant for a diagonal covariance."""
        block = CovarianceBlock("50_Estimate", [3, 4], two_group_data)
        block.update_covariance(0.0)
        expected = -np.log(2 * np.pi) - 0.5 * np.log(81.0)
        assert_allclose(block.ln_constant, expected)
        assert_allclose(block.log_determinant, np.log(81.0))

    def test_inverse_covariance(self, two_group_data):
        """Test the cached inverse of the structured covariance."""
        block = CovarianceBlock("10_Estimate", [0, 1, 2], two_group_data)
        block.update_covariance(0.92)
        product = block.inverse_covariance @ block.structured_covariance(0.92)
        assert_allclose(product, np.eye(3), atol=1e-10)
        assert_allclose(
            block.log_determinant,
            np.linalg.slogdet(block.structured_covariance(0.92))[1],
        )

    def test_single_observation(self, single_observation_data):
        """Test a 1x1 block gives the univariate normal density."""
        block = CovarianceBlock("50_Volume", [0], single_observation_data)
        block.update_covariance(0.95)
        expected = stats.norm.logpdf(55.0, loc=50.0, scale=2.0)
        assert_allclose(block.log_likelihood(np.array([50.0])), expected)

    def test_zero_variance_is_floored(self):
        """Test a zero variance does not make the block singular."""
        data = GrowthDataStructure(
            y=[1.0, 1.0],
            initial_age_yr=[10.0, 10.0],
            time_since_beginning=[0.0, 1.0],
            residual_covariance=np.zeros((2, 2)),
        )
        block = CovarianceBlock("10_Estimate", [0, 1], data)
        block.update_covariance(0.5)
        assert np.isfinite(block.log_likelihood(np.ones(2)))

    def test_negative_quadratic_form(self, two_group_data):
        """Test a non positive definite inverse is reported."""
        block = CovarianceBlock("50_Estimate", [3, 4], two_group_data)
        block.update_covariance(0.0)
        block._inv_covariance = -np.eye(2)
        with pytest.raises(NumericalError, match="negative"):
            block.log_likelihood(np.zeros(2))

    def test_singular_covariance(self, two_group_data):
        """Test a perfectly correlated block cannot be factorized."""
        block = CovarianceBlock("10_Estimate", [0, 1, 2], two_group_data)
        with pytest.raises(NumericalError, match="not invertible"):
            block.update_covariance(1.0)
        assert block.is_dirty
