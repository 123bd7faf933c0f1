"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from metagrowth import GrowthDataStructure, SimulationParameters, simulate_growth_data


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def growth_data():
    """Three groups of five repeated measurements from 100 (1 - exp(-0.02 age))^2."""
    return simulate_growth_data(
        parameters=np.array([100.0, 0.02, 2.0]),
        initial_ages=(20.0, 60.0, 100.0),
        times=(0.0, 10.0, 20.0, 30.0, 40.0),
        residual_variance=1.0,
        rho=0.92,
        seed=123,
    )


@pytest.fixture
def single_observation_data():
    """One group holding a single observation."""
    return GrowthDataStructure(
        y=np.array([55.0]),
        initial_age_yr=np.array([50.0]),
        time_since_beginning=np.array([0.0]),
        residual_covariance=np.array([[4.0]]),
        output_type="Volume",
    )


@pytest.fixture
def short_chain():
    """Chain settings small enough for unit tests."""
    return SimulationParameters(
        nb_realizations=600,
        nb_burn_in=100,
        one_each=5,
        nb_internal_iter=1000,
        nb_initial_grid=50,
    )


@pytest.fixture
def simulation_table():
    """Simulation output in long format for two output types."""
    import pandas as pd

    rows = []
    for age0 in (30, 10):
        for t in (0, 5, 10):
            age = age0 + t
            rows.append(
                {
                    "initialAgeYr": age0,
                    "timeSinceInitialDateYr": t,
                    "OutputType": "Volume",
                    "Estimate": 100 * (1 - np.exp(-0.02 * age)) ** 2,
                }
            )
            rows.append(
                {
                    "initialAgeYr": age0,
                    "timeSinceInitialDateYr": t,
                    "OutputType": "BasalArea",
                    "Estimate": 30 * (1 - np.exp(-0.03 * age)),
                }
            )
    return pd.DataFrame(rows)
