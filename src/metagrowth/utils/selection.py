"""Fitting several growth-model variants to the same data."""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import TYPE_CHECKING, Optional

import numpy as np

from metagrowth.estimation.metropolis import (
    MetropolisHastingsSampler,
    SimulationParameters,
)
from metagrowth.models.curves import ModelVariant
from metagrowth.models.growth_model import GrowthModel

if TYPE_CHECKING:
    from metagrowth.results.fit_result import MetaModelFitResult
    from metagrowth.typing import SeedLike
    from metagrowth.utils.data import GrowthDataStructure


def _fit_single_variant(args: tuple) -> "MetaModelFitResult":
    """Fit one variant (module-level for multiprocessing)."""
    structure, variant, simulation_parameters, seed = args
    model = GrowthModel(structure, variant)
    sampler = MetropolisHastingsSampler(simulation_parameters, seed=seed)
    return sampler.fit(model)


def fit_competing_models(
    structure: "GrowthDataStructure",
    variants: Sequence[ModelVariant | str],
    simulation_parameters: Optional[SimulationParameters] = None,
    seed: "SeedLike" = None,
    n_jobs: int = 1,
) -> dict[ModelVariant, "MetaModelFitResult"]:
    """Fit each variant independently to the same data.

    Every fit gets its own model, chain and random source; seeds are
    spawned from a single SeedSequence so the batch is reproducible
    whatever the number of workers. Fits that fail to converge are kept in
    the output with ``converged=False``.

    Parameters
    ----------
    structure : GrowthDataStructure
        Data to fit.
    variants : sequence of ModelVariant or str
        Variants to fit.
    simulation_parameters : SimulationParameters, optional
        Chain settings shared by all fits.
    seed : int or numpy.random.SeedSequence, optional
        Root seed.
    n_jobs : int, default=1
        Number of worker processes. Use -1 for all CPUs, 1 for sequential.

    Returns
    -------
    dict
        Variant mapped to its fit result, in the order of ``variants``.
    """
    resolved = [ModelVariant.from_name(v) for v in variants]
    if len(set(resolved)) != len(resolved):
        raise ValueError("variants must not contain duplicates")
    if simulation_parameters is None:
        simulation_parameters = SimulationParameters()

    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    child_seeds = root.spawn(len(resolved))
    args_list = [
        (structure, variant, simulation_parameters, child_seed)
        for variant, child_seed in zip(resolved, child_seeds)
    ]

    if n_jobs == -1:
        n_jobs = os.cpu_count() or 1
    n_jobs = max(1, min(n_jobs, len(resolved)))

    if n_jobs == 1:
        results = [_fit_single_variant(args) for args in args_list]
    else:
        from concurrent.futures import ProcessPoolExecutor

        with ProcessPoolExecutor(max_workers=n_jobs) as executor:
            results = list(executor.map(_fit_single_variant, args_list))

    return dict(zip(resolved, results))


def select_best_model(
    results: dict[ModelVariant, "MetaModelFitResult"] | Sequence["MetaModelFitResult"],
) -> Optional["MetaModelFitResult"]:
    """Return the converged fit with the highest log marginal likelihood.

    Returns None when no fit converged.
    """
    candidates = results.values() if isinstance(results, dict) else results
    converged = [
        r
        for r in candidates
        if r.converged and np.isfinite(r.log_marginal_likelihood)
    ]
    if not converged:
        return None
    return max(converged, key=lambda r: r.log_marginal_likelihood)
