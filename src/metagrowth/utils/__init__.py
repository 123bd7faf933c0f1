from metagrowth.utils.data import GrowthDataStructure
from metagrowth.utils.selection import fit_competing_models, select_best_model
from metagrowth.utils.simulation import simulate_growth_data

__all__ = [
    "GrowthDataStructure",
    "fit_competing_models",
    "select_best_model",
    "simulate_growth_data",
]
