from metagrowth.models.block import CovarianceBlock
from metagrowth.models.curves import CURVES, GrowthCurve, ModelVariant, get_curve
from metagrowth.models.growth_model import GrowthModel

__all__ = [
    "CURVES",
    "CovarianceBlock",
    "GrowthCurve",
    "GrowthModel",
    "ModelVariant",
    "get_curve",
]
