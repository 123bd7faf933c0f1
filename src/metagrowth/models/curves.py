"""Growth-curve families available to the meta-model.

The set of families is closed: each :class:`ModelVariant` member maps to one
stateless :class:`GrowthCurve` strategy in :data:`CURVES`. Adding a family
means adding one enum member and one strategy.

All curves are evaluated on arrays of ages and return arrays; gradients are
taken with respect to the fixed-effect parameters only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

import numpy as np
from numpy.typing import NDArray

from metagrowth.estimation.priors import Bound
from metagrowth.exceptions import ConfigurationError


class ModelVariant(str, Enum):
    """Growth-model variants that can be fitted."""

    CHAPMAN_RICHARDS = "ChapmanRichards"
    CHAPMAN_RICHARDS_WITH_RANDOM_EFFECT = "ChapmanRichardsWithRandomEffect"
    CHAPMAN_RICHARDS_DERIVATIVE = "ChapmanRichardsDerivative"
    CHAPMAN_RICHARDS_DERIVATIVE_WITH_RANDOM_EFFECT = (
        "ChapmanRichardsDerivativeWithRandomEffect"
    )
    SIMPLIFIED_CHAPMAN_RICHARDS = "SimplifiedChapmanRichards"

    @classmethod
    def from_name(cls, value: "ModelVariant | str") -> "ModelVariant":
        """Resolve an enum member from a member, its value or its name."""
        if isinstance(value, cls):
            return value
        if value is None:
            raise ConfigurationError("The model variant must be non null")
        for member in cls:
            if value in (member.value, member.name):
                return member
        valid = ", ".join(m.value for m in cls)
        raise ConfigurationError(f"Unknown model variant: {value}. Valid variants: {valid}")


class GrowthCurve(ABC):
    """Strategy evaluating one growth-curve family."""

    fixed_effect_names: tuple[str, ...] = ()
    starting_values: tuple[float, ...] = ()
    bounds: tuple[Bound, ...] = ()
    has_random_effect: bool = False

    @property
    def n_fixed_effects(self) -> int:
        return len(self.fixed_effect_names)

    @abstractmethod
    def predict(
        self,
        beta: NDArray[np.float64],
        age_yr: NDArray[np.float64],
        time_since_beginning: NDArray[np.float64],
        random_effect: float = 0.0,
    ) -> NDArray[np.float64]: ...

    @abstractmethod
    def first_derivative(
        self,
        beta: NDArray[np.float64],
        age_yr: NDArray[np.float64],
        time_since_beginning: NDArray[np.float64],
        random_effect: float = 0.0,
    ) -> NDArray[np.float64]:
        """Gradient of :meth:`predict`, shape ``age_yr.shape + (n_fixed_effects,)``."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def _growth_terms(
    b2: float, age_yr: NDArray[np.float64]
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    age_yr = np.asarray(age_yr, dtype=np.float64)
    decay = np.exp(-b2 * age_yr)
    return age_yr, decay, 1.0 - decay


def _safe_log(x: NDArray[np.float64]) -> NDArray[np.float64]:
    # x ** b vanishes faster than log(x) diverges; the product is taken as 0
    return np.log(np.where(x > 0, x, 1.0))


class ChapmanRichardsCurve(GrowthCurve):
    """(b1 + u) * (1 - exp(-b2 * age)) ** b3"""

    fixed_effect_names = ("b1", "b2", "b3")
    starting_values = (100.0, 0.02, 2.0)
    bounds = (Bound(0.0, 400.0), Bound(0.0001, 0.1), Bound(1.0, 6.0))

    def predict(self, beta, age_yr, time_since_beginning, random_effect=0.0):
        b1, b2, b3 = beta[0], beta[1], beta[2]
        _, _, growth = _growth_terms(b2, age_yr)
        return (b1 + random_effect) * growth**b3

    def first_derivative(self, beta, age_yr, time_since_beginning, random_effect=0.0):
        b1, b2, b3 = beta[0], beta[1], beta[2]
        age_yr, decay, growth = _growth_terms(b2, age_yr)
        asymptote = b1 + random_effect
        with np.errstate(divide="ignore", invalid="ignore"):
            d_b1 = growth**b3
            d_b2 = asymptote * b3 * growth ** (b3 - 1) * age_yr * decay
            d_b3 = asymptote * growth**b3 * _safe_log(growth)
        return np.stack([d_b1, d_b2, d_b3], axis=-1)


class ChapmanRichardsWithRandomEffectCurve(ChapmanRichardsCurve):
    has_random_effect = True


class ChapmanRichardsDerivativeCurve(GrowthCurve):
    """Rate form: (b1 + u) * b2 * b3 * exp(-b2 * age) * (1 - exp(-b2 * age)) ** (b3 - 1)"""

    fixed_effect_names = ("b1", "b2", "b3")
    starting_values = (100.0, 0.02, 2.0)
    bounds = (Bound(0.0, 2000.0), Bound(0.0001, 0.1), Bound(1.0, 6.0))

    def predict(self, beta, age_yr, time_since_beginning, random_effect=0.0):
        b1, b2, b3 = beta[0], beta[1], beta[2]
        _, decay, growth = _growth_terms(b2, age_yr)
        return (b1 + random_effect) * b2 * b3 * decay * growth ** (b3 - 1)

    def first_derivative(self, beta, age_yr, time_since_beginning, random_effect=0.0):
        b1, b2, b3 = beta[0], beta[1], beta[2]
        age_yr, decay, growth = _growth_terms(b2, age_yr)
        asymptote = b1 + random_effect
        with np.errstate(divide="ignore", invalid="ignore"):
            shape = decay * growth ** (b3 - 1)
            d_b1 = b2 * b3 * shape
            ratio = np.where(growth > 0, decay / np.where(growth > 0, growth, 1.0), 0.0)
            d_b2 = (
                asymptote
                * b3
                * shape
                * (1.0 - b2 * age_yr + (b3 - 1) * b2 * age_yr * ratio)
            )
            d_b3 = asymptote * b2 * shape * (1.0 + b3 * _safe_log(growth))
        return np.stack([d_b1, d_b2, d_b3], axis=-1)


class ChapmanRichardsDerivativeWithRandomEffectCurve(ChapmanRichardsDerivativeCurve):
    has_random_effect = True


class SimplifiedChapmanRichardsCurve(GrowthCurve):
    """Shape fixed to one: (b1 + u) * (1 - exp(-b2 * age))

    Only the asymptote and the slope rate at the origin are estimated.
    """

    fixed_effect_names = ("b1", "b2")
    starting_values = (100.0, 0.02)
    bounds = (Bound(0.0, 400.0), Bound(0.0001, 0.1))

    def predict(self, beta, age_yr, time_since_beginning, random_effect=0.0):
        b1, b2 = beta[0], beta[1]
        _, _, growth = _growth_terms(b2, age_yr)
        return (b1 + random_effect) * growth

    def first_derivative(self, beta, age_yr, time_since_beginning, random_effect=0.0):
        b1, b2 = beta[0], beta[1]
        age_yr, decay, growth = _growth_terms(b2, age_yr)
        return np.stack([growth, (b1 + random_effect) * age_yr * decay], axis=-1)


CURVES: dict[ModelVariant, GrowthCurve] = {
    ModelVariant.CHAPMAN_RICHARDS: ChapmanRichardsCurve(),
    ModelVariant.CHAPMAN_RICHARDS_WITH_RANDOM_EFFECT: ChapmanRichardsWithRandomEffectCurve(),
    ModelVariant.CHAPMAN_RICHARDS_DERIVATIVE: ChapmanRichardsDerivativeCurve(),
    ModelVariant.CHAPMAN_RICHARDS_DERIVATIVE_WITH_RANDOM_EFFECT: (
        ChapmanRichardsDerivativeWithRandomEffectCurve()
    ),
    ModelVariant.SIMPLIFIED_CHAPMAN_RICHARDS: SimplifiedChapmanRichardsCurve(),
}


def get_curve(variant: ModelVariant | str) -> GrowthCurve:
    """Return the strategy object for a variant."""
    return CURVES[ModelVariant.from_name(variant)]
