"""Base class for meta-model estimation algorithms."""

import logging
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import TYPE_CHECKING, Union

from metagrowth.exceptions import ConfigurationError

if TYPE_CHECKING:
    from metagrowth.models.growth_model import GrowthModel
    from metagrowth.results.fit_result import MetaModelFitResult

logger = logging.getLogger("metagrowth")


class VerboseLevel(IntEnum):
    """How much progress information an estimator reports."""

    NONE = 0
    MINIMUM = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def resolve(cls, value: Union["VerboseLevel", bool, int, str]) -> "VerboseLevel":
        """Accept a level, a boolean, an integer or a level name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.MEDIUM if value else cls.NONE
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ConfigurationError(f"Unknown verbose level: {value}") from None
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ConfigurationError(f"Unknown verbose level: {value}") from None


class BaseEstimator(ABC):
    """Abstract base class for meta-model estimation algorithms.

    Parameters
    ----------
    verbose : VerboseLevel, bool, int or str, default=VerboseLevel.NONE
        Amount of diagnostic logging. Has no effect on the results.

    Attributes
    ----------
    verbose : VerboseLevel
        Verbosity level.
    convergence_history : list of float
        Log-likelihood (including the log prior) of each accepted sample.
    """

    def __init__(
        self,
        verbose: Union[VerboseLevel, bool, int, str] = VerboseLevel.NONE,
    ) -> None:
        self.verbose = VerboseLevel.resolve(verbose)
        self._convergence_history: list[float] = []
        self._log_prefix = ""

    @abstractmethod
    def fit(
        self,
        model: "GrowthModel",
        **kwargs,
    ) -> "MetaModelFitResult":
        """Estimate the parameters of a growth model.

        Parameters
        ----------
        model : GrowthModel
            The model to fit. Its parameters and parameter covariance are
            set to the final estimates in place.
        **kwargs
            Additional arguments specific to the estimation method.

        Returns
        -------
        MetaModelFitResult
        """
        ...

    @property
    def convergence_history(self) -> list[float]:
        """Return the log-likelihood trace of the chain."""
        return self._convergence_history.copy()

    def _log(self, level: VerboseLevel, message: str) -> None:
        """Emit a diagnostic message if the verbosity admits ``level``."""
        if self.verbose >= level and level > VerboseLevel.NONE:
            logger.info("Meta-model %s: %s", self._log_prefix, message)

    def _log_iteration(
        self,
        iteration: int,
        log_likelihood: float,
        **kwargs,
    ) -> None:
        """Log chain progress at the highest verbosity."""
        if self.verbose >= VerboseLevel.HIGH:
            extras = ", ".join(f"{k}={v:.4f}" for k, v in kwargs.items())
            msg = f"Iteration {iteration:6d}: LLK = {log_likelihood:.4f}"
            if extras:
                msg += f", {extras}"
            self._log(VerboseLevel.HIGH, msg)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(verbose={self.verbose.name})"
