"""Exceptions raised by the meta-model fitting engine."""


class MetaModelError(Exception):
    """Base class for all errors raised by metagrowth."""


class ConfigurationError(MetaModelError, ValueError):
    """Malformed inputs: empty groups, mismatched dimensions, unknown variants.

    Raised at construction time, before any sampling takes place.
    """


class NumericalError(MetaModelError, ArithmeticError):
    """A likelihood evaluation hit a non positive-definite covariance.

    This signals a correctness problem in the covariance construction and
    is fatal to a fit, unlike an ordinary rejected candidate.
    """
