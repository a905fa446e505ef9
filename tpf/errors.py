"""
Exceptions and warnings raised by the tempered particle filter.
"""


class TPFError(Exception):
    """Base class for tempered particle filter errors."""
    pass


class ConfigurationError(TPFError, ValueError):
    """A tuning setting is missing or invalid."""
    pass


class DimensionMismatchError(ConfigurationError):
    """Data, system matrices and particle ensemble disagree on a dimension."""
    pass


class NumericalError(TPFError, ArithmeticError):
    """A covariance matrix cannot be factorized or inverted."""
    pass


class ConvergenceWarning(RuntimeWarning):
    """The tempering root-finder could not bracket a solution."""
    pass


__all__ = [
    "TPFError",
    "ConfigurationError",
    "DimensionMismatchError",
    "NumericalError",
    "ConvergenceWarning",
]
