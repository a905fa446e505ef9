"""
tpf: tempered particle filter likelihoods for linear state space models.

The filter evaluates the log-likelihood of a data set under a (possibly
regime-switching) linear Gaussian state space model. It is meant to be
called once per parameter vector from an outer estimation loop.
"""

# Configure logging first
from .logging_config import configure_logging, get_logger, reset_logging

from .errors import (
    ConfigurationError,
    ConvergenceWarning,
    DimensionMismatchError,
    NumericalError,
    TPFError,
)
from .settings import TPFSettings, read_settings
from .system import (
    RegimeSwitchingSystem,
    SystemMatrices,
    zlb_regime_indices,
    zlb_regime_matrices,
)
from .streams import TPFRandomStreams
from .filter import TPFResult, tempered_particle_filter
from .kalman import kalman_filter
from .StateSpaceModel import LinearStateSpaceModel

__version__ = '0.1.0'
