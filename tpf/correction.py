from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .errors import NumericalError
from .particles import ParticleEnsemble
from .tempering import TemperingContext, log_incremental_weights


def multinomial_resampling(weights: np.ndarray, uniforms: np.ndarray) -> np.ndarray:
    """
    Draw indices with replacement, index i with probability proportional to
    weights[i], by looking each uniform up in the cumulative weights.
    """
    w = np.asarray(weights, dtype=float).reshape(-1)
    w = w / float(np.sum(w))
    cumulative_sum = np.cumsum(w)
    cumulative_sum[-1] = 1.0
    idx = np.searchsorted(cumulative_sum, np.asarray(uniforms, dtype=float), side="right")
    return np.minimum(idx, w.size - 1)


@dataclass(frozen=True)
class CorrectionResult:
    log_lik: float
    log_incremental_weights: np.ndarray
    weights: np.ndarray  # normalized to mean one, before the reset
    ids: np.ndarray
    ensemble: ParticleEnsemble  # resampled, weights reset to one


def correct_and_resample(phi_new: float, phi_old: float, ensemble: ParticleEnsemble,
                         ctx: TemperingContext, uniforms: np.ndarray,
                         initialize: bool = False) -> CorrectionResult:
    """
    Reweight the ensemble from phi_old to phi_new, resample, reset weights.

    The log-likelihood contribution is log(mean(incremental weight x prior
    weight)), computed before the weights are reset.
    """
    lw = log_incremental_weights(phi_new, phi_old, ctx, initialize=initialize)
    m = float(np.max(lw))
    if not np.isfinite(m):
        raise NumericalError("Correction failed: max incremental log-weight is not finite.")

    w_unnorm = np.exp(lw - m) * ensemble.weights
    mean_w = float(np.mean(w_unnorm))
    if mean_w <= 0.0 or not np.isfinite(mean_w):
        raise NumericalError("Correction failed: weight normalization constant is invalid.")

    weights = w_unnorm / mean_w
    log_lik = m + np.log(mean_w)

    ids = multinomial_resampling(weights, uniforms)
    return CorrectionResult(
        log_lik=float(log_lik),
        log_incremental_weights=lw,
        weights=weights,
        ids=ids,
        ensemble=ensemble.reindex(ids),
    )


__all__ = ["multinomial_resampling", "CorrectionResult", "correct_and_resample"]
