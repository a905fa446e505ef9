"""
Adaptive selection of the tempering coefficient phi.

Within a period the observation density N(y; DD + ZZ s, EE) is introduced
gradually as N(y; DD + ZZ s, EE / phi) with 0 < phi_1 < ... < phi_m = 1.
Each phi_n is chosen so that the inefficiency of the incremental weights,

    InEff(phi) = mean(w_j^2) / mean(w_j)^2,

equals a target `rstar`.
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np
from scipy.optimize import brentq

from .errors import ConvergenceWarning
from .logging_config import get_logger

logger = get_logger("tempering")

# Lower end of the bracket for the first stage of a period.
PHI_MIN = 1e-8


@dataclass(frozen=True)
class TemperingContext:
    """Per-particle quadratic forms e' EE^{-1} e for the current errors."""

    quad: np.ndarray
    n_obs: int
    logdet: float

    @classmethod
    def from_errors(cls, errors: np.ndarray, iEE: np.ndarray, logdet: float) -> "TemperingContext":
        errors = np.atleast_2d(errors)
        quad = np.einsum("ni,ij,nj->n", errors, iEE, errors)
        return cls(quad=quad, n_obs=errors.shape[1], logdet=float(logdet))


@dataclass(frozen=True)
class PhiSolution:
    phi: float
    bracketed: bool


def log_incremental_weights(phi_new: float, phi_old: float, ctx: TemperingContext,
                            initialize: bool = False) -> np.ndarray:
    """
    Log of the incremental weights

        (phi_new / phi_old)^(d/2) exp(-1/2 (phi_new - phi_old) e' EE^{-1} e)

    or, for the first stage of a period,

        (phi_new / 2 pi)^(d/2) det(EE)^(-1/2) exp(-1/2 phi_new e' EE^{-1} e).
    """
    d = ctx.n_obs
    if initialize:
        return (0.5 * d * np.log(phi_new / (2.0 * np.pi))
                - 0.5 * ctx.logdet
                - 0.5 * phi_new * ctx.quad)
    return 0.5 * d * np.log(phi_new / phi_old) - 0.5 * (phi_new - phi_old) * ctx.quad


def inefficiency(phi_new: float, phi_old: float, ctx: TemperingContext, initialize: bool = False) -> float:
    lw = log_incremental_weights(phi_new, phi_old, ctx, initialize=initialize)
    m = float(np.max(lw))
    if not np.isfinite(m):
        return np.inf
    w = np.exp(lw - m)
    W = w / np.mean(w)
    return float(np.mean(W * W))


def _inefficiency_gap(phi: float, phi_old: float, ctx: TemperingContext, rstar: float, initialize: bool) -> float:
    return inefficiency(phi, phi_old, ctx, initialize=initialize) - rstar


def solve_phi(ctx: TemperingContext, phi_old: float, rstar: float, xtol: float,
              initialize: bool = False) -> PhiSolution:
    """
    Smallest phi in (phi_old, 1] with InEff(phi) = rstar, or 1 when InEff(1)
    is already at or below rstar.

    When the gap does not change sign over the bracket no interior root
    exists; the returned solution has phi = 1 and `bracketed=False`.
    """
    lo = PHI_MIN if initialize else float(phi_old)
    args = (phi_old, ctx, float(rstar), initialize)

    f_hi = _inefficiency_gap(1.0, *args)
    if f_hi <= 0.0:
        return PhiSolution(1.0, True)

    f_lo = _inefficiency_gap(lo, *args)
    if not (np.isfinite(f_lo) and np.isfinite(f_hi)) or np.sign(f_lo) * np.sign(f_hi) >= 0:
        warnings.warn(
            f"Inefficiency does not cross rstar={rstar} on [{lo:.3g}, 1]; tempering treated as complete.",
            ConvergenceWarning,
        )
        logger.debug("No solution in interval [%g, 1]: f(lo)=%g, f(1)=%g.", lo, f_lo, f_hi)
        return PhiSolution(1.0, False)

    phi = brentq(_inefficiency_gap, lo, 1.0, args=args, xtol=xtol)
    phi = float(min(max(phi, np.nextafter(lo, 1.0)), 1.0))
    return PhiSolution(phi, True)


__all__ = [
    "PHI_MIN",
    "TemperingContext",
    "PhiSolution",
    "log_incremental_weights",
    "inefficiency",
    "solve_phi",
]
