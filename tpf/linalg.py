from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.linalg import solve_discrete_lyapunov

from .errors import NumericalError
from .logging_config import get_logger

logger = get_logger("linalg")


def nearest_spd(A: np.ndarray) -> np.ndarray:
    """
    Nearest symmetric positive semidefinite matrix in the Frobenius norm.

    Higham (1988): symmetrize, take the symmetric polar factor, average, then
    nudge the diagonal until a Cholesky factorization succeeds.
    """
    A = np.atleast_2d(np.asarray(A, dtype=float))
    if A.shape[0] != A.shape[1]:
        raise NumericalError(f"Covariance must be square, got {A.shape}.")

    B = 0.5 * (A + A.T)
    _, s, V = np.linalg.svd(B)
    H = V.T @ np.diag(s) @ V
    Ahat = 0.5 * (B + H)
    Ahat = 0.5 * (Ahat + Ahat.T)

    k = 0
    n = A.shape[0]
    spacing = np.spacing(np.linalg.norm(A))
    while True:
        try:
            np.linalg.cholesky(Ahat)
            return Ahat
        except np.linalg.LinAlgError:
            k += 1
            if k > 100:
                return Ahat
            mineig = float(np.min(np.real(np.linalg.eigvals(Ahat))))
            Ahat = Ahat + np.eye(n) * (-mineig * k ** 2 + spacing)


def get_chol(A: np.ndarray) -> np.ndarray:
    """
    Lower-triangular factor L with L @ L.T = A.

    Falls back to the nearest SPD matrix when A is not numerically positive
    definite, and to an SVD square root when A is singular (e.g. shocks
    switched off in a regime).
    """
    A = np.atleast_2d(np.asarray(A, dtype=float))
    A = 0.5 * (A + A.T)
    try:
        return np.linalg.cholesky(A)
    except np.linalg.LinAlgError:
        pass

    if np.allclose(A, 0.0):
        return np.zeros_like(A)

    Ahat = nearest_spd(A)
    try:
        L = np.linalg.cholesky(Ahat)
        logger.debug("Cholesky factor computed after nearest-SPD correction.")
        return L
    except np.linalg.LinAlgError:
        U, s, _ = np.linalg.svd(Ahat)
        return U @ np.diag(np.sqrt(np.maximum(s, 0.0)))


def _is_singular(A: np.ndarray, scale: float) -> bool:
    # scale is taken from the unprojected matrix
    return scale == 0.0 or float(np.min(np.linalg.eigvalsh(A))) <= A.shape[0] * np.finfo(float).eps * scale


def precision_and_logdet(EE: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Inverse and log-determinant of a measurement-error covariance.

    Raises NumericalError when the matrix is singular even after the
    nearest-SPD projection.
    """
    EE = np.atleast_2d(np.asarray(EE, dtype=float))
    EE = 0.5 * (EE + EE.T)
    if not np.all(np.isfinite(EE)):
        raise NumericalError("Measurement error covariance has non-finite entries.")
    scale = float(np.max(np.abs(np.linalg.eigvalsh(EE))))
    if _is_singular(EE, scale):
        if scale == 0.0:
            raise NumericalError("Measurement error covariance is zero; the observation density is not defined.")
        EE = nearest_spd(EE)
        if _is_singular(EE, scale):
            raise NumericalError(
                "Measurement error covariance is singular; the observation density is not defined."
            )
    _, logdet = np.linalg.slogdet(EE)
    try:
        L = np.linalg.cholesky(EE)
    except np.linalg.LinAlgError as e:
        raise NumericalError(f"Measurement error covariance cannot be factorized: {e}") from e
    iL = np.linalg.solve(L, np.eye(L.shape[0]))
    iEE = iL.T @ iL
    if not (np.all(np.isfinite(iEE)) and np.isfinite(logdet)):
        raise NumericalError("Measurement error covariance is numerically singular.")
    return 0.5 * (iEE + iEE.T), float(logdet)


def unconditional_covariance(TT: np.ndarray, RR: np.ndarray, QQ: np.ndarray) -> np.ndarray:
    """Solve P = TT P TT' + RR QQ RR' for the stationary state covariance."""
    TT = np.atleast_2d(np.asarray(TT, dtype=float))
    RQR = RR @ QQ @ RR.T
    if np.max(np.abs(np.linalg.eigvals(TT))) >= 1.0:
        raise NumericalError("Transition matrix is not stable; no unconditional covariance exists.")
    P0 = solve_discrete_lyapunov(TT, RQR)
    return 0.5 * (P0 + P0.T)


__all__ = ["nearest_spd", "get_chol", "precision_and_logdet", "unconditional_covariance"]
