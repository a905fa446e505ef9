import numpy as np

from numba import jit

from .errors import DimensionMismatchError
from .linalg import unconditional_covariance
from .system import as_regime_system


@jit(nopython=True)
def _kalman_filter(y, CCs, TTs, RRs, QQs, DDs, ZZs, EEs, regime_index, A0, P0):

    nobs, ny = y.shape

    At = A0.copy()
    Pt = P0.copy()

    liks = np.zeros(nobs)
    for i in range(nobs):

        r = regime_index[i]
        TT = TTs[r]
        RR = RRs[r]
        ZZ = ZZs[r]
        RQR = RR @ QQs[r] @ RR.T

        # forecast
        At = CCs[r] + TT @ At
        Pt = TT @ Pt @ TT.T + RQR
        Pt = 0.5 * (Pt + Pt.T)

        not_missing = ~np.isnan(y[i])
        nact = not_missing.sum()
        if nact == 0:
            continue

        ZZo = ZZ[not_missing, :]
        yhat = ZZo @ At + DDs[r][not_missing]
        nut = y[i][not_missing] - yhat

        Ft = ZZo @ Pt @ ZZo.T + EEs[r][not_missing, :][:, not_missing]
        Ft = 0.5 * (Ft + Ft.T)

        dFt = np.log(np.linalg.det(Ft))
        iFtnut = np.linalg.solve(Ft, nut)

        liks[i] = (
            - 0.5 * nact * np.log(2 * np.pi)
            - 0.5 * dFt
            - 0.5 * np.dot(nut, iFtnut)
        )

        # update
        PtZt = Pt @ ZZo.T
        At = At + PtZt @ iFtnut
        Pt = Pt - PtZt @ np.linalg.solve(Ft, PtZt.T)

    return liks


def kalman_filter(yy, system, s0=None, P0=None, regime_index=None, correlated_measurement_error=True):
    """
    Exact per-period log-likelihood of a (regime-switching) linear Gaussian
    system, with s_0 ~ N(s0, P0) the state before the first observation.

    Rows of `yy` are periods; NaN entries are treated as missing.
    """
    provider = as_regime_system(system, regime_index,
                                correlated_measurement_error=correlated_measurement_error)

    y = np.asarray(yy, dtype=float)
    if y.ndim == 1:
        y = y[:, None]
    y = np.ascontiguousarray(y)
    nobs = y.shape[0]
    if y.shape[1] != provider.n_obs:
        raise DimensionMismatchError(
            f"Data has {y.shape[1]} observables but the measurement equation has {provider.n_obs}."
        )
    provider.check_periods(nobs)

    mats = [provider.regime_matrices(i) for i in range(provider.n_regimes)]
    TTs, RRs, CCs, QQs, ZZs, DDs, EEs = [np.ascontiguousarray(np.stack(m), dtype=float) for m in zip(*mats)]
    regimes = np.array([provider.regime(t) for t in range(nobs)], dtype=np.int64)

    ns = provider.n_states
    A0 = np.zeros(ns) if s0 is None else np.asarray(s0, dtype=float).reshape(-1)
    if P0 is None or (isinstance(P0, str) and P0 == "unconditional"):
        P0 = unconditional_covariance(TTs[0], RRs[0], QQs[0])
    P0 = np.ascontiguousarray(np.atleast_2d(P0), dtype=float)

    return _kalman_filter(y, CCs, TTs, RRs, QQs, DDs, ZZs, EEs, regimes, A0, P0)


__all__ = ["kalman_filter"]
