from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as p

from .errors import NumericalError
from .filter import tempered_particle_filter
from .kalman import kalman_filter
from .logging_config import get_logger
from .settings import TPFSettings
from .system import RegimeSwitchingSystem, SystemMatrices, zlb_regime_indices, zlb_regime_matrices

logger = get_logger("model")

BAD_LOG_LIKELIHOOD = -1e11


def _as_2d_array(y):
    if isinstance(y, p.DataFrame):
        return y
    arr = np.asarray(y, dtype=float)
    if arr.ndim == 1:
        return np.swapaxes(np.atleast_2d(arr), 0, 1)
    return arr


def _as_callable(x):
    if callable(x) or x is None:
        return x
    return lambda para, *args, **kwargs: x


class LinearStateSpaceModel(object):
    """
    Linear Gaussian state space model whose system matrices are functions of
    a parameter vector.

        s_t = CC + TT s_{t-1} + RR eps_t,        eps_t ~ N(0, QQ)
        y_t = DD + ZZ s_t + MM eps_t + eta_t,    eta_t ~ N(0, EE)

    With `zlb_start` and `anticipated_shocks` the anticipated shocks are
    switched off before the zero-lower-bound period.
    """

    def __init__(self, yy, TT, RR, QQ, DD, ZZ, EE, CC=None, MM=None, t0=0,
                 zlb_start: Optional[int] = None, anticipated_shocks: Sequence[int] = (),
                 settings: Optional[TPFSettings] = None,
                 shock_names=None, state_names=None, obs_names=None):

        self.yy = _as_2d_array(yy)

        self.TT = _as_callable(TT)
        self.RR = _as_callable(RR)
        self.QQ = _as_callable(QQ)
        self.DD = _as_callable(DD)
        self.ZZ = _as_callable(ZZ)
        self.EE = _as_callable(EE)
        self.CC = _as_callable(CC)
        self.MM = _as_callable(MM)

        self.t0 = t0
        self.zlb_start = zlb_start
        self.anticipated_shocks = list(anticipated_shocks)
        self.settings = TPFSettings() if settings is None else settings

        self.shock_names = shock_names
        self.state_names = state_names
        self.obs_names = obs_names

    def system_matrices(self, para, *args, **kwargs) -> SystemMatrices:
        CC = None if self.CC is None else self.CC(para, *args, **kwargs)
        MM = None if self.MM is None else self.MM(para, *args, **kwargs)
        return SystemMatrices(
            TT=self.TT(para, *args, **kwargs),
            RR=self.RR(para, *args, **kwargs),
            QQ=self.QQ(para, *args, **kwargs),
            ZZ=self.ZZ(para, *args, **kwargs),
            DD=self.DD(para, *args, **kwargs),
            EE=self.EE(para, *args, **kwargs),
            CC=CC,
            MM=MM,
        )

    def regime_system(self, para, *args, **kwargs) -> RegimeSwitchingSystem:
        settings = kwargs.pop("settings", self.settings)
        system = self.system_matrices(para, *args, **kwargs)
        nobs = self.yy.shape[0]
        if self.zlb_start is not None and self.anticipated_shocks:
            regimes = zlb_regime_matrices(system, self.anticipated_shocks)
            index = zlb_regime_indices(nobs, self.zlb_start)
        else:
            regimes = [system]
            index = None
        return RegimeSwitchingSystem(regimes, index,
                                     correlated_measurement_error=settings.correlated_measurement_error)

    def log_lik_tpf(self, para, *args, **kwargs):
        """
        Tempered particle filter results as pandas objects.

        Extra kwargs
        ------------
        settings : TPFSettings
        s0, P0 : initial state mean and covariance (default: zeros, unconditional)
        streams : TPFRandomStreams
        verbose : str
        """
        yy = _as_2d_array(kwargs.pop("y", self.yy))
        settings = kwargs.pop("settings", self.settings)
        s0 = kwargs.pop("s0", None)
        P0 = kwargs.pop("P0", "unconditional")
        streams = kwargs.pop("streams", None)
        verbose = kwargs.pop("verbose", "none")
        t0 = kwargs.pop("t0", self.t0)

        if t0 > 0:
            settings = settings.replace(n_presample_periods=t0, include_presample=False)

        provider = self.regime_system(para, *args, settings=settings, **kwargs)
        res = tempered_particle_filter(provider, yy, s0, P0, settings, streams=streams, verbose=verbose)

        results = {}
        frame = res.to_frame()
        results["log_lik"] = frame[["log_lik"]]
        results["ESS"] = frame[["neff"]]
        results["times"] = res.times
        results["phi_schedules"] = res.phi_schedules
        results["result"] = res
        return results

    def log_lik(self, para, *args, **kwargs):
        """
        Log-likelihood at `para`.

        Extra kwargs
        ------------
        filter : str ('tpf' or 'kalman')

        Numerical failures return BAD_LOG_LIKELIHOOD; a ConfigurationError
        (including a dimension mismatch) is raised.
        """
        filt = kwargs.pop("filter", "tpf")
        if filt == "tpf":
            try:
                res = self.log_lik_tpf(para, *args, **kwargs)["result"]
            except (NumericalError, np.linalg.LinAlgError) as e:
                logger.debug("Likelihood evaluation failed at %s: %s", para, e)
                return BAD_LOG_LIKELIHOOD
            lik = res.total_log_lik
        elif filt == "kalman":
            yy = _as_2d_array(kwargs.pop("y", self.yy))
            t0 = kwargs.pop("t0", self.t0)
            s0 = kwargs.pop("s0", None)
            P0 = kwargs.pop("P0", "unconditional")
            for key in ("settings", "streams", "verbose"):
                kwargs.pop(key, None)
            provider = self.regime_system(para, *args, **kwargs)
            lik = float(np.sum(kalman_filter(np.asarray(yy), provider, s0=s0, P0=P0)[t0:]))
        else:
            raise ValueError(f"Unknown filter {filt!r}; use 'tpf' or 'kalman'.")

        if not np.isfinite(lik):
            return BAD_LOG_LIKELIHOOD
        return lik

    def simulate(self, para, nsim=200, seed=None, *args, **kwargs):
        """Simulate `nsim` periods of observables after a burn-in of the same length."""
        rng = np.random.default_rng(seed)
        provider = self.regime_system(para, *args, **kwargs)
        reg = provider.regimes[0]
        TT, RR, CC, QQ, ZZ, DD, EE = reg.TT, reg.RR, reg.CC, reg.QQ, reg.ZZ, reg.DD, reg.EE
        MM = np.zeros((DD.size, QQ.shape[0])) if reg.MM is None else reg.MM

        ysim = np.zeros((nsim * 2, DD.size))
        At = np.zeros(TT.shape[0])
        for i in range(nsim * 2):
            e = rng.multivariate_normal(np.zeros(QQ.shape[0]), QQ)
            At = CC + TT @ At + RR @ e
            h = rng.multivariate_normal(np.zeros(EE.shape[0]), EE)
            ysim[i, :] = DD + ZZ @ At + MM @ e + h

        return p.DataFrame(ysim[nsim:, :], columns=self.obs_names)


__all__ = ["LinearStateSpaceModel", "BAD_LOG_LIKELIHOOD"]
