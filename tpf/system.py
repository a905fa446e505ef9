from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .errors import DimensionMismatchError


def _require_shape(arr: np.ndarray, shape: Tuple[int, ...], *, name: str) -> np.ndarray:
    arr = np.asarray(arr, dtype=float)
    if arr.shape != shape:
        raise DimensionMismatchError(f"{name} must have shape {shape}, got {arr.shape}.")
    return arr


@dataclass(frozen=True)
class SystemMatrices:
    """
    One regime of a linear Gaussian state space model.

        s_t = CC + TT s_{t-1} + RR eps_t,        eps_t ~ N(0, QQ)
        y_t = DD + ZZ s_t + MM eps_t + eta_t,    eta_t ~ N(0, EE)
    """

    TT: np.ndarray
    RR: np.ndarray
    QQ: np.ndarray
    ZZ: np.ndarray
    DD: np.ndarray
    EE: np.ndarray
    CC: Optional[np.ndarray] = None
    MM: Optional[np.ndarray] = None

    def __post_init__(self):
        TT = np.atleast_2d(np.asarray(self.TT, dtype=float))
        ns = TT.shape[0]
        _require_shape(TT, (ns, ns), name="TT")

        RR = np.asarray(self.RR, dtype=float).reshape(ns, -1)
        neps = RR.shape[1]
        QQ = _require_shape(np.atleast_2d(self.QQ), (neps, neps), name="QQ")

        ZZ = np.atleast_2d(np.asarray(self.ZZ, dtype=float))
        if ZZ.shape[1] != ns:
            raise DimensionMismatchError(f"ZZ must have {ns} columns, got shape {ZZ.shape}.")
        ny = ZZ.shape[0]
        DD = _require_shape(np.asarray(self.DD, dtype=float).reshape(-1), (ny,), name="DD")

        EE = np.asarray(self.EE, dtype=float)
        if EE.ndim < 2:
            EE = np.diag(np.broadcast_to(np.atleast_1d(EE), (ny,)))
        EE = _require_shape(EE, (ny, ny), name="EE")

        CC = np.zeros(ns) if self.CC is None else _require_shape(np.asarray(self.CC, dtype=float).reshape(-1), (ns,), name="CC")
        MM = None if self.MM is None else _require_shape(np.atleast_2d(self.MM), (ny, neps), name="MM")

        for name, value in (("TT", TT), ("RR", RR), ("QQ", QQ), ("ZZ", ZZ),
                            ("DD", DD), ("EE", EE), ("CC", CC), ("MM", MM)):
            object.__setattr__(self, name, value)

    @property
    def n_states(self) -> int:
        return self.TT.shape[0]

    @property
    def n_shocks(self) -> int:
        return self.RR.shape[1]

    @property
    def n_obs(self) -> int:
        return self.ZZ.shape[0]

    def measurement_error_covariance(self, correlated: bool = True) -> np.ndarray:
        """EE, plus MM QQ MM' when a shock loading on the observables is present."""
        if correlated and self.MM is not None:
            return self.EE + self.MM @ self.QQ @ self.MM.T
        return self.EE


@dataclass(frozen=True)
class ObservationSlice:
    """One period of data with the system restricted to its non-missing rows."""

    t: int
    mask: np.ndarray
    y: np.ndarray
    ZZ: np.ndarray
    DD: np.ndarray
    EE: np.ndarray

    @property
    def n_active(self) -> int:
        return int(self.y.size)

    @property
    def is_empty(self) -> bool:
        return self.n_active == 0

    def errors(self, states: np.ndarray) -> np.ndarray:
        """Measurement errors y - DD - ZZ s, one row per particle."""
        return (self.y - self.DD)[None, :] - states @ self.ZZ.T


def slice_observation(t: int, y_t: np.ndarray, ZZ: np.ndarray, DD: np.ndarray, EE: np.ndarray) -> ObservationSlice:
    y_t = np.asarray(y_t, dtype=float).reshape(-1)
    if y_t.size != ZZ.shape[0]:
        raise DimensionMismatchError(
            f"Observation at t={t} has {y_t.size} entries but the measurement equation has {ZZ.shape[0]}."
        )
    mask = np.isfinite(y_t)
    return ObservationSlice(
        t=t,
        mask=mask,
        y=y_t[mask],
        ZZ=ZZ[mask, :],
        DD=DD[mask],
        EE=EE[np.ix_(mask, mask)],
    )


class RegimeSwitchingSystem:
    """
    Time-indexed selection among a fixed set of `SystemMatrices`.

    Regimes change only at period boundaries; `regime_index[t]` names the
    regime active in period t.
    """

    def __init__(self, regimes: Sequence[SystemMatrices], regime_index: Optional[Sequence[int]] = None,
                 *, correlated_measurement_error: bool = True):
        regimes = list(regimes)
        if not regimes:
            raise DimensionMismatchError("At least one regime is required.")

        first = regimes[0]
        for i, reg in enumerate(regimes[1:], start=1):
            if (reg.n_states, reg.n_shocks, reg.n_obs) != (first.n_states, first.n_shocks, first.n_obs):
                raise DimensionMismatchError(
                    f"Regime {i} has (states, shocks, obs)={(reg.n_states, reg.n_shocks, reg.n_obs)}, "
                    f"regime 0 has {(first.n_states, first.n_shocks, first.n_obs)}."
                )

        self.regimes = regimes
        self.regime_index = None if regime_index is None else np.asarray(regime_index, dtype=int)
        if self.regime_index is not None:
            bad = (self.regime_index < 0) | (self.regime_index >= len(regimes))
            if np.any(bad):
                raise DimensionMismatchError(
                    f"regime_index refers to regimes outside 0..{len(regimes) - 1}."
                )
        elif len(regimes) > 1:
            raise DimensionMismatchError("regime_index is required when more than one regime is given.")

        self.correlated_measurement_error = bool(correlated_measurement_error)
        self._EE = [reg.measurement_error_covariance(self.correlated_measurement_error) for reg in regimes]

    @property
    def n_states(self) -> int:
        return self.regimes[0].n_states

    @property
    def n_shocks(self) -> int:
        return self.regimes[0].n_shocks

    @property
    def n_obs(self) -> int:
        return self.regimes[0].n_obs

    @property
    def n_regimes(self) -> int:
        return len(self.regimes)

    def check_periods(self, nobs: int) -> None:
        if self.regime_index is not None and self.regime_index.size < nobs:
            raise DimensionMismatchError(
                f"regime_index covers {self.regime_index.size} periods but the data has {nobs}."
            )

    def regime(self, t: int) -> int:
        if self.regime_index is None:
            return 0
        return int(self.regime_index[t])

    def get_transition(self, t: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        reg = self.regimes[self.regime(t)]
        return reg.TT, reg.RR, reg.CC

    def get_measurement(self, t: int) -> Tuple[np.ndarray, np.ndarray]:
        reg = self.regimes[self.regime(t)]
        return reg.ZZ, reg.DD

    def get_covariances(self, t: int) -> Tuple[np.ndarray, np.ndarray]:
        """Shock covariance and effective measurement-error covariance."""
        i = self.regime(t)
        return self.regimes[i].QQ, self._EE[i]

    def regime_matrices(self, i: int) -> Tuple[np.ndarray, ...]:
        """TT, RR, CC, QQ, ZZ, DD and effective EE of regime i."""
        reg = self.regimes[i]
        return reg.TT, reg.RR, reg.CC, reg.QQ, reg.ZZ, reg.DD, self._EE[i]

    def observation(self, t: int, y_t: np.ndarray) -> ObservationSlice:
        ZZ, DD = self.get_measurement(t)
        _, EE = self.get_covariances(t)
        return slice_observation(t, y_t, ZZ, DD, EE)


def as_regime_system(system: Union[SystemMatrices, RegimeSwitchingSystem, Sequence[SystemMatrices]],
                     regime_index: Optional[Sequence[int]] = None,
                     *, correlated_measurement_error: bool = True) -> RegimeSwitchingSystem:
    if isinstance(system, RegimeSwitchingSystem):
        return system
    if isinstance(system, SystemMatrices):
        system = [system]
    return RegimeSwitchingSystem(system, regime_index,
                                 correlated_measurement_error=correlated_measurement_error)


def zlb_regime_indices(nobs: int, zlb_start: Optional[int] = None) -> np.ndarray:
    """
    Regime of each period: 0 before the zero-lower-bound period, 1 from
    `zlb_start` (0-based) on.
    """
    idx = np.zeros(int(nobs), dtype=int)
    if zlb_start is not None:
        if not (0 <= zlb_start <= nobs):
            raise DimensionMismatchError(f"zlb_start={zlb_start} is outside the sample of {nobs} periods.")
        idx[int(zlb_start):] = 1
    return idx


def zlb_regime_matrices(system: SystemMatrices, anticipated_shocks: Sequence[int] = ()) -> list:
    """
    Pre-ZLB and ZLB regimes of a model with anticipated policy shocks.

    The anticipated shocks have zero variance before the ZLB period; every
    other matrix is shared.
    """
    anticipated = np.asarray(list(anticipated_shocks), dtype=int)
    if anticipated.size == 0:
        return [system]
    if np.any((anticipated < 0) | (anticipated >= system.n_shocks)):
        raise DimensionMismatchError(
            f"anticipated_shocks must index the {system.n_shocks} shocks, got {anticipated.tolist()}."
        )

    QQ_pre = system.QQ.copy()
    QQ_pre[anticipated, :] = 0.0
    QQ_pre[:, anticipated] = 0.0
    return [replace(system, QQ=QQ_pre), system]


__all__ = [
    "SystemMatrices",
    "ObservationSlice",
    "slice_observation",
    "RegimeSwitchingSystem",
    "as_regime_system",
    "zlb_regime_indices",
    "zlb_regime_matrices",
]
