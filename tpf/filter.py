"""
Tempered particle filter likelihood for linear Gaussian state space models.

For each period the filter propagates the particles with fresh shocks, then
moves from the flat density to the full observation density through a
sequence of tempering stages. Each stage reweights and resamples the
particles and runs a Metropolis-Hastings mutation on their shocks. The
sum over stages of log(mean(incremental weight x prior weight)) is the
period's log-likelihood increment.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import numpy as np

from .correction import correct_and_resample
from .errors import DimensionMismatchError
from .linalg import get_chol, precision_and_logdet, unconditional_covariance
from .logging_config import VERBOSITY, get_logger, log_progress, verbosity
from .mutation import MutationEvaluator, update_c
from .particles import ParticleEnsemble, effective_sample_size, initial_ensemble
from .reference import save_reference
from .settings import TPFSettings
from .streams import TPFRandomStreams
from .system import RegimeSwitchingSystem, as_regime_system
from .tempering import TemperingContext, inefficiency, solve_phi

logger = get_logger("filter")


@dataclass
class TPFResult:
    log_lik: np.ndarray  # (T - n_trim,)
    neff: np.ndarray  # (T - n_trim,)
    times: np.ndarray  # (T,)
    phi_schedules: List[np.ndarray]
    accept_rates: np.ndarray
    scales: np.ndarray
    n_unbracketed: int
    particles: ParticleEnsemble
    resampling_ids: Optional[List[np.ndarray]] = None
    index: Optional[Any] = None

    @property
    def total_log_lik(self) -> float:
        return float(np.sum(self.log_lik))

    @property
    def n_stages(self) -> np.ndarray:
        return np.array([len(phis) for phis in self.phi_schedules], dtype=int)

    def to_frame(self):
        import pandas as p

        frame = p.DataFrame({"log_lik": self.log_lik, "neff": self.neff})
        if self.index is not None:
            frame.index = self.index
        return frame


@dataclass
class _RunState:
    c: float
    accept_rate: float
    n_unbracketed: int = 0
    resampling_ids: List[np.ndarray] = field(default_factory=list)


def _as_2d_data(yy):
    index = getattr(yy, "index", None)
    values = getattr(yy, "values", yy)
    arr = np.asarray(values, dtype=float)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.ndim != 2:
        raise DimensionMismatchError(f"Data must be 1- or 2-dimensional, got shape {arr.shape}.")
    return arr, index


def _check_dimensions(provider: RegimeSwitchingSystem, y: np.ndarray, s0: np.ndarray,
                      P0: np.ndarray, settings: TPFSettings) -> None:
    if y.shape[1] != provider.n_obs:
        raise DimensionMismatchError(
            f"Data has {y.shape[1]} observables but the measurement equation has {provider.n_obs}."
        )
    if s0.size != provider.n_states:
        raise DimensionMismatchError(f"s0 has {s0.size} entries, the system has {provider.n_states} states.")
    if P0.shape != (provider.n_states, provider.n_states):
        raise DimensionMismatchError(
            f"P0 must have shape {(provider.n_states, provider.n_states)}, got {P0.shape}."
        )
    provider.check_periods(y.shape[0])
    if settings.deterministic and settings.rand_mat is not None and settings.rand_mat.shape[0] != provider.n_shocks:
        raise DimensionMismatchError(
            f"rand_mat has {settings.rand_mat.shape[0]} rows, the system has {provider.n_shocks} shocks."
        )
    if settings.n_trim > y.shape[0]:
        raise DimensionMismatchError(
            f"n_presample_periods={settings.n_trim} exceeds the {y.shape[0]} periods of data."
        )


def tempered_particle_filter(
    system,
    yy,
    s0: Optional[np.ndarray] = None,
    P0="unconditional",
    settings: Optional[TPFSettings] = None,
    *,
    regime_index: Optional[Sequence[int]] = None,
    streams: Optional[TPFRandomStreams] = None,
    index: Optional[Any] = None,
    verbose: str = "none",
) -> TPFResult:
    """
    Run the tempered particle filter.

    Parameters
    ----------
    system
        `SystemMatrices`, a list of them (with `regime_index`) or a
        `RegimeSwitchingSystem`.
    yy
        Observations, one row per period; NaN marks a missing entry. A
        pandas DataFrame's index is carried to the result.
    s0, P0
        Mean and covariance of the initial state; `P0="unconditional"` uses
        the stationary covariance of the first period's regime.
    settings
        Tuning parameters; defaults to `TPFSettings()`.
    streams
        Random streams; by default built from `settings` (seeded in
        deterministic mode, fresh entropy otherwise).
    index
        Time index of the rows of `yy`; overrides a DataFrame index.
    verbose
        "none", "low" or "high". Per-period records are logged at INFO
        from "low" on, per-stage records from "high" on; below that they go
        to DEBUG.
    """
    if settings is None:
        settings = TPFSettings()
    report = verbosity(verbose)

    provider = as_regime_system(system, regime_index,
                                correlated_measurement_error=settings.correlated_measurement_error)
    y, data_index = _as_2d_data(yy)
    if index is None:
        index = data_index
    elif len(index) != y.shape[0]:
        raise DimensionMismatchError(f"index has {len(index)} entries, the data has {y.shape[0]} periods.")
    nobs = y.shape[0]
    n = settings.n_particles
    ns, neps = provider.n_states, provider.n_shocks

    s0 = np.zeros(ns) if s0 is None else np.asarray(s0, dtype=float).reshape(-1)
    if isinstance(P0, str):
        if P0 != "unconditional":
            raise ValueError(f"Unknown P0 option {P0!r}.")
        TT, RR, _ = provider.get_transition(0)
        QQ, _ = provider.get_covariances(0)
        P0 = unconditional_covariance(TT, RR, QQ)
    P0 = np.atleast_2d(np.asarray(P0, dtype=float))

    _check_dimensions(provider, y, s0, P0, settings)

    if streams is None:
        streams = TPFRandomStreams.from_settings(settings, ns, neps)

    ensemble = initial_ensemble(s0, P0, streams.initial(n, ns), neps)

    lik = np.zeros(nobs)
    neff = np.zeros(nobs)
    times = np.zeros(nobs)
    accept_rates = np.zeros(nobs)
    scales = np.zeros(nobs)
    phi_schedules: List[np.ndarray] = []

    run = _RunState(c=settings.cstar, accept_rate=settings.accept_rate)
    shock_factors = {}

    with MutationEvaluator(n_workers=settings.n_workers, parallel=settings.use_parallel_workers) as mutator:
        for t in range(nobs):
            tic = time.perf_counter()

            TT, RR, CC = provider.get_transition(t)
            QQ, _ = provider.get_covariances(t)
            obs = provider.observation(t, y[t])

            regime = provider.regime(t)
            if regime not in shock_factors:
                shock_factors[regime] = (get_chol(QQ), np.linalg.pinv(QQ))
            LQ, iQQ = shock_factors[regime]

            # Propagate
            eps = streams.shocks(n, neps) @ LQ.T
            ensemble = ensemble.propagate(TT, RR, CC, eps)

            if obs.is_empty:
                neff[t] = effective_sample_size(ensemble.weights)
                phi_schedules.append(np.zeros(0))
                accept_rates[t] = run.accept_rate
                scales[t] = run.c
                times[t] = time.perf_counter() - tic
                logger.debug("t=%d: no observations, particles propagated only.", t)
                continue

            iEE, logdet = precision_and_logdet(obs.EE)
            ydd = obs.y - obs.DD
            ctx = TemperingContext.from_errors(obs.errors(ensemble.states), iEE, logdet)

            def correct(phi_new, phi_old, ens, ctx, initialize=False):
                res = correct_and_resample(phi_new, phi_old, ens, ctx,
                                           streams.resampling_uniforms(n), initialize=initialize)
                lik[t] += res.log_lik
                if settings.store_resampling_ids:
                    run.resampling_ids.append(res.ids)
                return res

            def mutate(ens, phi):
                run.c = update_c(run.c, run.accept_rate, settings.target)
                z, u = streams.mutation_draws(n, settings.n_mh_simulations, neps, settings.rand_mat)
                res = mutator.mutate(ens, TT=TT, RR=RR, CC=CC, ZZ=obs.ZZ, ydd=ydd, iEE=iEE,
                                     iQQ=iQQ, LQ=LQ, c=run.c, phi=phi, z=z, u=u)
                run.accept_rate = res.accept_rate
                log_progress(logger, report, "high", "t=%d: phi=%.6f c=%.4f accept_rate=%.3f",
                             t, phi, run.c, run.accept_rate)
                return res.ensemble

            # First stage: from the flat density to phi_1
            if settings.deterministic:
                schedule = settings.phi_schedule()
                phi_1 = float(schedule[0])
            else:
                sol = solve_phi(ctx, 0.0, settings.rstar, settings.x_tolerance, initialize=True)
                phi_1 = sol.phi
                if not sol.bracketed:
                    run.n_unbracketed += 1

            res = correct(phi_1, 0.0, ensemble, ctx, initialize=True)
            ensemble = res.ensemble
            weights = res.weights
            phis = [phi_1]
            phi_old = phi_1
            ctx = TemperingContext.from_errors(obs.errors(ensemble.states), iEE, logdet)

            log_progress(logger, report, "high", "t=%d: phi_1=%.6f", t, phi_1)

            # Intermediate stages
            if settings.deterministic:
                stages = [float(phi) for phi in schedule[1:-1]]
            else:
                stages = None

            while phi_old < 1.0:
                if stages is not None:
                    if not stages:
                        break
                    phi_new = stages.pop(0)
                else:
                    ineff_check = inefficiency(1.0, phi_old, ctx)
                    log_progress(logger, report, "high", "t=%d: inefficiency at phi=1 is %.4f", t, ineff_check)
                    if ineff_check <= settings.rstar:
                        break
                    sol = solve_phi(ctx, phi_old, settings.rstar, settings.x_tolerance)
                    if not sol.bracketed:
                        run.n_unbracketed += 1
                        break
                    phi_new = sol.phi
                    if phi_new >= 1.0:
                        break

                res = correct(phi_new, phi_old, ensemble, ctx)
                weights = res.weights
                ensemble = mutate(res.ensemble, phi_new)
                ctx = TemperingContext.from_errors(obs.errors(ensemble.states), iEE, logdet)
                phis.append(phi_new)
                phi_old = phi_new

            # Final stage: phi = 1
            if phi_old < 1.0:
                res = correct(1.0, phi_old, ensemble, ctx)
                weights = res.weights
                ensemble = res.ensemble
                phis.append(1.0)

            neff[t] = effective_sample_size(weights)
            ensemble = mutate(ensemble, 1.0)

            phi_schedules.append(np.asarray(phis))
            accept_rates[t] = run.accept_rate
            scales[t] = run.c
            times[t] = time.perf_counter() - tic

            log_progress(logger, report, "low", "t=%d: stages=%d log_lik=%.6f neff=%.1f time=%.3fs",
                         t, len(phis), lik[t], neff[t], times[t])

    if settings.deterministic and settings.reference_path is not None:
        save_reference(settings.reference_path, streams,
                       run.resampling_ids if settings.store_resampling_ids else None)

    n_trim = settings.n_trim
    return TPFResult(
        log_lik=lik[n_trim:],
        neff=neff[n_trim:],
        times=times,
        phi_schedules=phi_schedules,
        accept_rates=accept_rates,
        scales=scales,
        n_unbracketed=run.n_unbracketed,
        particles=ensemble,
        resampling_ids=run.resampling_ids if settings.store_resampling_ids else None,
        index=None if index is None else index[n_trim:],
    )


__all__ = ["tempered_particle_filter", "TPFResult", "VERBOSITY"]
