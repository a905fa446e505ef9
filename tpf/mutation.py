from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numba import jit

from .logging_config import get_logger
from .particles import ParticleEnsemble

logger = get_logger("mutation")


def update_c(c: float, accept_rate: float, target: float) -> float:
    """
    New proposal scale c * (0.95 + 0.1 * logistic(20 (accept_rate - target))).

    The multiplicative change lies in (0.95, 1.05) and equals one when the
    acceptance rate is on target.
    """
    x = 20.0 * (accept_rate - target)
    return c * (0.95 + 0.1 * np.exp(x) / (1.0 + np.exp(x)))


@jit(nopython=True, nogil=True)
def _log_tempered_posterior(eps, base, RR, ZZ, ydd, iEE, iQQ, phi):
    s = base + RR @ eps
    err = ydd - ZZ @ s
    lp = -0.5 * phi * np.dot(err, iEE @ err) - 0.5 * np.dot(eps, iQQ @ eps)
    return lp, s


@jit(nopython=True, nogil=True)
def mh_chains(lagged_states, shocks, z, u, TT, RR, CC, ZZ, ydd, iEE, iQQ, LQ, c, phi):
    """
    Random-walk Metropolis-Hastings on each particle's shock.

    Particle i uses only row i of every input, so the result for a particle
    does not depend on which block it is processed in.

    Returns the new states, the new shocks and, per particle, whether the
    last proposal of its chain was accepted.
    """
    n, neps = shocks.shape
    ns = lagged_states.shape[1]
    n_mh = z.shape[1]

    out_states = np.empty((n, ns))
    out_shocks = np.empty((n, neps))
    accepted = np.zeros(n)

    for i in range(n):
        base = CC + TT @ lagged_states[i]
        eps = shocks[i].copy()
        lp, s = _log_tempered_posterior(eps, base, RR, ZZ, ydd, iEE, iQQ, phi)

        acc = 0.0
        for k in range(n_mh):
            eps_new = eps + c * (LQ @ z[i, k])
            lp_new, s_new = _log_tempered_posterior(eps_new, base, RR, ZZ, ydd, iEE, iQQ, phi)
            if np.log(u[i, k]) < lp_new - lp:
                eps = eps_new
                s = s_new
                lp = lp_new
                acc = 1.0
            else:
                acc = 0.0

        out_states[i] = s
        out_shocks[i] = eps
        accepted[i] = acc

    return out_states, out_shocks, accepted


def _chunk_slices(n: int, *, n_workers: int, chunks_per_worker: int = 4) -> list[tuple[int, int]]:
    if n <= 0:
        return []
    n_workers = int(max(1, n_workers))
    chunks_per_worker = int(max(1, chunks_per_worker))
    n_tasks = min(n, n_workers * chunks_per_worker)
    chunk = int((n + n_tasks - 1) // n_tasks)
    return [(i, min(i + chunk, n)) for i in range(0, n, chunk)]


@dataclass(frozen=True)
class MutationResult:
    ensemble: ParticleEnsemble
    accepted: np.ndarray

    @property
    def accept_rate(self) -> float:
        return float(np.mean(self.accepted))


def _f64(x):
    return np.ascontiguousarray(x, dtype=np.float64)


class MutationEvaluator:
    """
    Runs the MH kernel over all particles, optionally fanned out to a thread
    pool. Each task returns its block of results; blocks are stitched
    together by particle index once every task has finished.
    """

    def __init__(self, *, n_workers: int = 1, parallel: bool = False):
        self._n_workers = int(max(1, n_workers))
        self._executor = None

        if parallel and self._n_workers > 1:
            from concurrent.futures import ThreadPoolExecutor

            self._executor = ThreadPoolExecutor(max_workers=self._n_workers)

    @property
    def parallel(self) -> bool:
        return self._executor is not None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def mutate(self, ensemble: ParticleEnsemble, *, TT, RR, CC, ZZ, ydd, iEE, iQQ, LQ,
               c: float, phi: float, z: np.ndarray, u: np.ndarray) -> MutationResult:
        lagged = _f64(ensemble.lagged_states)
        shocks = _f64(ensemble.shocks)
        z = _f64(z)
        u = _f64(u)
        fixed = (_f64(TT), _f64(RR), _f64(CC), _f64(ZZ), _f64(ydd), _f64(iEE), _f64(iQQ), _f64(LQ),
                 float(c), float(phi))

        n = ensemble.n_particles

        if self._executor is None:
            states, new_shocks, accepted = mh_chains(lagged, shocks, z, u, *fixed)
        else:
            slices = _chunk_slices(n, n_workers=self._n_workers)

            def _mutate_slice(bounds: tuple[int, int]):
                lo, hi = bounds
                return lo, mh_chains(lagged[lo:hi], shocks[lo:hi], z[lo:hi], u[lo:hi], *fixed)

            states = np.empty_like(lagged)
            new_shocks = np.empty_like(shocks)
            accepted = np.empty(n)
            for lo, (s_blk, e_blk, a_blk) in self._executor.map(_mutate_slice, slices):
                hi = lo + a_blk.size
                states[lo:hi] = s_blk
                new_shocks[lo:hi] = e_blk
                accepted[lo:hi] = a_blk

        return MutationResult(ensemble=ensemble.with_mutation(states, new_shocks), accepted=accepted)


__all__ = ["update_c", "mh_chains", "MutationEvaluator", "MutationResult"]
