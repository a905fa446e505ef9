from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .errors import DimensionMismatchError
from .linalg import get_chol


def effective_sample_size(weights: np.ndarray) -> float:
    """n^2 / sum(w^2) for weights normalized to mean one."""
    w = np.asarray(weights, dtype=float).reshape(-1)
    n = w.size
    s = float(np.sum(w))
    if not np.isfinite(s) or s <= 0:
        return 0.0
    w = n * w / s
    return float(n ** 2 / np.sum(w * w))


@dataclass(frozen=True)
class ParticleEnsemble:
    """
    Fixed-size particle swarm, one row per particle.

    `lagged_states` holds each particle's ancestor state s_{t-1}, so that the
    current state can be recomputed from a shock: s_t = CC + TT s_{t-1} + RR eps_t.
    Every resampling or mutation step returns a new ensemble.
    """

    states: np.ndarray
    lagged_states: np.ndarray
    shocks: np.ndarray
    weights: np.ndarray

    def __post_init__(self):
        n = self.states.shape[0]
        for name in ("lagged_states", "shocks", "weights"):
            if getattr(self, name).shape[0] != n:
                raise DimensionMismatchError(
                    f"{name} has {getattr(self, name).shape[0]} particles, states has {n}."
                )

    @property
    def n_particles(self) -> int:
        return self.states.shape[0]

    @property
    def n_states(self) -> int:
        return self.states.shape[1]

    @property
    def n_shocks(self) -> int:
        return self.shocks.shape[1]

    def reindex(self, ids: np.ndarray) -> "ParticleEnsemble":
        """Copy the particles selected by `ids`; weights reset to one."""
        ids = np.asarray(ids, dtype=int)
        return ParticleEnsemble(
            states=self.states[ids],
            lagged_states=self.lagged_states[ids],
            shocks=self.shocks[ids],
            weights=np.ones(ids.size),
        )

    def propagate(self, TT: np.ndarray, RR: np.ndarray, CC: np.ndarray, shocks: np.ndarray) -> "ParticleEnsemble":
        """Move every particle one period forward with the given structural shocks."""
        shocks = np.asarray(shocks, dtype=float)
        if shocks.shape != (self.n_particles, RR.shape[1]):
            raise DimensionMismatchError(
                f"shocks must have shape {(self.n_particles, RR.shape[1])}, got {shocks.shape}."
            )
        new_states = CC[None, :] + self.states @ TT.T + shocks @ RR.T
        return ParticleEnsemble(
            states=new_states,
            lagged_states=self.states,
            shocks=shocks,
            weights=self.weights.copy(),
        )

    def with_mutation(self, states: np.ndarray, shocks: np.ndarray) -> "ParticleEnsemble":
        return ParticleEnsemble(
            states=states,
            lagged_states=self.lagged_states,
            shocks=shocks,
            weights=self.weights.copy(),
        )

    def effective_sample_size(self) -> float:
        return effective_sample_size(self.weights)

    def mean(self) -> np.ndarray:
        w = self.weights / np.sum(self.weights)
        return w @ self.states


def initial_ensemble(s0: np.ndarray, P0: np.ndarray, draws: np.ndarray, n_shocks: int) -> ParticleEnsemble:
    """
    Draw s_0 ~ N(s0, P0) from standard normal `draws` of shape (n_particles, n_states).
    """
    s0 = np.asarray(s0, dtype=float).reshape(-1)
    P0 = np.atleast_2d(np.asarray(P0, dtype=float))
    draws = np.atleast_2d(np.asarray(draws, dtype=float))
    ns = s0.size
    if P0.shape != (ns, ns):
        raise DimensionMismatchError(f"P0 must have shape {(ns, ns)}, got {P0.shape}.")
    if draws.shape[1] != ns:
        raise DimensionMismatchError(f"Initial draws must have {ns} columns, got {draws.shape}.")

    L = get_chol(P0)
    states = s0[None, :] + draws @ L.T
    n = draws.shape[0]
    return ParticleEnsemble(
        states=states,
        lagged_states=states.copy(),
        shocks=np.zeros((n, int(n_shocks))),
        weights=np.ones(n),
    )


__all__ = ["ParticleEnsemble", "initial_ensemble", "effective_sample_size"]
