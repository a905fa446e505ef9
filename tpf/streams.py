from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .errors import DimensionMismatchError
from .settings import TPFSettings


class TPFRandomStreams:
    """
    Every source of randomness used by one filter invocation.

    Four independent generators are spawned from one seed sequence: initial
    particle draws, period shocks, resampling and mutation. In deterministic
    mode the initial draws and the shock draws are generated once up front
    and the shock draws are reused in every period.
    """

    def __init__(self, seed: Optional[int] = None, *, deterministic: bool = False,
                 initial_draws: Optional[np.ndarray] = None,
                 shock_draws: Optional[np.ndarray] = None):
        self.seed = seed
        self.deterministic = bool(deterministic)
        ss = np.random.SeedSequence(seed)
        g_init, g_shock, g_resample, g_mutation = [np.random.default_rng(s) for s in ss.spawn(4)]
        self._initial_rng = g_init
        self._shock_rng = g_shock
        self.resampling_rng = g_resample
        self.mutation_rng = g_mutation

        self.initial_draws = None if initial_draws is None else np.atleast_2d(np.asarray(initial_draws, dtype=float))
        self.shock_draws = None if shock_draws is None else np.atleast_2d(np.asarray(shock_draws, dtype=float))

    @classmethod
    def from_settings(cls, settings: TPFSettings, n_states: int, n_shocks: int) -> "TPFRandomStreams":
        if not settings.deterministic:
            return cls(None, deterministic=False)
        streams = cls(settings.seed, deterministic=True)
        n = settings.n_particles
        streams.initial_draws = streams._initial_rng.standard_normal(size=(n, n_states))
        streams.shock_draws = streams._shock_rng.standard_normal(size=(n, n_shocks))
        return streams

    @classmethod
    def from_reference(cls, path, settings: TPFSettings) -> "TPFRandomStreams":
        """Replay the draw matrices stored by `tpf.reference.save_reference`."""
        from .reference import load_reference

        ref = load_reference(path)
        return cls(settings.seed, deterministic=settings.deterministic,
                   initial_draws=ref["initial_draws"], shock_draws=ref["shock_draws"])

    def initial(self, n_particles: int, n_states: int) -> np.ndarray:
        if self.initial_draws is not None:
            if self.initial_draws.shape != (n_particles, n_states):
                raise DimensionMismatchError(
                    f"Initial draws have shape {self.initial_draws.shape}, expected {(n_particles, n_states)}."
                )
            return self.initial_draws
        return self._initial_rng.standard_normal(size=(n_particles, n_states))

    def shocks(self, n_particles: int, n_shocks: int) -> np.ndarray:
        """Standard normal draws for one period's shocks."""
        if self.shock_draws is not None:
            if self.shock_draws.shape != (n_particles, n_shocks):
                raise DimensionMismatchError(
                    f"Shock draws have shape {self.shock_draws.shape}, expected {(n_particles, n_shocks)}."
                )
            return self.shock_draws
        return self._shock_rng.standard_normal(size=(n_particles, n_shocks))

    def resampling_uniforms(self, n_particles: int) -> np.ndarray:
        return self.resampling_rng.random(n_particles)

    def mutation_draws(self, n_particles: int, n_mh: int, n_shocks: int,
                       rand_mat: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Proposal innovations (n_particles, n_mh, n_shocks) and acceptance
        uniforms (n_particles, n_mh). Row i belongs to particle i whatever
        the order in which particles are processed.
        """
        if self.deterministic and rand_mat is not None:
            rand_mat = np.atleast_2d(np.asarray(rand_mat, dtype=float))
            if rand_mat.shape != (n_shocks, n_mh):
                raise DimensionMismatchError(
                    f"rand_mat must have shape {(n_shocks, n_mh)}, got {rand_mat.shape}."
                )
            z = np.broadcast_to(rand_mat.T[None, :, :], (n_particles, n_mh, n_shocks)).copy()
        else:
            z = self.mutation_rng.standard_normal(size=(n_particles, n_mh, n_shocks))
        u = self.mutation_rng.random((n_particles, n_mh))
        return z, u


__all__ = ["TPFRandomStreams"]
