from __future__ import annotations

import dataclasses
import os
import warnings
from dataclasses import dataclass, field
from typing import IO, Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import yaml

from .errors import ConfigurationError


# Setting names used by older model configuration files.
_LEGACY_KEYS = {
    "tpf_rstar": "rstar",
    "tpf_cstar": "cstar",
    "tpf_accept_rate": "accept_rate",
    "tpf_target": "target",
    "tpf_n_mh_simulations": "n_mh_simulations",
    "tpf_n_particles": "n_particles",
    "tpf_deterministic": "deterministic",
    "tpf_x_tolerance": "x_tolerance",
    "tpf_rand_mat": "rand_mat",
}

_CASTS = {
    "rstar": float,
    "cstar": float,
    "accept_rate": float,
    "target": float,
    "x_tolerance": float,
    "initial_phi": float,
    "n_mh_simulations": int,
    "n_particles": int,
    "n_workers": int,
    "seed": int,
    "n_presample_periods": int,
    "deterministic": bool,
    "use_parallel_workers": bool,
    "include_presample": bool,
    "correlated_measurement_error": bool,
    "store_resampling_ids": bool,
}


@dataclass(frozen=True)
class TPFSettings:
    """
    Tuning parameters of the tempered particle filter.

    Notes
    -----
    - The deterministic schedule is `initial_phi`, then `deterministic_phis`, then 1.
    - `rand_mat` is only read in deterministic mode; it holds the mutation
      proposal innovations with shape (n_shocks, n_mh_simulations).
    """

    rstar: float = 2.0
    cstar: float = 0.3
    accept_rate: float = 0.4
    target: float = 0.4
    n_mh_simulations: int = 1
    n_particles: int = 1000
    deterministic: bool = False
    x_tolerance: float = 1e-3
    use_parallel_workers: bool = False
    n_workers: int = 4
    rand_mat: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    seed: int = 1848
    initial_phi: float = 0.25
    deterministic_phis: Tuple[float, ...] = ()

    n_presample_periods: int = 0
    include_presample: bool = True
    correlated_measurement_error: bool = True

    store_resampling_ids: bool = False
    reference_path: Optional[str] = None

    def __post_init__(self):
        # YAML reads values such as `1e-3` as strings.
        for name, cast in _CASTS.items():
            try:
                object.__setattr__(self, name, cast(getattr(self, name)))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Setting {name}={getattr(self, name)!r} is invalid: {e}") from e
        if self.rand_mat is not None:
            object.__setattr__(self, "rand_mat", np.atleast_2d(np.asarray(self.rand_mat, dtype=float)))
        object.__setattr__(self, "deterministic_phis", tuple(float(x) for x in self.deterministic_phis))
        self.validate()

    def validate(self) -> None:
        if int(self.n_particles) <= 0:
            raise ConfigurationError(f"n_particles must be positive, got {self.n_particles}.")
        if int(self.n_mh_simulations) <= 0:
            raise ConfigurationError(f"n_mh_simulations must be positive, got {self.n_mh_simulations}.")
        if int(self.n_workers) <= 0:
            raise ConfigurationError(f"n_workers must be positive, got {self.n_workers}.")
        if not np.isfinite(self.rstar) or self.rstar <= 1.0:
            raise ConfigurationError(f"rstar must be a finite number > 1, got {self.rstar}.")
        if not self.cstar > 0.0:
            raise ConfigurationError(f"cstar must be positive, got {self.cstar}.")
        if not (0.0 <= self.accept_rate <= 1.0):
            raise ConfigurationError(f"accept_rate must be in [0, 1], got {self.accept_rate}.")
        if not (0.0 < self.target < 1.0):
            raise ConfigurationError(f"target must be in (0, 1), got {self.target}.")
        if not self.x_tolerance > 0.0:
            raise ConfigurationError(f"x_tolerance must be positive, got {self.x_tolerance}.")
        if int(self.n_presample_periods) < 0:
            raise ConfigurationError("n_presample_periods must be non-negative.")
        if not (0.0 < self.initial_phi <= 1.0):
            raise ConfigurationError(f"initial_phi must be in (0, 1], got {self.initial_phi}.")

        sched = (self.initial_phi,) + self.deterministic_phis + (1.0,)
        if any(b <= a for a, b in zip(sched[:-2], sched[1:-1])) or any(x >= 1.0 for x in self.deterministic_phis):
            raise ConfigurationError(
                f"deterministic schedule must be strictly increasing below 1, got {sched}."
            )

        if self.rand_mat is not None and self.rand_mat.shape[1] != int(self.n_mh_simulations):
            raise ConfigurationError(
                f"rand_mat must have n_mh_simulations={self.n_mh_simulations} columns, "
                f"got shape {self.rand_mat.shape}."
            )

    def phi_schedule(self) -> np.ndarray:
        """Fixed tempering schedule used in deterministic mode."""
        return np.array((self.initial_phi,) + self.deterministic_phis + (1.0,), dtype=float)

    @property
    def n_trim(self) -> int:
        return 0 if self.include_presample else int(self.n_presample_periods)

    def replace(self, **changes) -> "TPFSettings":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        out["deterministic_phis"] = list(self.deterministic_phis)
        if self.rand_mat is not None:
            out["rand_mat"] = self.rand_mat.tolist()
        return out


def _normalize_keys(raw: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in raw.items():
        key = str(key)
        if key in _LEGACY_KEYS:
            warnings.warn(
                f"'{key}' is deprecated and has been replaced with '{_LEGACY_KEYS[key]}'. "
                "Please update your settings files.",
                DeprecationWarning,
            )
            key = _LEGACY_KEYS[key]
        out[key] = value
    return out


def read_settings(source: Union[str, os.PathLike, IO, Mapping[str, Any], None] = None, **overrides) -> TPFSettings:
    """
    Build a `TPFSettings` from a mapping, a YAML file or a YAML stream.

    A top-level ``tpf`` block is used when present. Keyword overrides are
    applied last.
    """
    if source is None:
        raw: Mapping[str, Any] = {}
    elif isinstance(source, Mapping):
        raw = source
    elif isinstance(source, (str, os.PathLike)):
        with open(source, "r") as f:
            raw = yaml.safe_load(f) or {}
    else:
        raw = yaml.safe_load(source) or {}

    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Settings must be a mapping, got {type(raw).__name__}.")

    if "tpf" in raw:
        raw = raw["tpf"] or {}

    values = _normalize_keys(raw)
    values.update(overrides)

    known = {f.name for f in dataclasses.fields(TPFSettings)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown tpf setting(s): {unknown}")

    if "deterministic_phis" in values and values["deterministic_phis"] is not None:
        values["deterministic_phis"] = tuple(values["deterministic_phis"])

    try:
        return TPFSettings(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid tpf settings: {e}") from e


__all__ = ["TPFSettings", "read_settings"]
