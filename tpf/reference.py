"""
Reference artifacts for bit-exact regression runs.

A deterministic filter run can persist the draw matrices it started from
and, optionally, every resampling index vector it drew. Re-running from the
same file must reproduce the stored indices exactly.
"""
from __future__ import annotations

import os
from typing import Dict, Optional, Sequence

import numpy as np

from .logging_config import get_logger

logger = get_logger("reference")


def save_reference(path, streams, resampling_ids: Optional[Sequence[np.ndarray]] = None) -> str:
    path = os.fspath(path)
    if not path.endswith(".npz"):
        path = path + ".npz"
    if streams.initial_draws is None or streams.shock_draws is None:
        raise ValueError("Only streams with pre-generated draws (deterministic mode) can be saved.")

    arrays = {
        "initial_draws": streams.initial_draws,
        "shock_draws": streams.shock_draws,
    }
    if resampling_ids:
        arrays["resampling_ids"] = np.vstack([np.asarray(ids, dtype=np.int64) for ids in resampling_ids])

    dirname = os.path.dirname(path)
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    np.savez(path, **arrays)
    logger.info("Wrote reference draws to %s", path)
    return path


def load_reference(path) -> Dict[str, np.ndarray]:
    path = os.fspath(path)
    if not path.endswith(".npz") and not os.path.exists(path):
        path = path + ".npz"
    with np.load(path) as f:
        out = {k: f[k] for k in f.files}
    if "resampling_ids" not in out:
        out["resampling_ids"] = None
    return out


__all__ = ["save_reference", "load_reference"]
