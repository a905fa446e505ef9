import numpy as np
import pytest

from tpf.settings import TPFSettings
from tpf.system import SystemMatrices


def _two_state_system(ee=0.1):
    return SystemMatrices(
        TT=np.array([[0.9, 0.1], [0.0, 0.5]]),
        RR=np.eye(2),
        QQ=np.diag([0.5 ** 2, 0.3 ** 2]),
        ZZ=np.array([[1.0, 1.0]]),
        DD=np.array([0.2]),
        EE=np.array([[ee]]),
    )


def _simulate(system, nobs, seed):
    rng = np.random.default_rng(seed)
    LQ = np.linalg.cholesky(system.QQ)
    s = np.zeros(system.n_states)
    y = np.zeros((nobs, system.n_obs))
    for t in range(nobs):
        s = system.CC + system.TT @ s + system.RR @ (LQ @ rng.standard_normal(system.n_shocks))
        y[t] = system.DD + system.ZZ @ s + np.sqrt(np.diag(system.EE)) * rng.standard_normal(system.n_obs)
    return y


@pytest.fixture
def system():
    return _two_state_system()


@pytest.fixture
def data(system):
    return _simulate(system, 5, seed=0)


@pytest.fixture
def long_data(system):
    return _simulate(system, 20, seed=1)


@pytest.fixture
def deterministic_settings():
    return TPFSettings(n_particles=1000, deterministic=True, seed=47)
