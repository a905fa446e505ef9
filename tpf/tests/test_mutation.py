import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from tpf.mutation import MutationEvaluator, _chunk_slices, mh_chains, update_c
from tpf.particles import ParticleEnsemble


@pytest.mark.parametrize("c", [0.1, 0.3, 2.0])
def test_update_c_on_target_is_unchanged(c):
    assert update_c(c, 0.4, 0.4) == pytest.approx(c, rel=1e-15)


def test_update_c_direction_and_bounds():
    c = 0.3
    assert update_c(c, 0.9, 0.4) > c
    assert update_c(c, 0.1, 0.4) < c
    for acc in np.linspace(0.0, 1.0, 21):
        factor = update_c(c, acc, 0.4) / c
        assert 0.95 <= factor <= 1.05


def _inputs(n=200, n_mh=2, seed=0):
    rng = np.random.default_rng(seed)
    ns, neps = 2, 2
    args = dict(
        TT=np.array([[0.9, 0.1], [0.0, 0.5]]),
        RR=np.eye(ns),
        CC=np.zeros(ns),
        ZZ=np.array([[1.0, 1.0]]),
        ydd=np.array([0.7]),
        iEE=np.array([[10.0]]),
        iQQ=np.diag([4.0, 1.0 / 0.09]),
        LQ=np.diag([0.5, 0.3]),
    )
    lagged = rng.normal(size=(n, ns))
    shocks = rng.normal(scale=0.3, size=(n, neps))
    states = lagged @ args["TT"].T + shocks @ args["RR"].T
    ens = ParticleEnsemble(states=states, lagged_states=lagged, shocks=shocks, weights=np.ones(n))
    z = rng.standard_normal((n, n_mh, neps))
    u = rng.random((n, n_mh))
    return ens, args, z, u


def _run(ens, args, z, u, c, phi):
    return mh_chains(ens.lagged_states, ens.shocks, z, u, args["TT"], args["RR"], args["CC"], args["ZZ"],
                     args["ydd"], args["iEE"], args["iQQ"], args["LQ"], c, phi)


def test_zero_uniforms_accept_every_proposal():
    ens, args, z, u = _inputs()
    c = 0.3
    states, shocks, accepted = _run(ens, args, z, np.zeros_like(u), c, 0.5)
    assert_array_equal(accepted, 1.0)

    expected = ens.shocks + c * np.einsum("ij,nkj->ni", args["LQ"], z)
    assert_allclose(shocks, expected)
    assert_allclose(states, ens.lagged_states @ args["TT"].T + shocks @ args["RR"].T)


def test_large_steps_are_rejected():
    ens, args, z, u = _inputs()
    states, shocks, accepted = _run(ens, args, z, np.ones_like(u) - 1e-12, 1e6, 1.0)
    assert_array_equal(accepted, 0.0)
    assert_array_equal(shocks, ens.shocks)
    assert_allclose(states, ens.states)


def test_parallel_matches_sequential():
    ens, args, z, u = _inputs(n=503)
    kwargs = dict(args, c=0.4, phi=0.6, z=z, u=u)

    with MutationEvaluator(n_workers=1, parallel=False) as seq:
        assert not seq.parallel
        a = seq.mutate(ens, **kwargs)
    with MutationEvaluator(n_workers=4, parallel=True) as par:
        assert par.parallel
        b = par.mutate(ens, **kwargs)

    assert_array_equal(a.ensemble.states, b.ensemble.states)
    assert_array_equal(a.ensemble.shocks, b.ensemble.shocks)
    assert_array_equal(a.accepted, b.accepted)
    assert a.accept_rate == b.accept_rate
    assert_array_equal(a.ensemble.lagged_states, ens.lagged_states)


def test_particle_order_does_not_matter():
    ens, args, z, u = _inputs(n=100)
    perm = np.random.default_rng(9).permutation(100)
    shuffled = ens.reindex(perm)

    s1, e1, a1 = _run(ens, args, z, u, 0.4, 0.6)
    s2, e2, a2 = _run(shuffled, args, z[perm], u[perm], 0.4, 0.6)

    assert_array_equal(s1[perm], s2)
    assert_array_equal(e1[perm], e2)
    assert_array_equal(a1[perm], a2)


@pytest.mark.parametrize("n, n_workers, chunks_per_worker", [(503, 4, 4), (503, 3, 1), (5, 8, 4), (1, 2, 2)])
def test_chunk_slices_cover_every_particle_once(n, n_workers, chunks_per_worker):
    slices = _chunk_slices(n, n_workers=n_workers, chunks_per_worker=chunks_per_worker)
    assert slices[0][0] == 0 and slices[-1][1] == n
    assert all(hi == lo for (_, hi), (lo, _) in zip(slices[:-1], slices[1:]))
    assert len(slices) <= n_workers * chunks_per_worker
    assert _chunk_slices(0, n_workers=n_workers) == []
