import numpy as np
from numpy.testing import assert_allclose

from unittest import TestCase

from scipy.stats import norm

from tpf.errors import DimensionMismatchError
from tpf.kalman import kalman_filter
from tpf.system import SystemMatrices


def _ar1(rho=0.8, sigma=0.5, ee=0.0):
    return SystemMatrices(TT=[[rho]], RR=[[1.0]], QQ=[[sigma ** 2]], ZZ=[[1.0]], DD=[0.0], EE=[[ee]])


class TestKalman(TestCase):

    def setUp(self):
        rng = np.random.default_rng(0)
        self.yy = np.cumsum(rng.normal(size=12)) * 0.3

    def test_ar1(self):
        rho, sigma = 0.8, 0.5
        yy = self.yy

        yyhat = np.r_[0, rho * yy[:-1]]
        sig = sigma * np.ones_like(yyhat)
        sig[0] = sig[0] / np.sqrt(1. - rho ** 2)

        byhand = np.sum(norm.logpdf(yy, loc=yyhat, scale=sig))
        lik0 = np.sum(kalman_filter(yy, _ar1(rho, sigma)))
        self.assertAlmostEqual(byhand, lik0)

    def test_missing(self):
        y = np.full((4, 1), np.nan)
        assert_allclose(kalman_filter(y, _ar1()), np.zeros(4))

        yy = self.yy.copy()
        yy[5] = np.nan
        liks = kalman_filter(yy, _ar1(ee=0.1))
        self.assertEqual(liks[5], 0.0)
        self.assertTrue(np.all(np.isfinite(liks)))

    def test_partially_missing_matches_reduced_system(self):
        narrow = _ar1(ee=0.1)
        wide = SystemMatrices(TT=narrow.TT, RR=narrow.RR, QQ=narrow.QQ,
                              ZZ=[[1.0], [2.0]], DD=[0.0, 1.0], EE=np.diag([0.1, 0.5]))
        y = np.column_stack([self.yy, np.full(self.yy.size, np.nan)])
        assert_allclose(kalman_filter(y, wide), kalman_filter(self.yy, narrow))

    def test_identical_regimes_match_single_regime(self):
        sys = _ar1(ee=0.1)
        index = np.r_[np.zeros(6, dtype=int), np.ones(6, dtype=int)]
        assert_allclose(kalman_filter(self.yy, [sys, sys], regime_index=index),
                        kalman_filter(self.yy, sys))

    def test_dimension_mismatch(self):
        y = np.column_stack([self.yy, self.yy])
        with self.assertRaises(DimensionMismatchError):
            kalman_filter(y, _ar1(ee=0.1))
