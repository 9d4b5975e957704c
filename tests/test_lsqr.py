"""Tests for the lsqr solve driver."""

import pytest
import torch

from nurecon.dims import FFT_FLAGS, ShapeDescriptor
from nurecon.recon.algs import ConjGradConf, FISTAConf
from nurecon.recon.linops import DiagLinop, IdentityLinop
from nurecon.recon.lsqr import lsqr
from nurecon.recon.prox import WaveletThresh

DIMS = ShapeDescriptor.from_dims((32, 32)).dims


class TestLsqr:
    def test_identity_scenario(self, crandn):
        b = crandn(DIMS)
        image = torch.zeros(DIMS, dtype=torch.complex64)

        out = lsqr(IdentityLinop(DIMS), None, ConjGradConf(max_iter=1), image, b, verbose=False)

        assert out is image
        torch.testing.assert_close(image, b)

    def test_scaling_normalizes_data(self, crandn):
        b = crandn(DIMS)
        image = torch.zeros(DIMS, dtype=torch.complex64)
        lsqr(IdentityLinop(DIMS), None, ConjGradConf(max_iter=1), image, b, scaling=4.0, verbose=False)
        torch.testing.assert_close(image, b / 4.0)

    def test_zero_scaling_skips_normalization(self, crandn):
        b = crandn(DIMS)
        image = torch.zeros(DIMS, dtype=torch.complex64)
        lsqr(IdentityLinop(DIMS), None, ConjGradConf(max_iter=1), image, b, scaling=0.0, verbose=False)
        torch.testing.assert_close(image, b)

    def test_data_not_modified(self, crandn):
        b = crandn(DIMS)
        b_copy = b.clone()
        image = torch.zeros(DIMS, dtype=torch.complex64)
        lsqr(IdentityLinop(DIMS), None, ConjGradConf(max_iter=3), image, b, scaling=2.0, verbose=False)
        torch.testing.assert_close(b, b_copy)

    def test_diagonal_operator(self, crandn):
        w = torch.linspace(1.0, 2.0, 32 * 32).reshape(DIMS)
        A = DiagLinop(w)
        x_true = crandn(DIMS)
        image = torch.zeros(DIMS, dtype=torch.complex64)

        lsqr(A, None, ConjGradConf(max_iter=20), image, A(x_true), verbose=False)
        torch.testing.assert_close(image, x_true, rtol=1e-3, atol=1e-3)

    def test_fista_with_identity_prox(self, crandn):
        b = crandn(DIMS)
        minsize = (16, 16) + (1,) * (len(DIMS) - 2)
        thresh = WaveletThresh(DIMS, FFT_FLAGS, minsize, lamda=0.0)
        image = torch.zeros(DIMS, dtype=torch.complex64)

        lsqr(IdentityLinop(DIMS), thresh, FISTAConf(max_iter=3, step=1.0), image, b, verbose=False)
        torch.testing.assert_close(image, b)

    def test_shape_mismatch(self, crandn):
        image = torch.zeros(DIMS, dtype=torch.complex64)
        with pytest.raises(AssertionError):
            lsqr(IdentityLinop(DIMS), None, ConjGradConf(), image, crandn((32, 31)), verbose=False)
