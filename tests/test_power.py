"""Tests for power iteration."""

import pytest
import torch

from nurecon.recon.power import DEGENERATE_EIGENVALUE, power_method_operator


def test_diagonal_operator():
    d = torch.linspace(1.0, 10.0, 10).to(torch.complex64)
    x0 = torch.ones(10, dtype=torch.complex64)

    vec, val = power_method_operator(lambda x: d * x, x0, num_iter=30, verbose=False)

    assert abs(val - 10.0) <= 0.1
    assert torch.argmax(vec.abs()).item() == 9


def test_real_scratch_buffer():
    d = torch.tensor([1.0, 4.0, 2.0]).to(torch.complex64)
    scratch = torch.ones(6)

    vec, val = power_method_operator(lambda x: d * x, scratch, num_iter=30, ishape=(3,), verbose=False)

    assert vec.shape == (3,)
    assert abs(val - 4.0) <= 0.04


def test_zero_start_returns_sentinel():
    _, val = power_method_operator(lambda x: 2 * x, torch.zeros(8), ishape=(4,), verbose=False)
    assert val == DEGENERATE_EIGENVALUE


def test_zero_operator_returns_sentinel():
    x0 = torch.ones(4, dtype=torch.complex64)
    _, val = power_method_operator(lambda x: 0 * x, x0, verbose=False)
    assert val == DEGENERATE_EIGENVALUE


def test_needs_an_iteration():
    x0 = torch.ones(4, dtype=torch.complex64)
    with pytest.raises(AssertionError):
        power_method_operator(lambda x: 2 * x, x0, num_iter=0, verbose=False)
