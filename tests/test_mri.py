"""Tests for sampling pattern and scaling estimation, trajectories and simulated maps."""

import pytest
import torch

from nurecon.dims import COIL_DIM, ShapeDescriptor
from nurecon.mri import (
    estimate_pattern,
    estimate_scaling,
    get_sim_maps,
    radial_traj,
    sampling_stats,
)


class TestPattern:
    def test_unsampled_points_are_zero(self, crandn):
        ksp = crandn((1, 4, 4, 2))
        ksp[0, 1, 2, :] = 0
        ksp[0, 3, 0, 0] = 0  # still sampled in coil 1

        pattern = estimate_pattern(ksp)

        assert tuple(pattern.shape) == (1, 4, 4, 1)
        assert pattern[0, 1, 2, 0] == 0
        assert pattern[0, 3, 0, 0] == 1
        assert pattern.sum() == 15

    def test_sampling_stats(self):
        pattern = torch.ones(1, 4, 4, 1)
        pattern[0, 0, :2] = 0
        size, samples, accel = sampling_stats(pattern)
        assert (size, samples) == (16, 14)
        assert accel == pytest.approx(16 / 14)


class TestScaling:
    def test_zero_data(self):
        dims = ShapeDescriptor.from_dims((16, 16, 1, 2)).dims
        assert estimate_scaling(torch.zeros(dims, dtype=torch.complex64)) == 0.0

    def test_scales_with_data(self, crandn):
        coilim = crandn(ShapeDescriptor.from_dims((64, 48, 1, 3)).dims)
        s = estimate_scaling(coilim)
        assert s > 0
        assert estimate_scaling(3.0 * coilim) == pytest.approx(3.0 * s, rel=1e-4)

    def test_uses_calibration_region(self, crandn):
        coilim = crandn(ShapeDescriptor.from_dims((64, 64, 1, 2)).dims)
        assert estimate_scaling(coilim, cal_size=16) != estimate_scaling(coilim, cal_size=64)


class TestSimulation:
    def test_radial_traj(self):
        traj = radial_traj(32, 20, (16, 24))
        assert tuple(traj.shape) == (3, 32, 20)
        assert traj[0].abs().max() <= 8
        assert traj[1].abs().max() <= 12
        assert torch.all(traj[2] == 0)

    def test_sim_maps(self):
        mps = get_sim_maps(4, (16, 16))
        assert tuple(mps.shape) == ShapeDescriptor.from_dims((16, 16, 1, 4)).dims
        assert mps.dtype == torch.complex64
        rss = torch.sqrt(torch.sum(mps.abs() ** 2, dim=COIL_DIM))
        assert rss.min() > 0
