"""Shared pytest fixtures for nurecon tests."""

from types import SimpleNamespace

import pytest
import torch

from nurecon.dims import ShapeDescriptor
from nurecon.mri import get_sim_maps, radial_traj
from nurecon.utils import zdot

IM_SIZE = (16, 16)
N_COILS = 4
N_READ = 32
N_SPOKES = 48


@pytest.fixture
def generator():
    """Seeded generator so every test sees the same random data."""
    return torch.Generator().manual_seed(42)


@pytest.fixture
def crandn(generator):
    """Complex standard normal tensors drawn from the seeded generator."""

    def _crandn(shape, dtype=torch.complex64):
        return torch.randn(tuple(shape), generator=generator, dtype=dtype)

    return _crandn


@pytest.fixture
def radial_problem():
    """Small 2D golden-angle radial acquisition with birdcage coil maps."""
    traj = radial_traj(N_READ, N_SPOKES, IM_SIZE)
    mps = get_sim_maps(N_COILS, IM_SIZE)
    return SimpleNamespace(
        traj=traj,
        mps=mps,
        ksp_dims=ShapeDescriptor.from_dims((1, N_READ, N_SPOKES, N_COILS)).dims,
        coilim_dims=ShapeDescriptor.from_dims((*IM_SIZE, 1, N_COILS)).dims,
        img_dims=ShapeDescriptor.from_dims((*IM_SIZE, 1, 1)).dims,
    )


@pytest.fixture
def phantom(radial_problem):
    """Two overlapping discs."""
    x, y = torch.meshgrid(
        torch.linspace(-1, 1, IM_SIZE[0]), torch.linspace(-1, 1, IM_SIZE[1]), indexing="ij"
    )
    img = (x**2 + y**2 < 0.5).float() + 0.5 * ((x - 0.2) ** 2 + (y + 0.3) ** 2 < 0.05).float()
    return img.to(torch.complex64).reshape(radial_problem.img_dims)


def assert_adjoint(A, x, y, rtol=1e-4):
    """<A x, y> == <x, A^H y>"""
    lhs = zdot(A(x), y)
    rhs = zdot(x, A.H(y))
    assert abs(lhs - rhs) <= rtol * abs(lhs)


def nrmse(recon, truth):
    """Error after the best complex scaling of recon onto truth."""
    c = zdot(recon, truth) / zdot(recon, recon)
    return (torch.linalg.norm(c * recon - truth) / torch.linalg.norm(truth)).item()


@pytest.fixture
def adjoint_check():
    return assert_adjoint


@pytest.fixture
def recon_error():
    return nrmse
