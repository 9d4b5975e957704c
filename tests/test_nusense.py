"""End-to-end tests of the non-Cartesian SENSE reconstruction, the reconstructor, presets and the CLI."""

import numpy as np
import pytest
import torch

from nurecon.configs.recon import PRESETS, get_preset
from nurecon.dims import MAPS_DIM, ShapeDescriptor
from nurecon.nusense import Config, main
from nurecon.recon.classic_recons import nusense_recon
from nurecon.recon.linops import NUFFTLinop, SenseMapsLinop, chain
from nurecon.recon.reconstructor import NUSenseParams, NUSenseReconstructor


@pytest.fixture
def forward_op(radial_problem):
    S = SenseMapsLinop(radial_problem.mps)
    F = NUFFTLinop(radial_problem.ksp_dims, radial_problem.coilim_dims, radial_problem.traj)
    return chain(S, F)


@pytest.fixture
def ksp(forward_op, phantom):
    return forward_op(phantom)


@pytest.fixture
def gridding_error(forward_op, ksp, phantom, recon_error):
    return recon_error(forward_op.H(ksp), phantom)


class TestNUSenseRecon:
    def test_cg_sense(self, radial_problem, ksp, phantom, recon_error, gridding_error):
        recon = nusense_recon(
            radial_problem.traj, ksp, radial_problem.mps, lamda=1e-4, max_iter=30, verbose=False
        )

        assert tuple(recon.shape) == radial_problem.img_dims
        err = recon_error(recon, phantom)
        assert err < 0.3
        assert err < gridding_error

    def test_exact_normal(self, radial_problem, ksp, phantom, recon_error, gridding_error):
        recon = nusense_recon(
            radial_problem.traj, ksp, radial_problem.mps, max_iter=30, toeplitz=False, verbose=False
        )
        assert recon_error(recon, phantom) < gridding_error

    def test_l1_wavelet_fista(self, radial_problem, ksp, phantom, recon_error, gridding_error):
        recon = nusense_recon(
            radial_problem.traj,
            ksp,
            radial_problem.mps,
            l1wav=True,
            lamda=1e-4,
            max_iter=50,
            eigen=True,
            verbose=False,
        )

        err = recon_error(recon, phantom)
        assert err < gridding_error

    def test_l1_wavelet_ist_hogwild(self, radial_problem, ksp):
        recon = nusense_recon(
            radial_problem.traj,
            ksp,
            radial_problem.mps,
            l1wav=True,
            ist=True,
            hogwild=True,
            lamda=1e-4,
            max_iter=20,
            eigen=True,
            verbose=False,
        )
        assert torch.isfinite(recon.abs()).all()
        assert recon.abs().max() > 0

    def test_preconditioned_cg(self, radial_problem, ksp, phantom, recon_error, gridding_error):
        recon = nusense_recon(
            radial_problem.traj, ksp, radial_problem.mps, max_iter=10, precond=True, verbose=False
        )
        assert recon_error(recon, phantom) < gridding_error

    def test_stochastic_fista(self, radial_problem, ksp):
        recon = nusense_recon(
            radial_problem.traj,
            ksp,
            radial_problem.mps,
            l1wav=True,
            lamda=1e-4,
            max_iter=5,
            eigen=True,
            stoch=True,
            verbose=False,
        )
        assert torch.isfinite(recon.abs()).all()

    def test_espirit_two_maps(self, radial_problem, ksp):
        mps = torch.cat([radial_problem.mps, 0.5 * radial_problem.mps], dim=MAPS_DIM)
        recon = nusense_recon(radial_problem.traj, ksp, mps, lamda=1e-3, max_iter=5, verbose=False)
        assert tuple(recon.shape) == ShapeDescriptor(radial_problem.img_dims).with_dim(MAPS_DIM, 2).dims

    def test_explicit_pattern(self, radial_problem, ksp, phantom, recon_error, gridding_error):
        pattern = torch.ones(ShapeDescriptor(radial_problem.ksp_dims).with_dim(3, 1).dims)
        recon = nusense_recon(
            radial_problem.traj, ksp, radial_problem.mps, pattern=pattern, max_iter=30, verbose=False
        )
        assert recon_error(recon, phantom) < gridding_error

    def test_maps_dim_in_kspace_raises(self, radial_problem, ksp):
        ksp = torch.cat([ksp, ksp], dim=MAPS_DIM)
        with pytest.raises(AssertionError):
            nusense_recon(radial_problem.traj, ksp, radial_problem.mps, verbose=False)


class TestReconstructor:
    def test_reconstruct(self, radial_problem, ksp):
        params = NUSenseParams(max_iter=5, lamda=1e-3, verbose=False)
        out = NUSenseReconstructor(radial_problem.traj, radial_problem.mps, params).reconstruct(ksp)
        assert tuple(out.recon.shape) == radial_problem.img_dims
        assert out.extra_outputs is None


class TestPresets:
    @pytest.mark.parametrize("name", sorted(PRESETS))
    def test_get_preset_returns_copy(self, name):
        params = get_preset(name)
        params.max_iter = 1
        assert PRESETS[name].max_iter != 1

    def test_policy(self):
        assert not get_preset("l2").l1wav
        assert get_preset("l1-fista").l1wav and not get_preset("l1-fista").ist
        assert get_preset("l1-ist").ist

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            get_preset("l0")


class TestCLI:
    def test_main_writes_image(self, tmp_path, radial_problem, ksp):
        paths = {name: tmp_path / f"{name}.npy" for name in ("traj", "kspace", "sens")}
        np.save(paths["traj"], radial_problem.traj.numpy())
        np.save(paths["kspace"], ksp.numpy())
        np.save(paths["sens"], radial_problem.mps.numpy())

        output = tmp_path / "img.npy"
        args = Config(
            traj=paths["traj"],
            kspace=paths["kspace"],
            sens=paths["sens"],
            output=output,
            recon=NUSenseParams(max_iter=3, lamda=1e-3, verbose=False),
        )
        main(args)

        img = np.load(output)
        assert img.shape == radial_problem.img_dims
        assert np.iscomplexobj(img)
