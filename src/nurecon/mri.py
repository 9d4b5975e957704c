from math import pi
from typing import Sequence, Tuple

import numpy as np
import sigpy.mri as mr
import torch
from einops import rearrange
from loguru import logger

from nurecon.dims import COIL_DIM, FFT_FLAGS, ShapeDescriptor
from nurecon.utils import fftc, ifftc, spatial_axes, torch_resize

"""
Tools for non-Cartesian sampling, data scaling and simulation.
"""

GOLDEN_ANGLE = pi * (3 - 5**0.5)


def estimate_pattern(ksp: torch.Tensor) -> torch.Tensor:
    """
    Sampling pattern from k-space data: 1 wherever any coil carries signal.

    Returns:
        torch.Tensor: pattern shaped like ksp with the coil dim collapsed.
    """
    rss = torch.sum(ksp.abs() ** 2, dim=COIL_DIM, keepdim=True)
    return (rss > 0).to(torch.float32)


def sampling_stats(pattern: torch.Tensor) -> Tuple[int, int, float]:
    """
    Returns (size, number of samples, acceleration) of a sampling pattern.
    """
    size = pattern.numel()
    samples = int(round(torch.linalg.norm(pattern.float()).item() ** 2))
    accel = size / samples if samples > 0 else float("inf")
    return size, samples, accel


def estimate_scaling(coilim: torch.Tensor, cal_size: int = 32) -> float:
    """
    Estimate the intensity scale of a gridded reconstruction.

    The coil images are reduced to their low resolution centre
    (at most cal_size samples per spatial axis), coil-combined by root sum of
    squares, and summarized by the 90th percentile, unless the maximum lies
    unusually far above it.

    Args:
        coilim (torch.Tensor): adjoint (gridded) coil images, spatial dims 0..2
        cal_size (int): size of the calibration region

    Returns:
        float: scaling factor, 0 for all-zero data
    """
    dims = tuple(coilim.shape)
    axes = spatial_axes(dims, FFT_FLAGS)

    ksp = fftc(coilim, dim=axes)
    small = tuple(min(n, cal_size) if i in axes else n for i, n in enumerate(dims))
    img = ifftc(torch_resize(ksp, small), dim=axes)

    rss = torch.sqrt(torch.sum(img.abs() ** 2, dim=COIL_DIM)).flatten()

    maximum = rss.max()
    if maximum == 0:
        logger.warning("All-zero data, no scaling")
        return 0.0

    median = rss.median()
    p90 = torch.quantile(rss, 0.9)
    scale = p90 if (maximum - p90) < 2 * (p90 - median) else maximum

    logger.debug(f"Scaling: {scale.item():.4g} (p90 {p90.item():.4g}, max {maximum.item():.4g})")
    return scale.item()


def radial_traj(
    n_read: int,
    n_spokes: int,
    im_size: Sequence[int],
    golden: bool = True,
) -> torch.Tensor:
    """
    2D radial trajectory in grid units.

    Returns:
        torch.Tensor: trajectory of shape (3, n_read, n_spokes), z component zero
    """
    nx, ny = im_size[:2]
    if golden:
        angles = torch.arange(n_spokes, dtype=torch.float64) * GOLDEN_ANGLE
    else:
        angles = torch.arange(n_spokes, dtype=torch.float64) * (pi / n_spokes)

    # Readout positions in [-1/2, 1/2)
    r = (torch.arange(n_read, dtype=torch.float64) - n_read // 2) / n_read

    traj = torch.zeros(3, n_read, n_spokes, dtype=torch.float64)
    traj[0] = nx * r[:, None] * torch.cos(angles)[None, :]
    traj[1] = ny * r[:, None] * torch.sin(angles)[None, :]

    return traj.to(torch.float32)


def get_sim_maps(n_coils: int, im_size: Tuple = (64, 64)) -> torch.Tensor:
    """
    Generate coil sensitivity maps for MRI simulation.

    Args:
        n_coils (int): Number of coils.
        im_size (Tuple): Size of the image (spatial dims only).

    Returns:
        torch.Tensor: Coil sensitivity maps laid out in the dimension convention
            (spatial dims 0..2, coils along COIL_DIM).
    """
    mps = mr.birdcage_maps((n_coils, *im_size), r=1.25, dtype=np.complex64)
    mps = torch.from_numpy(np.ascontiguousarray(mps))
    mps = rearrange(mps, "c ... -> ... c")

    spatial = tuple(im_size) + (1,) * (3 - len(im_size))
    return mps.reshape(ShapeDescriptor.from_dims((*spatial, n_coils)).dims)
