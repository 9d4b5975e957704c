from typing import Optional, Union

import torch
from loguru import logger

from nurecon.dims import COIL_FLAG, FFT_FLAGS, MAPS_DIM, MAPS_FLAG, ShapeDescriptor
from nurecon.mri import estimate_pattern, estimate_scaling, sampling_stats
from nurecon.recon.algs import ConjGradConf, select_algorithm
from nurecon.recon.linops import NUFFTLinop, SenseMapsLinop, chain
from nurecon.recon.lsqr import lsqr
from nurecon.recon.power import power_method_operator
from nurecon.recon.prox import WaveletThresh
from nurecon.utils import clear_cache, get_torch_device

__all__ = ["nusense_recon"]


def nusense_recon(
    traj: torch.Tensor,
    ksp: torch.Tensor,
    mps: torch.Tensor,
    pattern: Optional[torch.Tensor] = None,
    l1wav: bool = False,
    lamda: float = 0.0,
    max_iter: int = 50,
    step: float = 0.95,
    ist: bool = False,
    hogwild: bool = False,
    eigen: bool = False,
    precond: bool = False,
    stoch: bool = False,
    toeplitz: bool = True,
    randshift: bool = True,
    device: Union[str, int, torch.device] = "cpu",
    seed: int = 1,
    verbose: bool = True,
) -> torch.Tensor:
    """
    Non-Cartesian iterative SENSE / ESPIRiT reconstruction:
    recon = min_x ||NUFFT(S x) - b||_2^2 + R(x)

    with R(x) = lamda ||x||_2^2 (CG), or R(x) = lamda ||W x||_1 (IST / FISTA).

    Parameters:
    -----------
    traj : torch.Tensor
        trajectory of shape (3, ksp.shape[1], ksp.shape[2]) in grid units
    ksp : torch.Tensor
        k-space data; dim 0 of extent 1, samples along dims 1 and 2, coils along COIL_DIM
    mps : torch.Tensor
        sensitivity maps; spatial dims 0..2, coils along COIL_DIM, ESPIRiT maps along MAPS_DIM
    pattern : torch.Tensor
        sampling pattern / weights. Estimated from ksp if None
    l1wav : bool
        l1-wavelet instead of l2 regularization
    lamda : float
        regularization parameter
    max_iter : int
        number of iterations
    step : float
        iteration step size of IST / FISTA
    ist : bool
        use IST instead of FISTA for l1-wavelet regularization
    hogwild : bool
        hogwild step size schedule
    eigen : bool
        divide the step by the maximum eigenvalue of the normal operator
    precond : bool
        circulant preconditioning of CG
    stoch : bool
        stochastic normal operator
    toeplitz : bool
        Toeplitz embedding of the normal operator
    randshift : bool
        random wavelet cycle spinning
    device : str | int | torch.device
        device to run on
    seed : int
        seed of the random start of the eigenvalue estimate
    verbose : bool
        Toggles progress bars

    Returns:
    --------
    recon : torch.Tensor
        the reconstructed image, shaped like the maps with the coil dim collapsed
    """

    # Consts
    device = get_torch_device(device)
    map_shape = ShapeDescriptor.from_dims(mps.shape, flags=FFT_FLAGS)
    ksp_shape = ShapeDescriptor.from_dims(ksp.shape)
    img_shape = map_shape.select(~COIL_FLAG)
    coilim_shape = map_shape.select(~MAPS_FLAG)

    assert 1 == ksp_shape.dims[MAPS_DIM], "k-space must not carry a maps dimension"

    if device.type == "cuda":
        logger.info("GPU reconstruction")
    if map_shape.dims[MAPS_DIM] > 1:
        logger.info(f"{map_shape.dims[MAPS_DIM]} maps. ESPIRiT reconstruction.")
    if l1wav:
        logger.info("l1-wavelet regularization")
    if hogwild:
        logger.info("Hogwild stepsize")
    if precond:
        logger.info("Circular Preconditioned")

    y = ksp.reshape(ksp_shape.dims).to(torch.complex64).to(device)
    traj = traj.to(device)

    # Sampling pattern
    if pattern is None:
        pattern = estimate_pattern(y)
    pattern = pattern.to(device)

    size, samples, accel = sampling_stats(pattern)
    logger.info(f"Size: {size} Samples: {samples} Acc: {accel:.2f}")

    # Operators
    fft_op = NUFFTLinop(
        ksp_shape.dims,
        coilim_shape.dims,
        traj,
        pattern=pattern,
        toeplitz=toeplitz,
        precond=precond,
        stoch=stoch,
        device=device,
    )
    maps_op = SenseMapsLinop(mps, device=device)
    forward_op = chain(maps_op, fft_op)

    thresh_op = None
    if l1wav:
        minsize = [1] * img_shape.N
        for i in range(3):
            minsize[i] = min(img_shape.dims[i], 16)
        thresh_op = WaveletThresh(img_shape.dims, FFT_FLAGS, minsize, lamda, randshift)

    # Data scaling from the gridded coil images
    with torch.no_grad():
        scaling = estimate_scaling(fft_op.H(y))

    if eigen:
        gen = torch.Generator().manual_seed(seed)
        scratch = torch.rand(img_shape.dims, generator=gen).to(torch.complex64)
        scratch = torch.view_as_real(scratch).flatten().to(device)
        with torch.no_grad():
            _, max_eigen = power_method_operator(
                forward_op.N, scratch, num_iter=30, ishape=img_shape.dims, verbose=verbose
            )
        step = step / max_eigen

    conf = select_algorithm(
        l1wav, use_ist=ist, max_iter=max_iter, lamda=lamda, step=step, hogwild=hogwild
    )
    if isinstance(conf, ConjGradConf) and fft_op.preconditioner is not None:
        conf.precond = fft_op.preconditioner

    # Recon
    image = torch.zeros(img_shape.dims, dtype=torch.complex64, device=device)
    lsqr(forward_op, thresh_op, conf, image, y, scaling=scaling, verbose=verbose)

    if thresh_op is not None:
        thresh_op.release()
    clear_cache()

    return image
