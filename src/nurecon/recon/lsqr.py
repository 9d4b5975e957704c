from typing import Callable, Optional

import torch
from loguru import logger

from nurecon.recon.algs import AlgorithmConf, italgo
from nurecon.recon.linops import linop

__all__ = ["lsqr"]


def lsqr(
    A: linop,
    proxg: Optional[Callable],
    conf: AlgorithmConf,
    image: torch.Tensor,
    ksp: torch.Tensor,
    scaling: float = 0.0,
    verbose: bool = True,
) -> torch.Tensor:
    """
    Least squares reconstruction min_x ||Ax - b||_2^2 + g(x)

    Parameters:
    -----------
    A : linop
        forward operator with forward, adjoint and normal
    proxg : callable
        proximal operator of g, called as proxg(x, mu); None for no regularization
    conf : AlgorithmConf
        ConjGradConf, ISTConf or FISTAConf
    image : torch.Tensor
        initial guess shaped A.ishape.dims. Overwritten with the result.
    ksp : torch.Tensor
        measured data shaped A.oshape.dims. Not modified.
    scaling : float
        data is divided by this factor before solving; 0 skips normalization
    verbose : bool
        toggles progress bars

    Returns:
    --------
    image : torch.Tensor
        the reconstructed image (same tensor that was passed in)
    """
    assert tuple(image.shape) == A.ishape.dims, (
        f"Image shape {tuple(image.shape)} does not match operator input {A.ishape.dims}"
    )
    assert tuple(ksp.shape) == A.oshape.dims, (
        f"Data shape {tuple(ksp.shape)} does not match operator output {A.oshape.dims}"
    )

    if scaling != 0.0:
        logger.debug(f"Scaling data by 1/{scaling:.4g}")
        ksp = ksp / scaling

    logger.debug(f"Running {type(conf).__name__}: {conf}")

    with torch.no_grad():
        AHb = A.H(ksp)
        x = italgo(conf, A.N, proxg, image.clone(), AHb, verbose=verbose)
        image.copy_(x)

    return image
