from dataclasses import dataclass
from math import sqrt
from typing import Callable, List, Optional, Tuple, Union

import torch
import torch.nn as nn
from loguru import logger
from tqdm import tqdm

__all__ = [
    "ConjGradConf",
    "ISTConf",
    "FISTAConf",
    "AlgorithmConf",
    "conjugate_gradient",
    "ist",
    "fista",
    "italgo",
    "select_algorithm",
]


@dataclass
class ConjGradConf:
    """Conjugate gradient on the (Tikhonov regularized) normal equations"""

    max_iter: int = 50
    l2lambda: float = 0.0
    tol: float = 0.0
    precond: Optional[Callable] = None


@dataclass
class ISTConf:
    """Iterative soft-thresholding"""

    max_iter: int = 50
    step: float = 0.95
    hogwild: bool = False


@dataclass
class FISTAConf:
    """Fast iterative soft-thresholding"""

    max_iter: int = 50
    step: float = 0.95
    hogwild: bool = False


AlgorithmConf = Union[ConjGradConf, ISTConf, FISTAConf]


class _Hogwild:
    """
    Step schedule that halves the step after 1, 3, 7, 15, ... iterations.
    """

    def __init__(self, enabled: bool):
        self.enabled = enabled
        self.k = 0
        self.K = 1

    def update(self, step: float) -> float:
        if not self.enabled:
            return step
        self.k += 1
        if self.k == self.K:
            self.K *= 2
            self.k = 0
            step = step / 2
        return step


def conjugate_gradient(
    AHA: Union[nn.Module, Callable],
    AHb: torch.Tensor,
    x0: Optional[torch.Tensor] = None,
    P: Optional[Callable] = None,
    num_iters: Optional[int] = 10,
    lamda_l2: Optional[float] = 0.0,
    tolerance: Optional[float] = 0.0,
    return_resids: Optional[bool] = False,
    verbose=True,
) -> Union[torch.Tensor, Tuple[List[float], torch.Tensor]]:
    """Conjugate gradient for complex numbers. The output is also complex.
    Solve for argmin ||Ax - b||^2 + lamda_l2 ||x||^2. Inspired by sigpy!

    Parameters:
    -----------
    AHA : nn.Module
        Linear operator representing the gram/normal operator of A
    AHb : torch.tensor
        The A hermitian transpose times b
    x0 : torch.tensor
        Initial guess, zeros if None
    P : nn.Module
        Preconditioner
    num_iters : int
        Max number of iterations.
    lamda_l2 : float
        Replaces AHA with AHA + lamda_l2 * I
    tolerance : float
        Stops once the residual norm is at or below this value
    return_resids : bool
        toggles return of residuals
    verbose : bool
        toggles progress bar

    Returns:
    ---------
    x : torch.tensor <complex>
        least squares estimate of x, same shape as AHb
    """
    # Default preconditioner is identity matrix
    if P is None:
        P = lambda x: x

    # Tikonov regularization
    AHA_wrapper = lambda x: AHA(x) + lamda_l2 * x

    x = torch.zeros_like(AHb) if x0 is None else x0.clone()
    resids = []
    if num_iters == 0:
        return (resids, x) if return_resids else x

    # Define iterative vars
    r = AHb - AHA_wrapper(x)
    z = P(r)
    p = z.clone()
    rz = torch.real(torch.sum(r.conj() * z)).item()

    # Main loop
    for i in tqdm(range(num_iters), "CG Iterations", disable=not verbose):

        if torch.linalg.norm(r).item() <= tolerance or rz == 0:
            logger.debug(f"CG residual collapsed after {i} iterations")
            break

        # Apply model
        Ap = AHA_wrapper(p)
        pAp = torch.real(torch.sum(p.conj() * Ap)).item()
        if pAp <= 0:
            logger.warning("CG stopped: normal operator is not positive definite along p")
            break

        # Update x
        alpha = rz / pAp
        x = x + alpha * p

        # Update r
        r = r - alpha * Ap
        resids.append(torch.linalg.norm(r).item())

        # Update z
        z = P(r)

        # Update p
        rz_new = torch.real(torch.sum(r.conj() * z)).item()
        beta = rz_new / rz
        rz = rz_new
        p = z + beta * p

    if return_resids:
        return resids, x
    else:
        return x


def ist(
    AHA: Union[nn.Module, Callable],
    AHb: torch.Tensor,
    proxg: Optional[Callable] = None,
    x0: Optional[torch.Tensor] = None,
    step: float = 0.95,
    num_iters: int = 50,
    hogwild: bool = False,
    verbose: bool = True,
) -> torch.Tensor:
    """
    Iterative soft-thresholding for ||Ax - b||_2^2 + g(x)

    x <- prox_g(step, x - step (AHA x - AHb))

    Parameters
    ----------
    AHA : nn.Module
        The gram or normal operator of A
    AHb : torch.tensor
        The A hermitian transpose times b
    proxg : callable
        proximal operator called as proxg(x, step); identity if None
    x0 : torch.tensor
        Initial guess, zeros if None
    step : float
        gradient step size
    num_iters : int
        Number of iterations
    hogwild : bool
        halve the step on a doubling schedule
    verbose : bool
        toggles progress bar

    Returns
    ---------
    x : torch.tensor
        Reconstructed tensor
    """
    x = torch.zeros_like(AHb) if x0 is None else x0.clone()
    schedule = _Hogwild(hogwild)

    for _ in tqdm(range(num_iters), "IST Iterations", disable=not verbose):

        gr = AHA(x) - AHb
        x = x - step * gr
        if proxg is not None:
            x = proxg(x, step)

        step = schedule.update(step)

    return x


def fista(
    AHA: Union[nn.Module, Callable],
    AHb: torch.Tensor,
    proxg: Optional[Callable] = None,
    x0: Optional[torch.Tensor] = None,
    step: float = 0.95,
    num_iters: int = 50,
    hogwild: bool = False,
    verbose: bool = True,
) -> torch.Tensor:
    """
    Solves ||Ax - b||_2^2 + g(x) with Nesterov-accelerated proximal gradient.
    The proximal operator of g is given by 'proxg'

    Parameters
    ----------
    AHA : nn.Module
        The gram or normal operator of A
    AHb : torch.tensor
        The A hermitian transpose times b
    proxg : callable
        proximal operator called as proxg(x, step); identity if None
    x0 : torch.tensor
        Initial guess, zeros if None
    step : float
        gradient step size
    num_iters : int
        Number of iterations
    hogwild : bool
        halve the step on a doubling schedule
    verbose : bool
        toggles progress bar

    Returns
    ---------
    x : torch.tensor
        Reconstructed tensor
    """

    x = torch.zeros_like(AHb) if x0 is None else x0.clone()
    z = x.clone()
    t = 1.0
    schedule = _Hogwild(hogwild)

    for _ in tqdm(range(num_iters), "FISTA Iterations", disable=not verbose):
        x_old = x

        gr = AHA(z) - AHb
        x = z - step * gr
        if proxg is not None:
            x = proxg(x, step)

        t_new = (1 + sqrt(1 + 4 * t**2)) / 2
        z = x + ((t - 1) / t_new) * (x - x_old)
        t = t_new

        step = schedule.update(step)

    return x


def italgo(
    conf: AlgorithmConf,
    AHA: Callable,
    proxg: Optional[Callable],
    x: torch.Tensor,
    AHb: torch.Tensor,
    verbose: bool = True,
) -> torch.Tensor:
    """
    Runs the algorithm selected by the type of `conf` starting from `x`.
    """
    if isinstance(conf, ConjGradConf):
        if proxg is not None:
            logger.warning("Conjugate gradient ignores the proximal operator")
        return conjugate_gradient(
            AHA,
            AHb,
            x0=x,
            P=conf.precond,
            num_iters=conf.max_iter,
            lamda_l2=conf.l2lambda,
            tolerance=conf.tol,
            verbose=verbose,
        )
    elif isinstance(conf, ISTConf):
        return ist(
            AHA,
            AHb,
            proxg,
            x0=x,
            step=conf.step,
            num_iters=conf.max_iter,
            hogwild=conf.hogwild,
            verbose=verbose,
        )
    elif isinstance(conf, FISTAConf):
        return fista(
            AHA,
            AHb,
            proxg,
            x0=x,
            step=conf.step,
            num_iters=conf.max_iter,
            hogwild=conf.hogwild,
            verbose=verbose,
        )
    else:
        raise TypeError(f"Unknown algorithm configuration: {type(conf).__name__}")


def select_algorithm(
    l1wav: bool,
    use_ist: bool = False,
    max_iter: int = 50,
    lamda: float = 0.0,
    step: float = 0.95,
    hogwild: bool = False,
) -> AlgorithmConf:
    """
    No sparsity regularization -> CG with l2 regularization lamda.
    l1-wavelet -> IST when requested explicitly, FISTA otherwise.
    """
    if not l1wav:
        return ConjGradConf(max_iter=max_iter, l2lambda=lamda)
    elif use_ist:
        return ISTConf(max_iter=max_iter, step=step, hogwild=hogwild)
    else:
        return FISTAConf(max_iter=max_iter, step=step, hogwild=hogwild)
