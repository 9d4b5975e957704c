from typing import Callable, Optional, Sequence, Tuple

import torch
from loguru import logger
from tqdm import tqdm

# Eigenvalue reported when the iterate collapses to zero
DEGENERATE_EIGENVALUE = 1.0


def power_method_operator(
    A: Callable,
    x0: torch.Tensor,
    num_iter: int = 30,
    ishape: Optional[Sequence[int]] = None,
    verbose: bool = True,
) -> Tuple[torch.Tensor, float]:
    """
    Uses power method to find largest eigenvalue and corresponding eigenvector

    Parameters:
    -----------
    A : Callable
        self-adjoint, positive semi-definite linear operator, reccomended to be the normal operator AHA
    x0 : torch.Tensor
        initial guess of eigenvector. Either complex, or a real scratch buffer of
        2 * count values holding interleaved (real, imag) pairs
    num_iter : int
        number of iterations to run power method
    ishape : tuple
        shape A expects; required when x0 is a flat real buffer
    verbose : bool
        toggles progress bar

    Returns:
    --------
    eigen_vec : torch.Tensor
        eigenvector with the shape A expects
    eigen_val : float
        eigenvalue
    """

    assert num_iter >= 1, "Power iteration needs at least one iteration"

    if not torch.is_complex(x0):
        assert x0.numel() % 2 == 0, "Real scratch buffer must hold (real, imag) pairs"
        x0 = torch.view_as_complex(x0.reshape(-1, 2).contiguous())
    if ishape is not None:
        x0 = x0.reshape(tuple(ishape))

    tiny = torch.finfo(x0.real.dtype).tiny

    ll = torch.linalg.norm(x0).item()
    if ll <= tiny:
        logger.warning("Power iteration started from a zero vector")
        return x0, DEGENERATE_EIGENVALUE
    x0 = x0 / ll

    for _ in tqdm(range(num_iter), "Max Eigenvalue", disable=not verbose, leave=False):

        z = A(x0)
        ll = torch.linalg.norm(z).item()
        if ll <= tiny:
            logger.warning("Power iteration collapsed to zero, operator is degenerate")
            return x0, DEGENERATE_EIGENVALUE
        x0 = z / ll

    if verbose:
        logger.info(f"Maximum eigenvalue: {ll:.2f}")

    return x0, ll
