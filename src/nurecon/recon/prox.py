from typing import List, Sequence, Tuple

import torch
import torch.nn as nn

from nurecon.dims import md_bit, md_is_set
from nurecon.recon.linops import WaveletLinop

__all__ = [
    "WaveletThresh",
    "rand_lim",
    "soft_thresh",
    "wavelet_num_levels",
    "wavelet_level_axes",
    "RAND_MAX",
]

"""
A proximal operator is defined as
prox_g(x) = argmin_u 1/2 ||u - x||^2 + g(u)
"""

RAND_MAX = 2**31 - 1


def soft_thresh(lamda: float, input: torch.Tensor) -> torch.Tensor:
    """
    Soft threshold.

    Γ_λ(x) = (|x| - λ) * sign(x) if |x| > λ, else 0
    """

    abs_input = input.abs()

    sign = torch.where(abs_input > 0, input / abs_input, torch.zeros_like(input))

    mag = abs_input - lamda
    mag = (mag.abs() + mag) / 2

    out = mag * sign

    return out


def rand_lim(generator: torch.Generator, limit: int) -> int:
    """
    Unbiased integer in [0, limit].

    The generator range [0, RAND_MAX] is split into limit + 1 equal buckets;
    draws landing in the incomplete tail bucket are rejected and redrawn.
    """
    assert 0 <= limit < RAND_MAX, f"limit {limit} out of range"
    divisor = RAND_MAX // (limit + 1)

    while True:
        draw = torch.randint(0, RAND_MAX + 1, (1,), generator=generator).item()
        retval = draw // divisor
        if retval <= limit:
            return retval


def _bandsize(n: int, flen: int) -> int:
    return (n + flen - 1) // 2


def wavelet_num_levels(
    dims: Sequence[int], flags: int, minsize: Sequence[int], flen: int = 4
) -> int:
    """
    Number of levels of the multi-level wavelet decomposition.

    A flagged dimension keeps being split while it is larger than its minimum
    size and the next band is strictly smaller. Returns 1 once no flagged
    dimension is left.
    """
    if 0 == flags:
        return 1

    next_flags = flags
    for i, n in enumerate(dims):
        if md_is_set(flags, i) and not (n > minsize[i] and _bandsize(n, flen) < n):
            next_flags &= ~md_bit(i)

    wdims = [
        _bandsize(n, flen) if md_is_set(next_flags, i) else n
        for i, n in enumerate(dims)
    ]

    return 1 + wavelet_num_levels(wdims, next_flags, minsize, flen)


def wavelet_level_axes(
    dims: Sequence[int], flags: int, minsize: Sequence[int], flen: int = 4
) -> List[Tuple[int, ...]]:
    """
    Axes split at each level of the decomposition counted by `wavelet_num_levels`.

    An axis drops out for good once it reaches its minimum size, so axes of
    different extents take part in different numbers of levels.
    """
    dims = list(dims)
    level_axes = []

    while True:
        for i, n in enumerate(dims):
            if md_is_set(flags, i) and not (n > minsize[i] and _bandsize(n, flen) < n):
                flags &= ~md_bit(i)

        axes = tuple(i for i in range(len(dims)) if md_is_set(flags, i))
        if len(axes) == 0:
            return level_axes

        level_axes.append(axes)
        dims = [_bandsize(n, flen) if i in axes else n for i, n in enumerate(dims)]


class WaveletThresh(nn.Module):
    """Proximal operator for lamda || W x ||_1 with random cycle spinning"""

    def __init__(
        self,
        dims: Sequence[int],
        flags: int,
        minsize: Sequence[int],
        lamda: float,
        randshift: bool = True,
        seed: int = 1,
    ):
        """
        Parameters:
        -----------
        dims - tuple
            dimensions of x
        flags - int
            bitmask of the dimensions the wavelet transform acts on
        minsize - tuple
            minimum size of the coarse wavelet scale per dimension
        lamda - float
            threshold parameter
        randshift - bool
            randomly shifts the image before thresholding (cycle spinning)
        seed - int
            seed of the private random state
        """
        super().__init__()

        assert len(dims) == len(minsize), "dims and minsize must have the same length"
        assert lamda >= 0, "lamda must be non-negative"

        # Owned copies, the caller may reuse its sequences
        self.N = len(dims)
        self.dims = tuple(int(d) for d in dims)
        self.minsize = tuple(int(m) for m in minsize)
        self.flags = flags
        self.lamda = lamda
        self.randshift = randshift

        # Using a fixed random number generator so that recons are consistent
        self.rng = torch.Generator()
        self.rng.manual_seed(seed)

        self.levels = wavelet_num_levels(self.dims, self.flags, self.minsize, 4)
        self.shift_axes = tuple(i for i in range(self.N) if md_is_set(flags, i))

        level_axes = wavelet_level_axes(self.dims, self.flags, self.minsize, 4)
        self.W = None
        if len(level_axes) > 0:
            self.W = WaveletLinop(self.dims, level_axes, wave_name="db2")

        self._released = False

    def draw_shift(self) -> tuple:
        """Per-dimension circular shift for the next application."""
        shift = [0] * self.N
        if self.randshift:
            for i in self.shift_axes:
                shift[i] = rand_lim(self.rng, (1 << self.levels) - 1)
        return tuple(shift)

    def forward(self, input: torch.Tensor, mu: float = 1.0) -> torch.Tensor:
        """
        Proximal operator for l1 wavelet

        Parameters
        ----------
        input - torch.tensor <complex>
            image/volume input, shaped like dims
        mu - float
            proximal step size, scales lamda
        """
        assert not self._released, "WaveletThresh used after release()"

        # the shift is drawn even when nothing is thresholded
        shift = self.draw_shift()

        thresh = self.lamda * mu
        if thresh == 0:
            return input.clone()

        axes = self.shift_axes
        shifts = tuple(shift[i] for i in axes)

        x = torch.roll(input, shifts, dims=axes) if len(axes) > 0 else input

        if self.W is not None:
            x = self.W.H(soft_thresh(thresh, self.W(x)))
        else:
            x = soft_thresh(thresh, x)

        if len(axes) > 0:
            x = torch.roll(x, tuple(-s for s in shifts), dims=axes)

        return x

    def apply(self, mu: float, out: torch.Tensor, input: torch.Tensor) -> torch.Tensor:
        """Writes prox(mu, input) into out. out and input may be the same tensor."""
        result = self.forward(input, mu)
        out.copy_(result)
        return out

    def release(self):
        assert not self._released, "WaveletThresh released twice"
        self._released = True
        self.dims = None
        self.minsize = None
        self.W = None
