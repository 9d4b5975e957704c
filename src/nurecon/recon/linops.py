from itertools import product
from math import prod, sqrt
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pywt
import sigpy as sp
import torch
import torch.nn as nn
from einops import rearrange
from loguru import logger

from nurecon.dims import COIL_DIM, FFT_FLAGS, MAPS_DIM, ShapeDescriptor
from nurecon.utils import get_torch_device, np_to_torch, torch_to_np

__all__ = [
    "linop",
    "chain",
    "ChainLinop",
    "IdentityLinop",
    "DiagLinop",
    "SenseMapsLinop",
    "NUFFTLinop",
    "CirculantPrecond",
    "WaveletLinop",
]


def _as_shape(shape: Union[ShapeDescriptor, Sequence[int]]) -> ShapeDescriptor:
    if isinstance(shape, ShapeDescriptor):
        return shape
    return ShapeDescriptor(tuple(shape))


class linop(nn.Module):
    """
    Linear operator between two shaped complex spaces.

    Tensors handed to `forward` are shaped `ishape.dims`, tensors handed to
    `adjoint` are shaped `oshape.dims`.
    """

    def __init__(self, ishape, oshape):
        super().__init__()
        self.ishape = _as_shape(ishape)
        self.oshape = _as_shape(oshape)

    def forward(self, x: torch.Tensor, **kwargs) -> torch.Tensor:
        raise NotImplementedError

    def adjoint(self, y: torch.Tensor, **kwargs) -> torch.Tensor:
        raise NotImplementedError

    # Alias
    def H(self, y: torch.Tensor, **kwargs) -> torch.Tensor:
        return self.adjoint(y, **kwargs)

    def normal(self, x: torch.Tensor, **kwargs) -> torch.Tensor:
        return self.adjoint(self.forward(x, **kwargs), **kwargs)

    # Alias
    def N(self, x: torch.Tensor, **kwargs) -> torch.Tensor:
        return self.normal(x, **kwargs)


class ChainLinop(linop):
    """
    outer ∘ inner. Owns both children.
    """

    def __init__(self, inner: linop, outer: linop):
        assert inner.oshape.dims == outer.ishape.dims, (
            f"Cannot chain operators: inner output {inner.oshape.dims} "
            f"does not match outer input {outer.ishape.dims}"
        )
        super().__init__(inner.ishape, outer.oshape)
        self.inner = inner
        self.outer = outer

    def forward(self, x, **kwargs):
        return self.outer(self.inner(x, **kwargs), **kwargs)

    def adjoint(self, y, **kwargs):
        return self.inner.H(self.outer.H(y, **kwargs), **kwargs)

    def normal(self, x, **kwargs):
        # Route through the outer normal so Toeplitz / stochastic variants are used
        return self.inner.H(self.outer.N(self.inner(x, **kwargs), **kwargs), **kwargs)


def chain(inner: linop, outer: linop) -> ChainLinop:
    """Returns the operator x -> outer(inner(x))"""
    return ChainLinop(inner, outer)


class IdentityLinop(linop):
    def __init__(self, shape):
        super().__init__(shape, shape)

    def forward(self, x, **kwargs):
        return x

    def adjoint(self, y, **kwargs):
        return y

    def normal(self, x, **kwargs):
        return x


class DiagLinop(linop):
    """
    Pointwise multiplication with a (broadcastable) weight tensor.
    """

    def __init__(
        self,
        weights: torch.Tensor,
        shape=None,
        dtype: torch.dtype = torch.complex64,
    ):
        if shape is None:
            shape = tuple(weights.shape)
        super().__init__(shape, shape)
        self.weights = nn.Parameter(weights.to(dtype), requires_grad=False)

    def forward(self, x, **kwargs):
        return self.weights * x

    def adjoint(self, y, **kwargs):
        return self.weights.conj() * y

    def normal(self, x, **kwargs):
        return (self.weights.abs() ** 2) * x


class SenseMapsLinop(linop):
    def __init__(
        self,
        mps: torch.Tensor,
        dtype: torch.dtype = torch.complex64,
        device: Union[str, int, torch.device] = "cpu",
    ):
        """
        Coil sensitivity encoding: image (with ESPIRiT map dimension) -> coil images.

        Parameters:
            mps (torch.Tensor): The sensitivity maps, laid out with the COIL and MAPS
                dimensions of the dimension convention. Missing trailing dimensions
                are treated as extent 1.
            dtype (torch.dtype, optional): The data type for computations.
            device: device the maps live on

        Notes:
            - ishape: map dims with the coil dimension collapsed
            - oshape: map dims with the maps dimension collapsed
            - several sets of maps are combined by summation over MAPS_DIM
        """
        map_shape = ShapeDescriptor.from_dims(mps.shape, flags=FFT_FLAGS)
        self.n_coils = map_shape.dims[COIL_DIM]
        self.n_maps = map_shape.dims[MAPS_DIM]
        ishape = map_shape.with_dim(COIL_DIM, 1)
        oshape = map_shape.with_dim(MAPS_DIM, 1)

        super().__init__(ishape, oshape)

        device = get_torch_device(device)
        self.mps = nn.Parameter(
            mps.reshape(map_shape.dims).to(dtype).to(device), requires_grad=False
        )

    def forward(self, x, **kwargs):
        return torch.sum(self.mps * x, dim=MAPS_DIM, keepdim=True)

    def adjoint(self, y, **kwargs):
        return torch.sum(self.mps.conj() * y, dim=COIL_DIM, keepdim=True)

    def normal(self, x, **kwargs):
        return self.adjoint(self.forward(x))


class CirculantPrecond(linop):
    """
    Circulant approximation of (F^H W F)^-1 acting over the spatial axes.

    The kernel is real and positive, so the operator is self-adjoint. It
    broadcasts over every non-spatial dimension.
    """

    def __init__(self, shape: ShapeDescriptor, inv_kernel: torch.Tensor):
        super().__init__(shape, shape)
        self.axes = tuple(i for i in range(3) if shape.dims[i] > 1)
        self.inv_kernel = nn.Parameter(
            inv_kernel.reshape(shape.select(FFT_FLAGS).dims), requires_grad=False
        )

    def forward(self, x, **kwargs):
        x = torch.fft.fftn(x, dim=self.axes)
        x = x * self.inv_kernel
        return torch.fft.ifftn(x, dim=self.axes)

    def adjoint(self, y, **kwargs):
        return self.forward(y)


class NUFFTLinop(linop):
    def __init__(
        self,
        ksp_dims: Sequence[int],
        coilim_dims: Sequence[int],
        traj: torch.Tensor,
        pattern: Optional[torch.Tensor] = None,
        toeplitz: bool = False,
        precond: bool = False,
        stoch: bool = False,
        stoch_frac: float = 0.5,
        oversamp: float = 1.25,
        width: int = 4,
        dtype: torch.dtype = torch.complex64,
        device: Union[str, int, torch.device] = "cpu",
        seed: int = 1,
    ):
        """
        Non-uniform Fourier transform of coil images onto trajectory samples.

        Parameters:
            ksp_dims: k-space extents; dim 0 must be 1, samples are laid out along dims 1 and 2,
                the remaining dims must equal those of the coil images.
            coilim_dims: coil image extents; dims 0..2 are spatial.
            traj (torch.Tensor): real trajectory of shape (3, ksp_dims[1], ksp_dims[2]) in grid
                units, i.e. within [-n/2, n/2) along every spatial axis.
            pattern (Optional[torch.Tensor]): real sampling pattern / weights shaped like the
                k-space with the coil dim collapsed. None means all ones.
            toeplitz (bool): evaluate the normal operator by Toeplitz embedding on a 2x grid.
            precond (bool): build a circulant preconditioner (see `preconditioner`).
            stoch (bool): evaluate the normal operator on a random subset of the samples
                along dim 2 at every call.
            stoch_frac (float): fraction of dim-2 samples used per stochastic normal.
            oversamp, width: gridding parameters passed to sigpy.
            dtype (torch.dtype): complex dtype of the computation.
            device: device of the trajectory, pattern and kernels.
            seed (int): seed of the private generator used by the stochastic normal.
        """
        ishape = ShapeDescriptor.from_dims(coilim_dims, flags=FFT_FLAGS)
        oshape = ShapeDescriptor.from_dims(ksp_dims, flags=0)
        super().__init__(ishape, oshape)

        assert oshape.N == ishape.N, "k-space and coil images need the same number of dims"
        assert oshape.dims[0] == 1, "Non-Cartesian k-space must have extent 1 along dim 0"
        assert (
            oshape.dims[3:] == ishape.dims[3:]
        ), f"k-space dims {oshape.dims} do not match coil image dims {ishape.dims}"
        assert tuple(traj.shape) == (
            3,
            oshape.dims[1],
            oshape.dims[2],
        ), f"Trajectory shape {tuple(traj.shape)} does not match k-space dims {oshape.dims}"
        assert 0.0 < stoch_frac <= 1.0, "stoch_frac must be in (0, 1]"

        self.device = get_torch_device(device)
        self.dtype = dtype
        self.active = tuple(i for i in range(3) if ishape.dims[i] > 1)
        self.im_size = tuple(ishape.dims[i] for i in self.active)
        self.nd = len(self.active)
        assert self.nd >= 1, "Coil images need at least one spatial dimension with extent > 1"
        self.oversamp = oversamp
        self.width = width
        self.use_toeplitz = toeplitz
        self.stoch = stoch
        self.stoch_frac = stoch_frac

        traj = torch.real(traj) if torch.is_complex(traj) else traj
        coord = rearrange(traj[list(self.active)], "d k1 k2 -> k1 k2 d")
        self.coord = nn.Parameter(
            coord.to(torch.float32).contiguous().to(self.device), requires_grad=False
        )

        if pattern is None:
            pattern = torch.ones(oshape.with_dim(COIL_DIM, 1).dims)
        if torch.is_complex(pattern):
            pattern = torch.real(pattern)
        pattern = pattern.reshape(
            ShapeDescriptor.from_dims(pattern.shape, N=oshape.N).dims
        )
        self.pattern = nn.Parameter(
            pattern.to(torch.float32).to(self.device), requires_grad=False
        )

        # Using a fixed random number generator so that recons are consistent
        self.rng = torch.Generator()
        self.rng.manual_seed(seed)

        self.kernel = None
        if toeplitz:
            self.kernel = nn.Parameter(self._toeplitz_kernel(), requires_grad=False)

        self.preconditioner = None
        if precond:
            self.preconditioner = CirculantPrecond(
                ishape.select(FFT_FLAGS), self._precond_kernel()
            )

    # ---------------------------------- layout helpers ---------------------------------- #
    def _to_batch_last(self, x: torch.Tensor) -> torch.Tensor:
        # (x, y, z, *b) -> (*b, *im_size)
        x = rearrange(x, "x y z ... -> ... x y z")
        return x.reshape(*x.shape[:-3], *self.im_size)

    def _from_batch_last(self, x: torch.Tensor) -> torch.Tensor:
        x = x.reshape(*x.shape[: -self.nd], *self.ishape.dims[:3])
        return rearrange(x, "... x y z -> x y z ...")

    def _nufft(self, x: torch.Tensor, coord: torch.Tensor) -> torch.Tensor:
        x_sp, coord_sp = torch_to_np(x.contiguous(), coord)
        y = sp.nufft(x_sp, coord_sp, oversamp=self.oversamp, width=self.width)
        return np_to_torch(y).to(self.dtype)

    def _nufft_adjoint(
        self, y: torch.Tensor, coord: torch.Tensor, oshape: Tuple[int, ...]
    ) -> torch.Tensor:
        y_sp, coord_sp = torch_to_np(y.contiguous(), coord)
        x = sp.nufft_adjoint(
            y_sp, coord_sp, oshape=oshape, oversamp=self.oversamp, width=self.width
        )
        return np_to_torch(x).to(self.dtype)

    def _pattern_batch_last(self) -> torch.Tensor:
        return rearrange(self.pattern, "1 k1 k2 ... -> ... k1 k2")

    # ---------------------------------- kernels ---------------------------------- #
    def _toeplitz_kernel(self) -> torch.Tensor:
        """
        Transfer function of A^H A on a 2x grid.

        h(d) = 1/prod(n) sum_k w_k exp(i 2pi k.d / n) is sampled by an adjoint
        NUFFT of the squared weights on the doubled grid with doubled coordinates.
        """
        w2 = (self._pattern_batch_last() ** 2).to(self.dtype)
        im_size2 = tuple(2 * n for n in self.im_size)
        psf = self._nufft_adjoint(w2, 2 * self.coord, (*w2.shape[:-2], *im_size2))
        psf = psf * (sqrt(prod(im_size2)) / prod(self.im_size))

        dims = tuple(range(-self.nd, 0))
        psf = torch.fft.ifftshift(psf, dim=dims)
        return torch.fft.fftn(psf, dim=dims)

    def _precond_kernel(self, eps: float = 1e-3) -> torch.Tensor:
        w2 = self._pattern_batch_last() ** 2
        w2 = w2.reshape(-1, *w2.shape[-2:]).mean(dim=0).to(self.dtype)

        delta = torch.zeros(self.im_size, dtype=self.dtype, device=self.device)
        delta[tuple(n // 2 for n in self.im_size)] = 1.0
        psf = self._nufft_adjoint(w2 * self._nufft(delta, self.coord), self.coord, self.im_size)

        dims = tuple(range(self.nd))
        kernel = torch.fft.fftn(torch.fft.ifftshift(psf, dim=dims), dim=dims).abs()
        kernel = kernel.clamp(min=eps * kernel.max().item())
        return kernel.reciprocal().to(self.dtype)

    # ---------------------------------- operator ---------------------------------- #
    def forward(self, x, **kwargs):
        """
        Runs the forward model.
        Args:
            x (torch.Tensor): coil images shaped self.ishape.dims

        Returns:
            torch.Tensor: k-space samples shaped self.oshape.dims
        """
        y = self._nufft(self._to_batch_last(x), self.coord)
        y = rearrange(y, "... k1 k2 -> 1 k1 k2 ...")
        return y * self.pattern

    def adjoint(self, y, **kwargs):
        """
        Runs the adjoint (gridding) model.
        Args:
            y (torch.Tensor): k-space samples shaped self.oshape.dims

        Returns:
            torch.Tensor: coil images shaped self.ishape.dims
        """
        y = rearrange(y * self.pattern, "1 k1 k2 ... -> ... k1 k2")
        x = self._nufft_adjoint(y, self.coord, (*y.shape[:-2], *self.im_size))
        return self._from_batch_last(x)

    def normal(self, x, **kwargs):
        if self.stoch:
            return self._stochastic_normal(x)
        if self.use_toeplitz:
            return self._toeplitz_normal(x)
        return self.adjoint(self.forward(x))

    def _toeplitz_normal(self, x: torch.Tensor) -> torch.Tensor:
        xb = self._to_batch_last(x)
        dims = tuple(range(-self.nd, 0))
        crop = (Ellipsis,) + tuple(slice(0, n) for n in self.im_size)

        xpad = torch.zeros(
            (*xb.shape[: -self.nd], *(2 * n for n in self.im_size)),
            dtype=self.dtype,
            device=xb.device,
        )
        xpad[crop] = xb
        xpad = torch.fft.ifftn(torch.fft.fftn(xpad, dim=dims) * self.kernel, dim=dims)

        return self._from_batch_last(xpad[crop])

    def _stochastic_normal(self, x: torch.Tensor) -> torch.Tensor:
        n_spokes = self.oshape.dims[2]
        n_keep = max(1, int(round(self.stoch_frac * n_spokes)))
        idx = torch.randperm(n_spokes, generator=self.rng)[:n_keep].sort().values
        idx = idx.to(self.coord.device)
        logger.debug(f"Stochastic normal with {n_keep}/{n_spokes} samples")

        coord = self.coord[:, idx]
        w2 = (self._pattern_batch_last()[..., idx] ** 2).to(self.dtype)

        xb = self._to_batch_last(x)
        y = self._nufft(xb, coord) * w2
        xb = self._nufft_adjoint(y, coord, tuple(xb.shape))

        return self._from_batch_last(xb) * (n_spokes / n_keep)


class WaveletLinop(linop):
    """
    Multi-level Daubechies wavelet transform where every level splits its own set of axes.

    At level j the approximation band is split along `level_axes[j]` only, so an
    axis stops being decomposed once it leaves the axis sets. The detail bands of
    every level and the final approximation are packed into one flat vector.
    """

    def __init__(
        self,
        shape: Sequence[int],
        level_axes: Sequence[Sequence[int]],
        wave_name: str = "db2",
    ):
        """
        Parameters:
        -----------
        shape - tuple
            the image/volume dimensions
        level_axes - list of tuples
            axes split at each decomposition level, coarsest last
        wave_name - str
            the type of wavelet to use, see
            https://pywavelets.readthedocs.io/en/latest/ref/wavelets.html#wavelet-families
        """
        shape = tuple(int(n) for n in shape)
        self.wave_name = wave_name
        self.level_axes = [tuple(axes) for axes in level_axes]
        flen = pywt.Wavelet(wave_name).dec_len

        # (input shape, band shape) per level
        self.level_shapes = []
        cur = shape
        size = 0
        for axes in self.level_axes:
            assert len(axes) > 0, "Every level must split at least one axis"
            band = tuple((n + flen - 1) // 2 if i in axes else n for i, n in enumerate(cur))
            self.level_shapes.append((cur, band))
            size += ((1 << len(axes)) - 1) * prod(band)
            cur = band
        self.coarse_shape = cur
        size += prod(cur)

        super().__init__(shape, (size,))

    def forward(self, x, **kwargs) -> torch.Tensor:
        """
        Forward wavelet transform

        Parameters
        ----------
        x - torch.tensor <complex>
            image/volume input
        """
        a = x.detach().cpu().reshape(self.ishape.dims).numpy()

        bands = []
        for axes in self.level_axes:
            coeffs = pywt.dwtn(a, self.wave_name, mode="zero", axes=axes)
            a = coeffs.pop("a" * len(axes))
            bands.extend(coeffs[key].ravel() for key in sorted(coeffs))
        bands.append(a.ravel())

        return torch.as_tensor(np.concatenate(bands)).to(x.device, x.dtype)

    def adjoint(self, y, **kwargs) -> torch.Tensor:
        """
        Inverse wavelet transform

        Parameters
        ----------
        y - torch.tensor <complex>
            packed wavelet coefficients
        """
        c = y.detach().cpu().numpy()

        end = c.size
        a = c[end - prod(self.coarse_shape) :].reshape(self.coarse_shape)
        end -= prod(self.coarse_shape)

        for axes, (cur, band) in zip(reversed(self.level_axes), reversed(self.level_shapes)):
            keys = sorted(
                "".join(k) for k in product("ad", repeat=len(axes)) if "d" in k
            )
            start = end - len(keys) * prod(band)
            coeffs = {
                key: c[start + j * prod(band) : start + (j + 1) * prod(band)].reshape(band)
                for j, key in enumerate(keys)
            }
            coeffs["a" * len(axes)] = a
            end = start

            a = pywt.idwtn(coeffs, self.wave_name, mode="zero", axes=axes)
            a = a[tuple(slice(0, n) for n in cur)]

        return torch.as_tensor(np.ascontiguousarray(a)).to(y.device, y.dtype)
