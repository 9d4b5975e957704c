import gc
from typing import Sequence, Union

import numpy as np
import torch

"""
Device and array-bridging utils
"""


def get_torch_device(device: Union[str, int, torch.device]) -> torch.device:
    """
    Get a torch device from a string or integer.
    Args:
        device: device to use, can be a string (e.g. "cuda", "cpu") or an integer (e.g. 0 for "cuda:0")
    Returns:
        torch.device: the device to use
    """
    if isinstance(device, str):
        return torch.device(device)
    elif isinstance(device, int):
        return torch.device(f"cuda:{device}")
    elif isinstance(device, torch.device):
        return device
    else:
        raise ValueError(f"Unsupported device type: {type(device)}")


def ensure_torch(x, device=torch.device("cpu")) -> torch.Tensor:
    device = get_torch_device(device)

    if isinstance(x, torch.Tensor):
        return x.to(device)
    elif isinstance(x, np.ndarray):
        return torch.from_numpy(x).to(device)
    else:
        raise ValueError(f"Unsupported type {type(x)} for conversion to torch.Tensor")


def torch_resize(input: torch.Tensor, oshape: tuple) -> torch.Tensor:
    """Resize with zero-padding or cropping, keeping the array centre fixed.

    Args:
        input (torch.Tensor): Input array.
        oshape (tuple of ints): Output shape.

    Returns:
        torch.Tensor: Zero-padded or cropped result.
    """

    assert len(input.shape) == len(
        oshape
    ), "Input and output must have same number of dimensions."

    ishape = tuple(input.shape)
    oshape = tuple(oshape)

    if ishape == oshape:
        return input

    ishift = [max(i // 2 - o // 2, 0) for i, o in zip(ishape, oshape)]
    oshift = [max(o // 2 - i // 2, 0) for i, o in zip(ishape, oshape)]

    copy_shape = [
        min(i - si, o - so) for i, si, o, so in zip(ishape, ishift, oshape, oshift)
    ]

    islice = tuple([slice(si, si + c) for si, c in zip(ishift, copy_shape)])
    oslice = tuple([slice(so, so + c) for so, c in zip(oshift, copy_shape)])

    output = torch.zeros(oshape, dtype=input.dtype, device=input.device)
    output[oslice] = input[islice]

    return output


def np_to_torch(*args):
    """
    Converts numpy (or cupy) arrays to torch tensors,
    preserving device and dtype

    Parameters:
    -----------
    args : tuple
        arrays to convert

    Returns:
    --------
    ret_args : tuple
        torch tensors
    """
    ret_args = []
    for arg in args:
        if isinstance(arg, np.ndarray):
            ret_args.append(torch.as_tensor(arg))
        elif isinstance(arg, torch.Tensor):
            ret_args.append(arg)
        elif hasattr(arg, "__cuda_array_interface__"):
            # cupy array coming back from a sigpy GPU kernel
            ret_args.append(torch.as_tensor(arg, device=torch.device(int(arg.device))))
        else:
            ret_args.append(None)

    if len(ret_args) == 1:
        ret_args = ret_args[0]

    return ret_args


def torch_to_np(*args):
    """
    Converts torch tensors to numpy arrays, preserving device and dtype.
    CUDA tensors are handed over to cupy so sigpy can run on the same device.

    Parameters:
    -----------
    args : tuple
        torch tensors to convert

    Returns:
    --------
    ret_args : tuple
        numpy (or cupy) arrays
    """
    ret_args = []
    for arg in args:
        if isinstance(arg, torch.Tensor):
            arg = arg.detach()
            if arg.is_cuda:
                import cupy as cp

                with cp.cuda.Device(arg.get_device()):
                    ret_args.append(cp.asarray(arg))
            else:
                ret_args.append(arg.numpy())
        elif isinstance(arg, np.ndarray):
            ret_args.append(arg)
        else:
            ret_args.append(None)

    if len(ret_args) == 1:
        ret_args = ret_args[0]

    return ret_args


def fftc(input, dim=(-2, -1), norm="ortho"):
    """
    Compute the centered fast Fourier transform along the specified dimensions.

    Args:
        input (torch.Tensor): The input tensor.
        dim (tuple): The dimensions along which to compute the FFT. Default is (-2, -1).
        norm (str): The normalization mode. Default is "ortho".

    Returns:
        torch.Tensor: The output tensor after applying the centered FFT.
    """
    tmp = torch.fft.ifftshift(input, dim=dim)
    tmp = torch.fft.fftn(tmp, dim=dim, norm=norm)
    output = torch.fft.fftshift(tmp, dim=dim)

    return output


def ifftc(input, dim=(-2, -1), norm="ortho"):
    """
    Compute the inverse centered fast Fourier transform (IFFT) along the specified dimensions.

    Args:
        input (torch.Tensor): The input tensor to compute the IFFT on.
        dim (tuple): The dimensions along which to compute the IFFT. Default is (-2, -1).
        norm (str): The normalization mode. Default is "ortho".

    Returns:
        torch.Tensor: The output tensor after applying the IFFT.
    """
    tmp = torch.fft.ifftshift(input, dim=dim)
    tmp = torch.fft.ifftn(tmp, dim=dim, norm=norm)
    output = torch.fft.fftshift(tmp, dim=dim)

    return output


def zdot(x1: torch.Tensor, x2: torch.Tensor) -> torch.Tensor:
    """Complex inner product sum(conj(x1) * x2)"""
    return torch.sum(x1.conj() * x2)


def spatial_axes(dims: Sequence[int], flags: int) -> tuple:
    """Axes selected by `flags` that carry more than one sample."""
    return tuple(i for i, n in enumerate(dims) if (flags >> i) & 1 and n > 1)


def clear_cache():
    gc.collect()
    if torch.cuda.is_available():
        torch.cuda.empty_cache()
