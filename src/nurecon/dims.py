"""
Array layout conventions shared by the operators, the proximal operators and
the solve driver.

Arrays follow a fixed dimension convention of `DIMS` slots. The first three
slots are spatial (image space or gridded k-space), followed by the receive
coil and the ESPIRiT map dimension. Unused slots have extent 1.
"""

from dataclasses import dataclass, replace
from math import prod
from typing import Sequence, Tuple

__all__ = [
    "DIMS",
    "READ_DIM",
    "PHS1_DIM",
    "PHS2_DIM",
    "COIL_DIM",
    "MAPS_DIM",
    "FFT_FLAGS",
    "COIL_FLAG",
    "MAPS_FLAG",
    "md_bit",
    "md_is_set",
    "ShapeDescriptor",
]

DIMS = 16

READ_DIM = 0
PHS1_DIM = 1
PHS2_DIM = 2
COIL_DIM = 3
MAPS_DIM = 4


def md_bit(i: int) -> int:
    return 1 << i


def md_is_set(flags: int, i: int) -> bool:
    return bool(flags & md_bit(i))


FFT_FLAGS = md_bit(READ_DIM) | md_bit(PHS1_DIM) | md_bit(PHS2_DIM)
COIL_FLAG = md_bit(COIL_DIM)
MAPS_FLAG = md_bit(MAPS_DIM)


@dataclass(frozen=True)
class ShapeDescriptor:
    """
    Immutable extent vector plus a dimension-selection bitmask.

    Parameters:
    -----------
    dims : tuple of int
        extent of every dimension slot, all >= 1
    flags : int
        bitmask selecting the dimensions a transform acts on
    """

    dims: Tuple[int, ...]
    flags: int = 0

    def __post_init__(self):
        dims = tuple(int(d) for d in self.dims)
        assert all(d >= 1 for d in dims), f"Extents must be positive, got {dims}"
        assert self.flags >= 0, "Flags must be a non-negative bitmask"
        object.__setattr__(self, "dims", dims)

    @classmethod
    def from_dims(cls, dims: Sequence[int], flags: int = 0, N: int = DIMS):
        """Pads `dims` with trailing ones up to `N` slots."""
        dims = tuple(dims)
        assert len(dims) <= N, f"Got {len(dims)} extents for {N} slots"
        return cls(dims + (1,) * (N - len(dims)), flags)

    @property
    def N(self) -> int:
        return len(self.dims)

    @property
    def size(self) -> int:
        return prod(self.dims)

    def is_set(self, i: int) -> bool:
        return md_is_set(self.flags, i)

    def select(self, flags: int) -> "ShapeDescriptor":
        """Keeps the extents selected by `flags` and sets the others to 1."""
        dims = tuple(d if md_is_set(flags, i) else 1 for i, d in enumerate(self.dims))
        return replace(self, dims=dims)

    def with_dim(self, i: int, n: int) -> "ShapeDescriptor":
        dims = list(self.dims)
        dims[i] = n
        return replace(self, dims=tuple(dims))

    def with_flags(self, flags: int) -> "ShapeDescriptor":
        return replace(self, flags=flags)

    def selected_axes(self) -> Tuple[int, ...]:
        return tuple(i for i in range(self.N) if self.is_set(i))
