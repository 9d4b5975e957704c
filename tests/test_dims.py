"""Tests for the dimension convention and ShapeDescriptor."""

import pytest

from nurecon.dims import (
    COIL_DIM,
    COIL_FLAG,
    DIMS,
    FFT_FLAGS,
    MAPS_DIM,
    ShapeDescriptor,
    md_bit,
    md_is_set,
)


class TestFlags:
    def test_fft_flags_cover_spatial_dims(self):
        assert FFT_FLAGS == 0b111
        assert all(md_is_set(FFT_FLAGS, i) for i in range(3))
        assert not md_is_set(FFT_FLAGS, COIL_DIM)

    def test_md_bit(self):
        assert md_bit(COIL_DIM) == COIL_FLAG == 8


class TestShapeDescriptor:
    def test_from_dims_pads_with_ones(self):
        shape = ShapeDescriptor.from_dims((16, 8, 1, 4))
        assert shape.N == DIMS
        assert shape.dims[:4] == (16, 8, 1, 4)
        assert all(d == 1 for d in shape.dims[4:])
        assert shape.size == 16 * 8 * 4

    def test_select_keeps_flagged_extents(self):
        shape = ShapeDescriptor.from_dims((16, 8, 2, 4, 2))
        selected = shape.select(FFT_FLAGS)
        assert selected.dims[:5] == (16, 8, 2, 1, 1)
        # original untouched
        assert shape.dims[COIL_DIM] == 4

    def test_with_dim_and_flags(self):
        shape = ShapeDescriptor.from_dims((16, 8, 1, 4), flags=FFT_FLAGS)
        assert shape.with_dim(MAPS_DIM, 2).dims[MAPS_DIM] == 2
        assert shape.with_flags(COIL_FLAG).selected_axes() == (COIL_DIM,)
        assert shape.selected_axes() == (0, 1, 2)
        assert shape.is_set(0) and not shape.is_set(COIL_DIM)

    @pytest.mark.parametrize("dims", [(0, 4), (4, -1)])
    def test_non_positive_extent_raises(self, dims):
        with pytest.raises(AssertionError):
            ShapeDescriptor(dims)

    def test_too_many_dims_raises(self):
        with pytest.raises(AssertionError):
            ShapeDescriptor.from_dims((1,) * (DIMS + 1))
