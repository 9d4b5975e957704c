"""
Iterative non-Cartesian SENSE reconstruction.

This module provides:
- Linear operators (NUFFT, SENSE maps, wavelets) and their composition
- Proximal wavelet thresholding with random cycle spinning
- CG, IST and FISTA, and the lsqr solve driver
"""

from .algs import (
    ConjGradConf,
    FISTAConf,
    ISTConf,
    conjugate_gradient,
    fista,
    ist,
    italgo,
    select_algorithm,
)
from .classic_recons import nusense_recon
from .linops import (
    ChainLinop,
    CirculantPrecond,
    DiagLinop,
    IdentityLinop,
    NUFFTLinop,
    SenseMapsLinop,
    WaveletLinop,
    chain,
    linop,
)
from .lsqr import lsqr
from .power import power_method_operator
from .prox import WaveletThresh, rand_lim, soft_thresh, wavelet_level_axes, wavelet_num_levels
from .reconstructor import (
    NUSenseParams,
    NUSenseReconstructor,
    ReconParams,
    Reconstructor,
    ReconstructorOutput,
)

__all__ = [
    # Main classes
    "Reconstructor",
    "ReconstructorOutput",
    "ReconParams",
    "NUSenseReconstructor",
    "NUSenseParams",
    # Classic reconstruction functions
    "nusense_recon",
    "lsqr",
    # Linear operators
    "linop",
    "chain",
    "ChainLinop",
    "IdentityLinop",
    "DiagLinop",
    "SenseMapsLinop",
    "NUFFTLinop",
    "CirculantPrecond",
    "WaveletLinop",
    # Algorithms
    "ConjGradConf",
    "ISTConf",
    "FISTAConf",
    "conjugate_gradient",
    "ist",
    "fista",
    "italgo",
    "select_algorithm",
    # Proximal operators
    "WaveletThresh",
    "soft_thresh",
    "rand_lim",
    "wavelet_num_levels",
    "wavelet_level_axes",
    # Utilities
    "power_method_operator",
]
