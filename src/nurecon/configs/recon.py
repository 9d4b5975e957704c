from copy import deepcopy

from nurecon.recon.reconstructor import NUSenseParams

N_iter = 50

# ------------------------------------------- l2 regularized CG-SENSE ------------------------------------------- #
nusense_l2 = NUSenseParams(
    l1wav=False,
    lamda=1e-3,
    max_iter=N_iter,
    toeplitz=True,
)

# ------------------------------------------- l1-wavelet, FISTA ------------------------------------------- #
nusense_l1_fista = NUSenseParams(
    l1wav=True,
    lamda=5e-3,
    max_iter=N_iter,
    step=0.95,
    eigen=True,  # step is divided by the max eigenvalue of A^H A
    randshift=True,
    toeplitz=True,
)

# ------------------------------------------- l1-wavelet, IST ------------------------------------------- #
nusense_l1_ist = deepcopy(nusense_l1_fista)
nusense_l1_ist.ist = True

PRESETS = {
    "l2": nusense_l2,
    "l1-fista": nusense_l1_fista,
    "l1-ist": nusense_l1_ist,
}


def get_preset(name: str) -> NUSenseParams:
    """Returns a copy of the named preset."""
    if name not in PRESETS:
        raise ValueError(f"Unknown preset {name}, choose from {sorted(PRESETS)}")
    return deepcopy(PRESETS[name])
