from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Union

import torch
from loguru import logger

from nurecon.recon.classic_recons import nusense_recon


@dataclass
class ReconstructorOutput:
    recon: torch.Tensor
    extra_outputs: Optional[Dict[str, Any]] = None


@dataclass
class ReconParams:
    device: Union[str, int] = "cpu"  # "cpu", "cuda" or a GPU index
    verbose: bool = True


@dataclass
class NUSenseParams(ReconParams):
    """
    Caller-level knobs of the non-Cartesian SENSE reconstruction
    """

    l1wav: bool = False  # l1-wavelet instead of l2 regularization
    lamda: float = 0.0
    max_iter: int = 50
    step: float = 0.95
    ist: bool = False  # IST instead of FISTA for l1wav
    hogwild: bool = False
    eigen: bool = False  # step /= max eigenvalue of A^H A
    precond: bool = False
    stoch: bool = False
    toeplitz: bool = True
    randshift: bool = True


class Reconstructor:
    def __init__(self, params: ReconParams = ReconParams()):
        """
        Base class for all reconstructors.

        Args:
            params (ReconParams): Parameters for the reconstructor.
        """
        self.params = params
        self.device = params.device
        self.verbose = params.verbose

    def reconstruct(self, measurements, **kwargs) -> ReconstructorOutput:
        """
        Reconstruct the image from the measurements.

        Args:
            measurements (torch.Tensor): The measurements to reconstruct from.
            **kwargs: Additional arguments for the reconstruction process.

        Returns:
            ReconstructorOutput: The reconstructed image.
        """
        raise NotImplementedError("Reconstruction method not implemented.")


class NUSenseReconstructor(Reconstructor):
    def __init__(
        self,
        traj: torch.Tensor,
        mps: torch.Tensor,
        params: NUSenseParams = NUSenseParams(),
    ):
        """
        Non-Cartesian iterative SENSE / ESPIRiT reconstructor.

        Args:
            traj (torch.Tensor): trajectory of shape (3, n_read, n_spokes)
            mps (torch.Tensor): sensitivity maps
            params (NUSenseParams): regularization and solver knobs
        """
        super().__init__(params)
        self.traj = traj
        self.mps = mps
        logger.debug(f"NUSense reconstructor with params: {params}")

    def reconstruct(
        self, measurements: torch.Tensor, pattern: Optional[torch.Tensor] = None, **kwargs
    ) -> ReconstructorOutput:
        kwargs = {**asdict(self.params), **kwargs}
        recon = nusense_recon(self.traj, measurements, self.mps, pattern=pattern, **kwargs)
        return ReconstructorOutput(recon=recon)
