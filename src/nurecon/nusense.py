"""
Non-Cartesian iterative SENSE / ESPIRiT reconstruction from the command line.

    nusense --traj traj.npy --kspace ksp.npy --sens sens.npy --output img.npy \
        --recon.l1wav --recon.lamda 0.005
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

import numpy as np
import torch
import tyro
from loguru import logger

from nurecon.configs import recon as recon_configs
from nurecon.loggers.time_logger import TimeLogger
from nurecon.recon.reconstructor import NUSenseParams, NUSenseReconstructor
from nurecon.utils import ensure_torch


@dataclass
class Config:
    # Inputs / outputs (.npy)
    traj: Path
    kspace: Path
    sens: Path
    output: Path
    pattern: Optional[Path] = None

    # named preset; replaces `recon` when given
    preset: Optional[Literal["l2", "l1-fista", "l1-ist"]] = None
    recon: NUSenseParams = field(default_factory=NUSenseParams)

    # debug output
    debug: bool = False


def load(path: Path) -> torch.Tensor:
    return ensure_torch(np.load(path))


def main(args: Config):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.debug else "INFO")

    Tlogger = TimeLogger()
    params = recon_configs.get_preset(args.preset) if args.preset else args.recon

    Tlogger.start("load")
    traj = load(args.traj)
    ksp = load(args.kspace)
    mps = load(args.sens)
    pattern = load(args.pattern) if args.pattern is not None else None
    Tlogger.end("load")

    Tlogger.start("recon")
    recon = NUSenseReconstructor(traj, mps, params).reconstruct(ksp, pattern=pattern).recon
    Tlogger.end("recon")

    Tlogger.start("save")
    np.save(args.output, recon.cpu().numpy())
    Tlogger.end("save")

    Tlogger.report()


def cli():
    main(tyro.cli(Config))


if __name__ == "__main__":
    cli()
