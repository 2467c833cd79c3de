# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Runtime bootstrap.

One-time process setup before a model is loaded:
  1. Set deterministic seeds
  2. Initialize the logger from the global config

After bootstrap the process is in a known state, so random initialization
and sampling are reproducible run to run.
"""

import logging
import os
import platform
import random
from pathlib import Path

import torch

from deepseek_ocr.config.schema import GlobalConfig
from deepseek_ocr.logging.logger import get_logger


def set_deterministic_seed(seed: int) -> None:
    """
    Seed Python's ``random``, PYTHONHASHSEED and torch (CPU and CUDA).

    Args:
        seed: Integer seed value. Must be >= 0.
    """
    random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


def bootstrap(config: GlobalConfig) -> logging.Logger:
    """
    Seed every RNG and configure the runtime logger.

    Returns:
        The configured runtime logger.
    """
    set_deterministic_seed(config.seed)

    log_file = Path(config.log_file) if config.log_file is not None else None
    logger = get_logger("deepseek_ocr.runtime", log_level=config.log_level, log_file=log_file)
    logger.info(
        "bootstrap_complete",
        extra={
            "project": config.project_name,
            "seed": config.seed,
            "python_version": platform.python_version(),
            "torch_version": torch.__version__,
            "platform": platform.system(),
        },
    )
    return logger
