# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Device and precision selection.

Turns the config's device kind and optional precision into a torch device
and dtype, checking the accelerator is actually there. A missing accelerator
is a load-time failure; nothing falls back to the CPU silently.

The admission-control settings of the serving layer (fraction of accelerator
memory to reserve, maximum concurrent sequences) are validated here as well,
since they only make sense together with a device. On CUDA the memory
fraction is applied to the process; the sequence limit is only logged and
is enforced by whoever admits requests.
"""

import logging
from enum import Enum
from typing import Optional, Union

import torch

from deepseek_ocr.logging.logger import get_logger
from deepseek_ocr.model.exceptions import DeviceUnavailableError, InitializationError

logger: logging.Logger = get_logger(__name__)


class DeviceKind(str, Enum):
    CPU = "cpu"
    MPS = "mps"
    CUDA = "cuda"


class Precision(str, Enum):
    F32 = "f32"
    F16 = "f16"
    BF16 = "bf16"


_PRECISION_DTYPES: dict[Precision, torch.dtype] = {
    Precision.F32: torch.float32,
    Precision.F16: torch.float16,
    Precision.BF16: torch.bfloat16,
}

# Precision used on accelerators when the config leaves it unset.
ACCELERATOR_DEFAULT_PRECISION = Precision.F16


def dtype_from_precision(precision: Union[Precision, str]) -> torch.dtype:
    return _PRECISION_DTYPES[Precision(precision)]


def default_dtype_for_device(device: torch.device) -> torch.dtype:
    """Half precision on accelerators, full precision on the CPU."""
    if device.type in (DeviceKind.CUDA.value, DeviceKind.MPS.value):
        return dtype_from_precision(ACCELERATOR_DEFAULT_PRECISION)
    return torch.float32


def _validate_admission_options(
    gpu_memory_utilization: Optional[float],
    max_num_seqs: Optional[int],
) -> None:
    if gpu_memory_utilization is not None and not 0.0 <= gpu_memory_utilization <= 1.0:
        raise InitializationError(
            f"GPU memory utilization must be between 0.0 and 1.0, got {gpu_memory_utilization}"
        )
    if max_num_seqs is not None and max_num_seqs <= 0:
        raise InitializationError("Maximum number of sequences must be greater than 0")


def _open_device(kind: DeviceKind) -> torch.device:
    if kind is DeviceKind.CUDA:
        if not torch.cuda.is_available():
            raise DeviceUnavailableError("CUDA device requested but torch.cuda is unavailable")
        return torch.device("cuda", 0)
    if kind is DeviceKind.MPS:
        if not torch.backends.mps.is_available():
            raise DeviceUnavailableError("MPS device requested but torch.backends.mps is unavailable")
        return torch.device("mps")
    return torch.device("cpu")


def prepare_device_and_dtype_with_options(
    device: Union[DeviceKind, str],
    precision: Optional[Union[Precision, str]] = None,
    gpu_memory_utilization: Optional[float] = None,
    max_num_seqs: Optional[int] = None,
) -> tuple[torch.device, Optional[torch.dtype]]:
    """
    Open the requested device and pick the model dtype.

    Args:
        device: "cpu", "mps" or "cuda".
        precision: "f32", "f16" or "bf16". Accelerators default to f16; the
                   CPU returns None, meaning "keep the weights' dtype".
        gpu_memory_utilization: Fraction of accelerator memory to reserve.
        max_num_seqs: Concurrent sequence limit of the serving layer.

    Returns:
        (device, dtype or None)

    Raises:
        DeviceUnavailableError: The accelerator is not present.
        InitializationError: Unknown device/precision or out-of-range options.
    """
    _validate_admission_options(gpu_memory_utilization, max_num_seqs)

    try:
        kind = DeviceKind(device)
        requested = Precision(precision) if precision is not None else None
    except ValueError as err:
        raise InitializationError(str(err)) from err

    torch_device = _open_device(kind)
    default_precision = None if kind is DeviceKind.CPU else ACCELERATOR_DEFAULT_PRECISION

    if gpu_memory_utilization is not None:
        logger.info(
            "gpu_memory_utilization",
            extra={"fraction": gpu_memory_utilization, "percent": round(gpu_memory_utilization * 100, 2)},
        )
        if kind is DeviceKind.CUDA:
            torch.cuda.set_per_process_memory_fraction(gpu_memory_utilization, torch_device)
    if max_num_seqs is not None:
        logger.info("max_num_seqs", extra={"max_num_seqs": max_num_seqs})

    chosen = requested if requested is not None else default_precision
    dtype = dtype_from_precision(chosen) if chosen is not None else None
    logger.info(
        "device_prepared",
        extra={"device": str(torch_device), "dtype": str(dtype) if dtype is not None else None},
    )
    return torch_device, dtype


def prepare_device_and_dtype(
    device: Union[DeviceKind, str],
    precision: Optional[Union[Precision, str]] = None,
) -> tuple[torch.device, Optional[torch.dtype]]:
    return prepare_device_and_dtype_with_options(device, precision)
