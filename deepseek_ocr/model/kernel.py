# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Attention kernel selection.

The decoder supports two self-attention kernels: an explicit softmax path
and a fused path built on ``scaled_dot_product_attention``. Which one runs is
decided exactly once, when the model is constructed, with this precedence:

  1. ``DEEPSEEK_OCR_FLASH_ATTENTION`` environment variable, when it holds a
     recognised boolean (1/true/yes, 0/false/no, any case)
  2. ``attn_implementation`` from the model config ("flash_attention_2")
  3. the standard kernel

Unrecognised environment values are ignored, not rejected.
"""

import logging
import os
from collections.abc import Mapping
from enum import Enum
from typing import Optional

from deepseek_ocr.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)

FLASH_ATTENTION_ENV = "DEEPSEEK_OCR_FLASH_ATTENTION"
FLASH_ATTENTION_CONFIG_VALUE = "flash_attention_2"

_TRUE_VALUES = frozenset({"1", "true", "yes"})
_FALSE_VALUES = frozenset({"0", "false", "no"})


class AttentionKernel(str, Enum):
    """Resolved self-attention implementation."""

    STANDARD = "standard"
    FLASH = "flash"


def parse_bool_override(value: Optional[str]) -> Optional[bool]:
    """
    Interpret an environment value as a boolean override.

    Returns:
        True or False for recognised values, None for anything else
        (including an unset variable).
    """
    if value is None:
        return None
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def resolve_attention_kernel(
    attn_implementation: Optional[str],
    environ: Optional[Mapping[str, str]] = None,
) -> AttentionKernel:
    """
    Decide which attention kernel a model instance will use.

    Args:
        attn_implementation: The config selector string, if any.
        environ: Environment to read the override from (defaults to
                 ``os.environ``).

    Returns:
        The resolved AttentionKernel.
    """
    env = os.environ if environ is None else environ
    raw_override = env.get(FLASH_ATTENTION_ENV)
    override = parse_bool_override(raw_override)
    from_config = (
        attn_implementation is not None
        and attn_implementation.lower() == FLASH_ATTENTION_CONFIG_VALUE
    )

    use_flash = from_config if override is None else override
    kernel = AttentionKernel.FLASH if use_flash else AttentionKernel.STANDARD

    if raw_override is not None and override is None:
        logger.warning(
            "Ignoring unrecognised attention override",
            extra={"variable": FLASH_ATTENTION_ENV, "value": raw_override},
        )
    logger.debug(
        "attention_kernel_resolved",
        extra={
            "kernel": kernel.value,
            "config_value": attn_implementation,
            "override": override,
        },
    )
    return kernel
