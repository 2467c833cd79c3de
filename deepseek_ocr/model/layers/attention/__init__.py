# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Attention kernel implementations.

Importing this package registers the "standard" and "flash" kernels.
"""

from deepseek_ocr.model.layers.attention.flash import FlashAttention
from deepseek_ocr.model.layers.attention.standard import StandardAttention

__all__ = ["FlashAttention", "StandardAttention"]
