# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Fused attention kernel.

Hands the whole computation to PyTorch's scaled_dot_product_attention,
which dispatches to FlashAttention or memory-efficient kernels when the
device and dtype allow. The mask is the same additive bias the standard
kernel uses, so results agree up to floating-point rounding.
"""

import torch
import torch.nn.functional as F

from deepseek_ocr.model.kernel import AttentionKernel
from deepseek_ocr.model.layers.attention.base import RotaryAttention
from deepseek_ocr.model.registry import register_attention


class FlashAttention(RotaryAttention):
    """Multi-head attention through scaled_dot_product_attention."""

    def _attend(
        self,
        q: torch.Tensor,
        k: torch.Tensor,
        v: torch.Tensor,
        bias: torch.Tensor,
    ) -> torch.Tensor:
        return F.scaled_dot_product_attention(
            q,
            k,
            v,
            attn_mask=bias.to(q.dtype),
            dropout_p=0.0,
            scale=self.scale,
        )


register_attention(AttentionKernel.FLASH.value, FlashAttention)
