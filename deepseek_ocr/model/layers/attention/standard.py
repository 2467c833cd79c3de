# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Standard attention kernel.

Spells the computation out: scores = q·kᵀ/√d + bias, softmax in float32,
weighted sum of values. This is the reference path the fused kernel is
checked against.
"""

import torch

from deepseek_ocr.model.kernel import AttentionKernel
from deepseek_ocr.model.layers.attention.base import RotaryAttention
from deepseek_ocr.model.registry import register_attention


class StandardAttention(RotaryAttention):
    """Multi-head attention with an explicit softmax."""

    def _attend(
        self,
        q: torch.Tensor,
        k: torch.Tensor,
        v: torch.Tensor,
        bias: torch.Tensor,
    ) -> torch.Tensor:
        scores = torch.matmul(q.float(), k.float().transpose(-2, -1)) * self.scale
        scores = scores + bias.float()
        probs = torch.softmax(scores, dim=-1).type_as(q)
        return torch.matmul(probs, v)


register_attention(AttentionKernel.STANDARD.value, StandardAttention)
