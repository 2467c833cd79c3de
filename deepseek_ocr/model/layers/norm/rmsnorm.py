# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
RMSNorm — root mean square layer normalization.

Formula: x * weight / sqrt(mean(x^2) + eps)

The statistic is always computed in float32 and cast back, so half-precision
hidden states with near-zero variance do not blow up. ``rms_norm`` is the
functional form used by the output projector against a stored weight
vector; ``RMSNormLayer`` is the module used inside decoder blocks.
"""

import torch
import torch.nn as nn

from deepseek_ocr.model.interfaces import NormBase
from deepseek_ocr.model.registry import register_norm


def rms_norm(x: torch.Tensor, weight: torch.Tensor, eps: float) -> torch.Tensor:
    """
    Normalize ``x`` over its last dimension and scale by ``weight``.

    Args:
        x: Tensor of shape (..., dim).
        weight: Scale vector of shape (dim,).
        eps: Stability constant added to the mean square.

    Returns:
        Tensor with the same shape and dtype as ``x``.
    """
    x_float = x.float()
    normed = x_float * torch.rsqrt(x_float.pow(2).mean(dim=-1, keepdim=True) + eps)
    return normed.type_as(x) * weight


class RMSNormLayer(NormBase):
    """
    Root Mean Square Layer Normalization with a learned scale.

    Args:
        dim: Feature dimension to normalize over.
        eps: Small constant for numerical stability.
    """

    def __init__(self, dim: int, eps: float = 1e-6) -> None:
        super().__init__()
        self.eps = eps
        self.weight = nn.Parameter(torch.ones(dim))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return rms_norm(x, self.weight, self.eps)


register_norm("rmsnorm", RMSNormLayer)
