# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
SwiGLU feedforward network.

Structure: down(silu(gate(x)) * up(x)). Used as the dense feed-forward of
the first decoder layers and as the body of every routed and shared expert
in the MoE layers.
"""

from typing import Optional

import torch
import torch.nn as nn
import torch.nn.functional as F

from deepseek_ocr.model.interfaces import FeedForwardBase
from deepseek_ocr.model.registry import register_feed_forward


class SwiGLUFeedForward(FeedForwardBase):
    """
    SwiGLU-activated feedforward network.

    Args:
        dim: Model hidden dimension.
        intermediate_dim: Size of the hidden layer.
    """

    def __init__(self, dim: int, intermediate_dim: int) -> None:
        super().__init__()
        self.w1 = nn.Linear(dim, intermediate_dim, bias=False)  # gate projection
        self.w2 = nn.Linear(intermediate_dim, dim, bias=False)  # down projection
        self.w3 = nn.Linear(dim, intermediate_dim, bias=False)  # up projection

    def project(self, x: torch.Tensor) -> torch.Tensor:
        """Apply the SwiGLU transform to a tensor of shape (..., dim)."""
        return self.w2(F.silu(self.w1(x)) * self.w3(x))

    def forward(self, x: torch.Tensor) -> tuple[torch.Tensor, Optional[torch.Tensor]]:
        return self.project(x), None


register_feed_forward("swiglu", SwiGLUFeedForward)
