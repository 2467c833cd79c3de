# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Abstract base classes for pluggable model layers.

The decoder topology is fixed:
  Embedding → N × Blocks → Norm → LM Head

Within each block the attention kernel, the feed-forward layer and the norm
are swappable as long as they obey the contracts defined here. Layers that
produce an auxiliary loss (gated MoE) report it through the feed-forward
contract so the block never needs to know which kind it holds.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

import torch
import torch.nn as nn

if TYPE_CHECKING:
    from deepseek_ocr.model.cache import DynamicCache


class FeedForwardBase(nn.Module, ABC):
    """
    Base class for feed-forward layer implementations.

    Contract:
        forward(x) -> (y, aux_loss)  where x.shape == y.shape == [B, T, H]

    ``aux_loss`` is None for dense layers and a scalar tensor for layers with
    a routing penalty.
    """

    @abstractmethod
    def forward(self, x: torch.Tensor) -> tuple[torch.Tensor, Optional[torch.Tensor]]:
        ...


class AttentionBase(nn.Module, ABC):
    """
    Base class for self-attention kernels.

    Contract:
        forward(x, freqs_cis, bias, layer_idx, cache, use_cache) -> y
        where x.shape == y.shape == [B, T, H].

    ``freqs_cis`` holds rotary frequencies already gathered at each token's
    position ([B, T, head_dim // 2]). ``bias`` is an additive attention bias
    broadcastable to [B, heads, T, past + T] that encodes both the causal
    and the padding mask. When a cache is given the kernel attends over the
    cached keys/values of ``layer_idx``, and appends its own when
    ``use_cache`` is set.
    """

    @abstractmethod
    def forward(
        self,
        x: torch.Tensor,
        freqs_cis: torch.Tensor,
        bias: torch.Tensor,
        layer_idx: int,
        cache: Optional["DynamicCache"] = None,
        use_cache: bool = False,
    ) -> torch.Tensor:
        ...


class NormBase(nn.Module, ABC):
    """
    Base class for normalization layer implementations.

    Contract:
        forward(x) -> y  where x.shape == y.shape == [..., dim]
    """

    @abstractmethod
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        ...
