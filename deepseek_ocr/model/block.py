# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Decoder layer.

Each layer is pre-norm:
  1. RMSNorm
  2. Self-Attention (standard or flash kernel, KV-cache aware)
  3. Residual
  4. RMSNorm
  5. FeedForward (dense SwiGLU or gated MoE)
  6. Residual

Layer implementations come from the factory; the layer only knows its own
index, which is also its slot in the cache.
"""

from typing import Optional

import torch
import torch.nn as nn

from deepseek_ocr.model.cache import DynamicCache
from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.factory import build_attention, build_feed_forward, build_norm
from deepseek_ocr.model.kernel import AttentionKernel


class DecoderLayer(nn.Module):
    """
    Single pre-norm decoder layer.

    Args:
        config: Model configuration.
        layer_idx: Position of this layer in the stack.
        kernel: Attention kernel resolved by the decoder.
    """

    def __init__(
        self,
        config: LanguageModelConfig,
        layer_idx: int,
        kernel: AttentionKernel,
    ) -> None:
        super().__init__()
        self.layer_idx = layer_idx
        self.attention_norm = build_norm(config, config.dim)
        self.attention = build_attention(config, kernel)
        self.ffn_norm = build_norm(config, config.dim)
        self.feed_forward = build_feed_forward(config, layer_idx)

    def forward(
        self,
        x: torch.Tensor,
        freqs_cis: torch.Tensor,
        bias: torch.Tensor,
        cache: Optional[DynamicCache] = None,
        use_cache: bool = False,
    ) -> tuple[torch.Tensor, Optional[torch.Tensor]]:
        """
        Args:
            x: Input tensor of shape (batch, seq_len, dim).
            freqs_cis: Per-token rotary frequencies.
            bias: Additive attention bias.
            cache: Session cache.
            use_cache: Append this layer's keys/values to the cache.

        Returns:
            (output of shape (batch, seq_len, dim), aux loss or None)
        """
        x = x + self.attention(
            self.attention_norm(x),
            freqs_cis,
            bias,
            self.layer_idx,
            cache=cache,
            use_cache=use_cache,
        )
        ffn_out, aux_loss = self.feed_forward(self.ffn_norm(x))
        return x + ffn_out, aux_loss
