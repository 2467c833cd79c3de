# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared multi-head attention plumbing.

Both kernels project the input to Q, K, V, rotate Q and K with RoPE at the
tokens' positions, merge in the cached keys/values of their layer, and
project the result back. Only the score/softmax/weighted-sum step differs,
so that is the single method the kernels implement.
"""

from typing import Optional

import torch
import torch.nn as nn

from deepseek_ocr.model.cache import DynamicCache
from deepseek_ocr.model.exceptions import ShapeMismatchError
from deepseek_ocr.model.interfaces import AttentionBase
from deepseek_ocr.model.layers.rotary import apply_rotary_emb


class RotaryAttention(AttentionBase):
    """
    Multi-head self-attention with RoPE and KV-cache support.

    Args:
        dim: Model hidden dimension.
        n_heads: Number of attention heads.
        head_dim: Dimension per head.
    """

    def __init__(self, dim: int, n_heads: int, head_dim: int) -> None:
        super().__init__()
        self.n_heads = n_heads
        self.head_dim = head_dim
        self.dim = dim
        self.scale = head_dim**-0.5

        self.wq = nn.Linear(dim, n_heads * head_dim, bias=False)
        self.wk = nn.Linear(dim, n_heads * head_dim, bias=False)
        self.wv = nn.Linear(dim, n_heads * head_dim, bias=False)
        self.wo = nn.Linear(n_heads * head_dim, dim, bias=False)

    def _attend(
        self,
        q: torch.Tensor,
        k: torch.Tensor,
        v: torch.Tensor,
        bias: torch.Tensor,
    ) -> torch.Tensor:
        """
        Weighted sum of values.

        Args:
            q: (batch, heads, new_tokens, head_dim)
            k, v: (batch, heads, past + new_tokens, head_dim)
            bias: additive mask broadcastable to (batch, heads, new_tokens, past + new_tokens)
        """
        raise NotImplementedError

    def forward(
        self,
        x: torch.Tensor,
        freqs_cis: torch.Tensor,
        bias: torch.Tensor,
        layer_idx: int,
        cache: Optional[DynamicCache] = None,
        use_cache: bool = False,
    ) -> torch.Tensor:
        """
        Compute self-attention for the new tokens in ``x``.

        Args:
            x: Input tensor of shape (batch, seq_len, dim).
            freqs_cis: Per-token rotary frequencies (batch, seq_len, head_dim // 2).
            bias: Additive attention bias over past + new positions.
            layer_idx: Index of this layer in the decoder (cache slot).
            cache: Session cache, read and optionally extended.
            use_cache: Append this call's keys/values to ``cache``.

        Returns:
            Output tensor of shape (batch, seq_len, dim).
        """
        batch_size, seq_len, _ = x.shape

        xq = self.wq(x).view(batch_size, seq_len, self.n_heads, self.head_dim)
        xk = self.wk(x).view(batch_size, seq_len, self.n_heads, self.head_dim)
        xv = self.wv(x).view(batch_size, seq_len, self.n_heads, self.head_dim)

        xq, xk = apply_rotary_emb(xq, xk, freqs_cis)

        # (batch, n_heads, seq_len, head_dim)
        q = xq.transpose(1, 2)
        k = xk.transpose(1, 2)
        v = xv.transpose(1, 2)

        if cache is not None:
            if use_cache:
                k, v = cache.update(layer_idx, k, v)
            else:
                past = cache.layer(layer_idx)
                if past is not None:
                    k = torch.cat([past[0].to(k.dtype), k], dim=2)
                    v = torch.cat([past[1].to(v.dtype), v], dim=2)

        if bias.shape[-1] != k.shape[2] or bias.shape[-2] != seq_len:
            raise ShapeMismatchError(
                f"attention bias covers {tuple(bias.shape[-2:])} but layer {layer_idx} "
                f"attends {seq_len} queries over {k.shape[2]} keys"
            )

        output = self._attend(q, k, v, bias)

        output = output.transpose(1, 2).contiguous().view(batch_size, seq_len, -1)
        return self.wo(output)
