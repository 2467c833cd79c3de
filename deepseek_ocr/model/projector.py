# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Output projection: final RMSNorm followed by the vocabulary projection.

The LM head is stored untied from the token embedding, as in the released
checkpoint, with shape (vocab_size, dim).
"""

import torch
import torch.nn as nn

from deepseek_ocr.model.exceptions import ShapeMismatchError
from deepseek_ocr.model.layers.norm.rmsnorm import rms_norm


class OutputProjector(nn.Module):
    """
    Normalize final hidden states and project them to vocabulary logits.

    Args:
        dim: Model hidden dimension.
        vocab_size: Number of output logits per token.
        eps: RMSNorm epsilon.
    """

    def __init__(self, dim: int, vocab_size: int, eps: float = 1e-6) -> None:
        super().__init__()
        self.eps = eps
        self.norm_weight = nn.Parameter(torch.ones(dim))
        self.lm_head = nn.Parameter(torch.empty(vocab_size, dim))

    @property
    def vocab_size(self) -> int:
        return self.lm_head.shape[0]

    def forward(self, hidden_states: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """
        Args:
            hidden_states: Decoder output of shape (batch, seq_len, dim).

        Returns:
            (normalized hidden states, logits of shape (batch, seq_len, vocab_size))
        """
        if hidden_states.dim() != 3 or hidden_states.shape[-1] != self.lm_head.shape[1]:
            raise ShapeMismatchError(
                f"hidden states must be [batch, seq, {self.lm_head.shape[1]}], "
                f"got {tuple(hidden_states.shape)}"
            )
        batch, seq_len, dim = hidden_states.shape
        normed = rms_norm(hidden_states, self.norm_weight, self.eps)
        flat = normed.reshape(batch * seq_len, dim)
        logits = flat.matmul(self.lm_head.to(flat.dtype).t())
        return normed, logits.reshape(batch, seq_len, self.vocab_size)
