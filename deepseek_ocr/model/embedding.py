# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Token embedding lookup.

Token ids arrive as whatever integer dtype the tokenizer or the caller
produced (int32 from a numpy buffer, uint8 in small tests, int64 from
torch). They are normalized to ``torch.long`` before the row lookup.
"""

import torch
import torch.nn as nn

from deepseek_ocr.model.exceptions import InputShapeError


def gather_embeddings(weight: torch.Tensor, ids: torch.Tensor) -> torch.Tensor:
    """
    Look up the embedding rows for a batch of token ids.

    Args:
        weight: Embedding table of shape (vocab_size, dim).
        ids: Integer tensor of shape (batch, seq_len).

    Returns:
        Tensor of shape (batch, seq_len, dim).

    Raises:
        InputShapeError: If ``ids`` is not rank 2 or holds an id outside
                         ``[0, vocab_size)``.
    """
    if ids.dim() != 2:
        raise InputShapeError(
            f"input_ids must have shape [batch, seq], got {tuple(ids.shape)}"
        )
    vocab_size = weight.shape[0]
    if ids.numel() > 0 and (int(ids.min()) < 0 or int(ids.max()) >= vocab_size):
        raise InputShapeError(
            f"token ids must lie in [0, {vocab_size}), "
            f"got range [{int(ids.min())}, {int(ids.max())}]"
        )
    ids = ids.to(device=weight.device, dtype=torch.long)
    batch, seq_len = ids.shape
    rows = weight.index_select(0, ids.reshape(-1))
    return rows.reshape(batch, seq_len, weight.shape[1])


class TokenEmbedding(nn.Module):
    """
    Embedding table holder.

    Args:
        vocab_size: Number of tokens in the vocabulary.
        dim: Embedding dimension (must match model hidden dimension).
    """

    def __init__(self, vocab_size: int, dim: int) -> None:
        super().__init__()
        self.weight = nn.Parameter(torch.empty(vocab_size, dim))

    def forward(self, ids: torch.Tensor) -> torch.Tensor:
        return gather_embeddings(self.weight, ids)
