# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Position index synthesis.

When the caller passes no position ids, the positions of the new tokens
continue from whatever the cache already holds: a prompt of 5 tokens on an
empty cache gets 0..4, and the next single-token decode step gets 5. The
rotary embedding therefore stays continuous across prompt and decode calls
without the caller tracking offsets.
"""

from typing import Optional

import torch


def synthesize_position_ids(
    batch: int,
    seq_len: int,
    past_len: int = 0,
    device: Optional[torch.device] = None,
) -> torch.Tensor:
    """
    Contiguous positions ``[past_len, past_len + seq_len)`` for every row.

    Returns:
        Long tensor of shape (batch, seq_len).
    """
    positions = torch.arange(past_len, past_len + seq_len, dtype=torch.long, device=device)
    return positions.unsqueeze(0).expand(batch, seq_len).contiguous()


def resolve_position_ids(
    position_ids: Optional[torch.Tensor],
    embeds: torch.Tensor,
    past_len: int,
) -> torch.Tensor:
    """
    Caller positions verbatim, or synthesized ones matching ``embeds``.

    Args:
        position_ids: Explicit positions, or None.
        embeds: Embeddings of shape (batch, seq_len, dim).
        past_len: Tokens already in the cache (0 without a cache).
    """
    if position_ids is not None:
        return position_ids
    batch, seq_len = embeds.shape[0], embeds.shape[1]
    return synthesize_position_ids(batch, seq_len, past_len, device=embeds.device)
