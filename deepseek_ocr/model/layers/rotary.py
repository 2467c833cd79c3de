# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Rotary Positional Embedding (RoPE).

RoPE encodes position by rotating pairs of dimensions in the query/key
vectors. The frequency table is computed once for every position up to
``max_position_embeddings``; each forward call gathers the rows for the
position ids it was given, so a decode step at position 7 rotates exactly as
position 7 did when the whole prefix was processed in one call.
"""

import torch


def precompute_freqs_cis(
    dim: int,
    max_seq_len: int,
    theta: float = 10000.0,
    device: torch.device | None = None,
) -> torch.Tensor:
    """
    Precompute the complex exponential frequencies for RoPE.

    Args:
        dim: Head dimension (must be even; each pair of dims gets one rotation).
        max_seq_len: Number of positions to precompute.
        theta: Base frequency for the geometric series.
        device: Device to place the tensor on.

    Returns:
        Complex tensor of shape (max_seq_len, dim // 2).
    """
    freqs = 1.0 / (theta ** (torch.arange(0, dim, 2, device=device).float() / dim))
    positions = torch.arange(max_seq_len, device=device).float()
    freqs_outer = torch.outer(positions, freqs)
    return torch.polar(torch.ones_like(freqs_outer), freqs_outer)


def gather_freqs_cis(freqs_cis: torch.Tensor, position_ids: torch.Tensor) -> torch.Tensor:
    """
    Select the rotary frequencies for each token's position.

    Args:
        freqs_cis: Table of shape (max_positions, head_dim // 2).
        position_ids: Integer tensor of shape (batch, seq_len).

    Returns:
        Complex tensor of shape (batch, seq_len, head_dim // 2).
    """
    return freqs_cis[position_ids.long()]


def apply_rotary_emb(
    xq: torch.Tensor,
    xk: torch.Tensor,
    freqs_cis: torch.Tensor,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Apply rotary positional embeddings to query and key tensors.

    Args:
        xq: Query tensor of shape (batch, seq_len, n_heads, head_dim).
        xk: Key tensor of shape (batch, seq_len, n_heads, head_dim).
        freqs_cis: Per-token frequencies of shape (batch, seq_len, head_dim // 2).

    Returns:
        Tuple of (rotated_q, rotated_k) with same shapes as inputs.
    """
    xq_complex = torch.view_as_complex(xq.float().reshape(*xq.shape[:-1], -1, 2))
    xk_complex = torch.view_as_complex(xk.float().reshape(*xk.shape[:-1], -1, 2))

    # (batch, seq_len, 1, head_dim // 2) broadcasts over heads
    freqs_cis = freqs_cis.unsqueeze(2)

    xq_out = torch.view_as_real(xq_complex * freqs_cis).flatten(-2)
    xk_out = torch.view_as_real(xk_complex * freqs_cis).flatten(-2)

    return xq_out.type_as(xq), xk_out.type_as(xk)
