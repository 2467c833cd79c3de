# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Decoder stack.

Runs the configured number of decoder layers over a batch of embeddings.
Responsibilities:
  - check that embeddings, mask, positions and cache agree on shape
  - gather rotary frequencies at the tokens' positions
  - build one additive attention bias (causal + padding) shared by every
    layer and by both attention kernels
  - pass the cache through so each layer appends its keys/values, then
    commit the new length once the whole stack has succeeded
  - sum the auxiliary losses of MoE layers

The attention kernel is resolved once, here, at construction time.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

import torch
import torch.nn as nn

from deepseek_ocr.logging.logger import get_logger
from deepseek_ocr.model.block import DecoderLayer
from deepseek_ocr.model.cache import DynamicCache, PromptCacheGuard
from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.exceptions import (
    CacheRequiredError,
    ComputationError,
    LanguageModelError,
    ShapeMismatchError,
)
from deepseek_ocr.model.kernel import AttentionKernel, resolve_attention_kernel
from deepseek_ocr.model.layers.rotary import gather_freqs_cis, precompute_freqs_cis
from deepseek_ocr.model.positions import resolve_position_ids

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class DecoderOutput:
    """Final hidden states and, for MoE stacks only, the summed aux loss."""

    hidden_states: torch.Tensor
    aux_loss: Optional[torch.Tensor]


def build_attention_bias(
    attention_mask: Optional[torch.Tensor],
    seq_len: int,
    past_len: int,
    dtype: torch.dtype,
    device: torch.device,
) -> torch.Tensor:
    """
    Additive attention bias for ``seq_len`` new tokens after ``past_len``
    cached ones.

    Query i (absolute index past_len + i) may attend key j iff j <= past_len + i
    and, when a padding mask is given, mask[b, j] is nonzero. Disallowed
    pairs get the most negative finite value of ``dtype`` rather than -inf so
    a fully padded row softmaxes to a uniform distribution instead of NaN.

    Args:
        attention_mask: Optional (batch, past_len + seq_len) tensor, 1 = attend.

    Returns:
        Tensor of shape (batch or 1, 1, seq_len, past_len + seq_len).
    """
    total = past_len + seq_len
    query_pos = torch.arange(past_len, total, device=device).unsqueeze(1)
    key_pos = torch.arange(total, device=device).unsqueeze(0)
    allowed = (key_pos <= query_pos)[None, None, :, :]
    if attention_mask is not None:
        allowed = allowed & attention_mask.to(device=device, dtype=torch.bool)[:, None, None, :]
    bias = torch.zeros(allowed.shape, dtype=dtype, device=device)
    return bias.masked_fill(~allowed, torch.finfo(dtype).min)


class TransformerDecoder(nn.Module):
    """
    Stack of decoder layers with a shared rotary table.

    Args:
        config: Model configuration.
        kernel: Attention kernel to use. Resolved from the config and the
                environment when omitted.
        environ: Environment consulted for the kernel override.
    """

    def __init__(
        self,
        config: LanguageModelConfig,
        kernel: Optional[AttentionKernel] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__()
        self.config = config
        self.kernel = (
            kernel
            if kernel is not None
            else resolve_attention_kernel(config.attn_implementation, environ)
        )
        self.layers = nn.ModuleList(
            [DecoderLayer(config, idx, self.kernel) for idx in range(config.n_layers)]
        )
        freqs_cis = precompute_freqs_cis(
            dim=config.head_dim,
            max_seq_len=config.max_position_embeddings,
            theta=config.rope_theta,
        )
        self.register_buffer("freqs_cis", freqs_cis, persistent=False)

    @property
    def n_layers(self) -> int:
        return len(self.layers)

    @property
    def flash_attention_enabled(self) -> bool:
        return self.kernel is AttentionKernel.FLASH

    @property
    def has_aux_loss(self) -> bool:
        return self.config.has_moe

    def prompt_guard(self, cache: DynamicCache) -> PromptCacheGuard:
        """Guard for the prompt call of a session on ``cache``."""
        return PromptCacheGuard(cache, self)

    def _check_shapes(
        self,
        embeds: torch.Tensor,
        attention_mask: Optional[torch.Tensor],
        position_ids: torch.Tensor,
        past_len: int,
    ) -> None:
        if embeds.dim() != 3 or embeds.shape[-1] != self.config.dim:
            raise ShapeMismatchError(
                f"embeddings must be [batch, seq, {self.config.dim}], got {tuple(embeds.shape)}"
            )
        batch, seq_len, _ = embeds.shape
        if tuple(position_ids.shape) != (batch, seq_len):
            raise ShapeMismatchError(
                f"position_ids must be {(batch, seq_len)}, got {tuple(position_ids.shape)}"
            )
        if position_ids.numel() > 0 and (
            int(position_ids.min()) < 0
            or int(position_ids.max()) >= self.config.max_position_embeddings
        ):
            raise ShapeMismatchError(
                f"position ids must lie in [0, {self.config.max_position_embeddings})"
            )
        if attention_mask is not None and tuple(attention_mask.shape) != (
            batch,
            past_len + seq_len,
        ):
            raise ShapeMismatchError(
                f"attention_mask must be {(batch, past_len + seq_len)} "
                f"(cached + new tokens), got {tuple(attention_mask.shape)}"
            )

    def forward(
        self,
        embeds: torch.Tensor,
        attention_mask: Optional[torch.Tensor] = None,
        position_ids: Optional[torch.Tensor] = None,
        cache: Optional[DynamicCache] = None,
        use_cache: bool = False,
    ) -> DecoderOutput:
        """
        Run every decoder layer.

        Args:
            embeds: Input embeddings of shape (batch, seq_len, dim).
            attention_mask: Optional padding mask over cached + new tokens.
            position_ids: Positions of the new tokens; synthesized from the
                          cache length when omitted.
            cache: Session cache. Read whenever given; extended in place
                   when ``use_cache`` is set.
            use_cache: Append this call's keys/values to ``cache``.

        Returns:
            DecoderOutput with hidden states of shape (batch, seq_len, dim).

        Raises:
            ShapeMismatchError: Inputs disagree on shape.
            ComputationError: Any other failure inside the stack.
        """
        if use_cache and cache is None:
            raise CacheRequiredError("use_cache=True requires a DynamicCache")

        past_len = cache.seq_len if cache is not None else 0
        position_ids = resolve_position_ids(position_ids, embeds, past_len)
        self._check_shapes(embeds, attention_mask, position_ids, past_len)
        seq_len = embeds.shape[1]

        if cache is not None:
            logger.debug(
                "decoder_step",
                extra={
                    "phase": "prompt" if cache.in_prompt_phase else "decode",
                    "past_len": past_len,
                    "new_tokens": seq_len,
                    "use_cache": use_cache,
                },
            )

        try:
            freqs_cis = gather_freqs_cis(self.freqs_cis, position_ids.to(embeds.device))
            dtype = embeds.dtype if embeds.is_floating_point() else torch.float32
            bias = build_attention_bias(attention_mask, seq_len, past_len, dtype, embeds.device)

            hidden = embeds
            aux_losses: list[torch.Tensor] = []
            for layer in self.layers:
                hidden, layer_aux = layer(
                    hidden, freqs_cis, bias, cache=cache, use_cache=use_cache
                )
                if layer_aux is not None:
                    aux_losses.append(layer_aux)

            if cache is not None and use_cache:
                cache.advance(seq_len)
        except LanguageModelError:
            raise
        except (RuntimeError, IndexError) as err:
            raise ComputationError(f"decoder stack failed: {err}") from err

        aux_loss = torch.stack(aux_losses).sum() if self.has_aux_loss else None
        return DecoderOutput(hidden_states=hidden, aux_loss=aux_loss)
