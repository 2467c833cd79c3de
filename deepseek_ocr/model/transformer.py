# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
DeepSeek-OCR language model.

The topology is:
  Token ids → Embedding → N × Decoder layers → Final RMSNorm → LM head → Logits

Callers that already hold embeddings (the OCR pipeline splices image
features into the text embeddings) pass ``inputs_embeds`` instead of ids.
Exactly one of the two must be given.

Incremental decoding: create a cache with ``new_cache()``, run the prompt
under ``prompt_guard(cache)`` with ``use_cache=True``, then feed one token at
a time with the same cache. Positions continue from the cache length
automatically.

The model is inference-only. Parameters never require grad and every
forward runs under ``torch.no_grad()``. One instance is not safe for
concurrent forward calls; see ``deepseek_ocr.runtime.shared``.
"""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Optional, Union

import torch
import torch.nn as nn

from deepseek_ocr.logging.logger import get_logger
from deepseek_ocr.model.cache import DynamicCache, PromptCacheGuard
from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.decoder import TransformerDecoder
from deepseek_ocr.model.embedding import TokenEmbedding, gather_embeddings
from deepseek_ocr.model.exceptions import (
    AmbiguousInputError,
    CacheRequiredError,
    InputShapeError,
    WeightLoadError,
)
from deepseek_ocr.model.kernel import AttentionKernel
from deepseek_ocr.model.outputs import LanguageModelOutput
from deepseek_ocr.model.positions import resolve_position_ids
from deepseek_ocr.model.projector import OutputProjector
from deepseek_ocr.model.weights import LanguageModelWeights, init_weights, load_weights

logger: logging.Logger = get_logger(__name__)


def cast_precision(model: nn.Module, dtype: torch.dtype) -> nn.Module:
    """
    Cast floating-point parameters to ``dtype``.

    Uses ``half()`` / ``bfloat16()`` / ``float()`` rather than ``to(dtype)``
    so the complex rotary table is left untouched.
    """
    if dtype == torch.float16:
        return model.half()
    if dtype == torch.bfloat16:
        return model.bfloat16()
    if dtype == torch.float32:
        return model.float()
    raise ValueError(f"Unsupported model dtype {dtype}")


class DeepseekLanguageModel(nn.Module):
    """
    Decoder-only language model of DeepSeek-OCR.

    Args:
        config: Architecture parameters.
        weights: Pretrained weights. When omitted the parameters are drawn
                 deterministically from ``config.seed``.
        kernel: Force an attention kernel. When omitted it is resolved once
                from ``config.attn_implementation`` and the
                DEEPSEEK_OCR_FLASH_ATTENTION environment variable.
        environ: Environment used for kernel resolution (defaults to
                 ``os.environ``).
    """

    def __init__(
        self,
        config: LanguageModelConfig,
        weights: Optional[LanguageModelWeights] = None,
        kernel: Optional[AttentionKernel] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__()
        self._config = config
        self.embedding = TokenEmbedding(config.vocab_size, config.dim)
        self.decoder = TransformerDecoder(config, kernel=kernel, environ=environ)
        self.projector = OutputProjector(config.dim, config.vocab_size, eps=config.norm_eps)

        if weights is None:
            init_weights(self, seed=config.seed, init_std=config.init_std)
        else:
            self._load_weights(weights)

        self.requires_grad_(False)
        self.eval()

    def _load_weights(self, weights: LanguageModelWeights) -> None:
        try:
            self.load_state_dict(weights.to_state_dict(), strict=True)
        except RuntimeError as err:
            raise WeightLoadError(f"weights do not fit the model: {err}") from err

    @classmethod
    def from_weights(
        cls,
        config: LanguageModelConfig,
        weights: LanguageModelWeights,
        kernel: Optional[AttentionKernel] = None,
    ) -> "DeepseekLanguageModel":
        return cls(config, weights=weights, kernel=kernel)

    @classmethod
    def load(
        cls,
        config: LanguageModelConfig,
        path: Union[str, Path],
        device: Optional[torch.device] = None,
        dtype: Optional[torch.dtype] = None,
        kernel: Optional[AttentionKernel] = None,
    ) -> "DeepseekLanguageModel":
        """
        Load weights from ``path`` and build a ready-to-run model.

        Weights are read and validated on the CPU, cast to ``dtype``, then
        moved to ``device``.

        Raises:
            WeightLoadError: Missing, corrupt or misshapen weights.
        """
        state_dict = load_weights(path)
        weights = LanguageModelWeights.from_state_dict(config, state_dict)
        model = cls(config, weights=weights, kernel=kernel)
        if dtype is not None:
            cast_precision(model, dtype)
        if device is not None:
            model.to(device)
        logger.info(
            "language_model_loaded",
            extra={
                "path": str(path),
                "device": str(device) if device is not None else "cpu",
                "dtype": str(dtype) if dtype is not None else "torch.float32",
                "kernel": model.kernel.value,
                "total_parameters": model.count_parameters(),
            },
        )
        return model

    @property
    def config(self) -> LanguageModelConfig:
        return self._config

    @property
    def kernel(self) -> AttentionKernel:
        return self.decoder.kernel

    @property
    def flash_attention_enabled(self) -> bool:
        return self.decoder.flash_attention_enabled

    @property
    def has_aux_loss(self) -> bool:
        """Whether every output carries an aux loss (fixed by the architecture)."""
        return self.decoder.has_aux_loss

    @property
    def transformer_weights(self) -> LanguageModelWeights:
        """Read-only view of the current parameters."""
        return LanguageModelWeights.from_module(self._config, self)

    @property
    def device(self) -> torch.device:
        return self.embedding.weight.device

    @property
    def dtype(self) -> torch.dtype:
        return self.embedding.weight.dtype

    def count_parameters(self) -> int:
        """Total number of parameters (the model is frozen, so all of them)."""
        return sum(p.numel() for p in self.parameters())

    def new_cache(self) -> DynamicCache:
        """Empty cache sized for this model, for one generation session."""
        return DynamicCache(n_layers=self._config.n_layers)

    def prompt_guard(self, cache: DynamicCache) -> PromptCacheGuard:
        return self.decoder.prompt_guard(cache)

    def embed_tokens(self, input_ids: torch.Tensor) -> torch.Tensor:
        """
        Embed a (batch, seq_len) tensor of token ids of any integer dtype.

        Raises:
            InputShapeError: If ``input_ids`` is not rank 2.
        """
        return gather_embeddings(self.embedding.weight, input_ids)

    @torch.no_grad()
    def forward(
        self,
        *,
        input_ids: Optional[torch.Tensor] = None,
        inputs_embeds: Optional[torch.Tensor] = None,
        attention_mask: Optional[torch.Tensor] = None,
        position_ids: Optional[torch.Tensor] = None,
        cache: Optional[DynamicCache] = None,
        use_cache: bool = False,
    ) -> LanguageModelOutput:
        """
        Run the model on new tokens.

        Args:
            input_ids: Token ids of shape (batch, seq_len).
            inputs_embeds: Precomputed embeddings of shape (batch, seq_len, dim).
            attention_mask: Optional (batch, cached + seq_len) padding mask,
                            1 = attend, 0 = ignore.
            position_ids: Optional (batch, seq_len) positions; continue from
                          the cache length when omitted.
            cache: Session cache. Read whenever given.
            use_cache: Append this call's keys/values to ``cache``.

        Returns:
            LanguageModelOutput with logits of shape (batch, seq_len, vocab_size).

        Raises:
            AmbiguousInputError: Both or neither of input_ids / inputs_embeds.
            CacheRequiredError: use_cache=True without a cache.
            InputShapeError: Malformed input_ids / inputs_embeds rank,
                             out-of-vocabulary ids or an empty sequence.
            ComputationError: Failure inside the decoder or projector. The
                              cache should then be discarded.
        """
        if (input_ids is None) == (inputs_embeds is None):
            raise AmbiguousInputError("provide exactly one of input_ids or inputs_embeds")
        if use_cache and cache is None:
            raise CacheRequiredError(
                "use_cache=True requires a cache; create one with new_cache()"
            )

        if input_ids is not None:
            embeds = self.embed_tokens(input_ids)
        else:
            if inputs_embeds.dim() != 3:
                raise InputShapeError(
                    f"inputs_embeds must have shape [batch, seq, dim], "
                    f"got {tuple(inputs_embeds.shape)}"
                )
            embeds = inputs_embeds.to(device=self.device, dtype=self.dtype)
        if embeds.shape[1] == 0:
            raise InputShapeError("at least one new token is required, got seq_len 0")

        past_len = cache.seq_len if cache is not None else 0
        position_ids = resolve_position_ids(position_ids, embeds, past_len)

        decoded = self.decoder(
            embeds,
            attention_mask=attention_mask,
            position_ids=position_ids,
            cache=cache,
            use_cache=use_cache,
        )
        hidden_states, logits = self.projector(decoded.hidden_states)
        return LanguageModelOutput(
            hidden_states=hidden_states,
            logits=logits,
            aux_loss=decoded.aux_loss,
        )
