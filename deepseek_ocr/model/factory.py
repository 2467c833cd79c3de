# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Model factory.

Layer builder functions resolve layer classes through the registry, preset
functions return ready-made configurations, and ``build_model`` constructs a
language model with random (seeded) weights.

Presets:
  - deepseek_ocr: the DeepSeek-OCR text decoder (dense first layer, MoE after)
  - tiny:         2-layer dense stack for CPU tests and smoke runs
  - tiny_moe:     same size with MoE layers after the first
"""

import logging
from typing import TYPE_CHECKING, Callable, Optional

import torch.nn as nn

from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.kernel import AttentionKernel
from deepseek_ocr.model.registry import get_attention, get_feed_forward, get_norm

if TYPE_CHECKING:
    from deepseek_ocr.model.transformer import DeepseekLanguageModel

logger = logging.getLogger(__name__)


# ── Layer Builder Functions ─────────────────────────────────────────────────


def build_attention(config: LanguageModelConfig, kernel: AttentionKernel) -> nn.Module:
    """Build the attention layer for the already-resolved kernel."""
    attn_cls = get_attention(kernel.value)
    return attn_cls(
        dim=config.dim,
        n_heads=config.n_heads,
        head_dim=config.head_dim,
    )


def build_feed_forward(config: LanguageModelConfig, layer_idx: int) -> nn.Module:
    """
    Build the feed-forward layer of decoder layer ``layer_idx``.

    Layers from ``first_k_dense_replace`` on are MoE when the config has
    routed experts; all others are dense SwiGLU.
    """
    if config.is_moe_layer(layer_idx):
        moe_cls = get_feed_forward("moe")
        return moe_cls(
            dim=config.dim,
            intermediate_dim=config.moe_intermediate_dim,
            n_routed_experts=config.n_routed_experts,
            num_experts_per_tok=config.num_experts_per_tok,
            n_shared_experts=config.n_shared_experts,
            norm_topk_prob=config.norm_topk_prob,
            aux_loss_alpha=config.aux_loss_alpha,
        )
    mlp_cls = get_feed_forward(config.mlp_type)
    return mlp_cls(dim=config.dim, intermediate_dim=config.intermediate_dim)


def build_norm(config: LanguageModelConfig, dim: int) -> nn.Module:
    norm_cls = get_norm("rmsnorm")
    return norm_cls(dim=dim, eps=config.norm_eps)


# ── Preset Configurations ──────────────────────────────────────────────────


def deepseek_ocr_config(seed: int = 42) -> LanguageModelConfig:
    """
    The DeepSeek-OCR text decoder (~3B total, ~570M active parameters).

    Returns:
        LanguageModelConfig matching the published checkpoint.
    """
    return LanguageModelConfig(
        vocab_size=129280,
        dim=1280,
        n_layers=12,
        n_heads=10,
        head_dim=128,
        intermediate_dim=6848,
        norm_eps=1e-6,
        rope_theta=10000.0,
        max_position_embeddings=8192,
        n_routed_experts=64,
        n_shared_experts=2,
        num_experts_per_tok=6,
        moe_intermediate_dim=896,
        first_k_dense_replace=1,
        seed=seed,
    )


def tiny_config(vocab_size: int = 256, seed: int = 42) -> LanguageModelConfig:
    """2-layer dense model that runs in milliseconds on CPU."""
    return LanguageModelConfig(
        vocab_size=vocab_size,
        dim=64,
        n_layers=2,
        n_heads=4,
        head_dim=16,
        intermediate_dim=128,
        max_position_embeddings=256,
        seed=seed,
    )


def tiny_moe_config(vocab_size: int = 256, seed: int = 42) -> LanguageModelConfig:
    """Tiny model with MoE feed-forward layers after the first."""
    return LanguageModelConfig(
        vocab_size=vocab_size,
        dim=64,
        n_layers=3,
        n_heads=4,
        head_dim=16,
        intermediate_dim=128,
        max_position_embeddings=256,
        n_routed_experts=4,
        n_shared_experts=1,
        num_experts_per_tok=2,
        moe_intermediate_dim=32,
        first_k_dense_replace=1,
        seed=seed,
    )


PRESETS: dict[str, Callable[..., LanguageModelConfig]] = {
    "deepseek_ocr": deepseek_ocr_config,
    "tiny": tiny_config,
    "tiny_moe": tiny_moe_config,
}


def build_model(
    config: LanguageModelConfig,
    kernel: Optional[AttentionKernel] = None,
) -> "DeepseekLanguageModel":
    """
    Build a language model with seeded random weights.

    Args:
        config: Fully populated LanguageModelConfig.
        kernel: Force an attention kernel instead of resolving it from the
                config and environment.

    Returns:
        DeepseekLanguageModel in eval mode.
    """
    # Deferred import: transformer → decoder → block → factory
    from deepseek_ocr.model.transformer import DeepseekLanguageModel

    logger.info(
        "building_model",
        extra={
            "dim": config.dim,
            "n_layers": config.n_layers,
            "n_heads": config.n_heads,
            "head_dim": config.head_dim,
            "vocab_size": config.vocab_size,
            "n_routed_experts": config.n_routed_experts,
            "attn_implementation": config.attn_implementation,
        },
    )
    model = DeepseekLanguageModel(config, kernel=kernel)
    logger.info("model_built", extra={"total_parameters": model.count_parameters()})
    return model


def build_model_from_preset(preset: str, seed: int = 42) -> "DeepseekLanguageModel":
    """
    Build a language model from a named preset.

    Raises:
        ValueError: If preset name is not recognized.
    """
    config_fn = PRESETS.get(preset)
    if config_fn is None:
        raise ValueError(f"Unknown preset '{preset}'. Available: {list(PRESETS.keys())}")
    return build_model(config_fn(seed=seed))
