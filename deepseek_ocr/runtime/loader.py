# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Model loader for the inference runtime.

Bridges the YAML config to a running model:
  1. Translate the `model:` schema into a LanguageModelConfig
  2. Prepare the device and dtype from the `inference:` section
  3. Read and verify the weights, build the model, cast and move it

Any failure here is an initialization error. Nothing is cached in this
module; memoization lives in ``deepseek_ocr.runtime.shared``.
"""

import logging
from pathlib import Path
from typing import Optional

from deepseek_ocr.config.schema import DeepseekOCRConfig, LanguageModelSchema
from deepseek_ocr.logging.logger import get_logger
from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.exceptions import InitializationError
from deepseek_ocr.model.transformer import DeepseekLanguageModel
from deepseek_ocr.runtime.device import prepare_device_and_dtype_with_options

logger: logging.Logger = get_logger(__name__)


def build_model_config(schema: LanguageModelSchema, seed: int = 42) -> LanguageModelConfig:
    """
    Translate the config schema's field names into the model's.

    The schema follows the checkpoint's naming (``hidden_size``,
    ``intermediate_size``, ``rms_norm_eps``); the model uses ``dim``,
    ``intermediate_dim`` and ``norm_eps``.
    """
    return LanguageModelConfig(
        vocab_size=schema.vocab_size,
        dim=schema.hidden_size,
        n_layers=schema.n_layers,
        n_heads=schema.n_heads,
        head_dim=schema.head_dim,
        intermediate_dim=schema.intermediate_size,
        norm_eps=schema.rms_norm_eps,
        rope_theta=schema.rope_theta,
        max_position_embeddings=schema.max_position_embeddings,
        attn_implementation=schema.attn_implementation,
        n_routed_experts=schema.n_routed_experts,
        n_shared_experts=schema.n_shared_experts,
        num_experts_per_tok=schema.num_experts_per_tok,
        moe_intermediate_dim=schema.moe_intermediate_size,
        first_k_dense_replace=schema.first_k_dense_replace,
        norm_topk_prob=schema.norm_topk_prob,
        aux_loss_alpha=schema.aux_loss_alpha,
        init_std=schema.init_std,
        seed=seed,
    )


def resolve_weights_path(weights_path: str, base_dir: Optional[Path] = None) -> Path:
    """Relative weight paths are taken relative to ``base_dir`` when given."""
    path = Path(weights_path)
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return path


def load_language_model(
    config: DeepseekOCRConfig,
    base_dir: Optional[Path] = None,
) -> DeepseekLanguageModel:
    """
    Build the language model described by ``config`` with its weights.

    Args:
        config: Config with both `model:` and `inference:` sections.
        base_dir: Directory relative weight paths are resolved against.

    Raises:
        InitializationError: Missing config section, unavailable device or
                             unusable weights (the latter two as the
                             DeviceUnavailableError / WeightLoadError
                             subclasses).
    """
    if config.model is None or config.inference is None:
        raise InitializationError(
            "loading the language model needs both `model:` and `inference:` config sections"
        )

    inference = config.inference
    device, dtype = prepare_device_and_dtype_with_options(
        inference.device,
        inference.precision,
        gpu_memory_utilization=inference.gpu_memory_utilization,
        max_num_seqs=inference.max_num_seqs,
    )
    model_config = build_model_config(config.model, seed=inference.seed)
    weights_path = resolve_weights_path(inference.weights_path, base_dir)

    logger.info(
        "loading_language_model",
        extra={
            "weights_path": str(weights_path),
            "n_layers": model_config.n_layers,
            "vocab_size": model_config.vocab_size,
        },
    )
    return DeepseekLanguageModel.load(model_config, weights_path, device=device, dtype=dtype)
