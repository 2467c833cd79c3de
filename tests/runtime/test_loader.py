# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for building a model from config files."""

from pathlib import Path

import pytest
import torch

from deepseek_ocr.config.loader import apply_overrides, load_config
from deepseek_ocr.config.schema import LanguageModelSchema
from deepseek_ocr.model.exceptions import InitializationError, WeightLoadError
from deepseek_ocr.model.transformer import DeepseekLanguageModel
from deepseek_ocr.runtime.loader import (
    build_model_config,
    load_language_model,
    resolve_weights_path,
)


class TestBuildModelConfig:
    def test_field_translation(self) -> None:
        schema = LanguageModelSchema(
            config_version="1.0.0",
            hidden_size=64,
            intermediate_size=128,
            rms_norm_eps=1e-5,
            moe_intermediate_size=32,
            attn_implementation="flash_attention_2",
        )
        config = build_model_config(schema, seed=7)
        assert config.dim == 64
        assert config.intermediate_dim == 128
        assert config.norm_eps == 1e-5
        assert config.moe_intermediate_dim == 32
        assert config.attn_implementation == "flash_attention_2"
        assert config.seed == 7
        assert config.is_moe_layer(1)


class TestLoadLanguageModel:
    def test_loads_tiny_model(
        self, tiny_config_file: Path, dense_model: DeepseekLanguageModel
    ) -> None:
        model = load_language_model(load_config(tiny_config_file))
        ids = torch.tensor([[3, 1, 4, 1, 5]])
        assert torch.equal(model(input_ids=ids).logits, dense_model(input_ids=ids).logits)

    def test_precision_applied(self, tiny_config_file: Path) -> None:
        config = apply_overrides(load_config(tiny_config_file), precision="bf16")
        assert load_language_model(config).dtype == torch.bfloat16

    def test_requires_model_and_inference(self, tmp_config_file: Path) -> None:
        with pytest.raises(InitializationError, match="model"):
            load_language_model(load_config(tmp_config_file))

    def test_missing_weights(self, tiny_config_file: Path, tmp_path: Path) -> None:
        config = apply_overrides(
            load_config(tiny_config_file), weights_path=str(tmp_path / "missing.safetensors")
        )
        with pytest.raises(WeightLoadError):
            load_language_model(config)

    def test_relative_weights_path(self, tmp_path: Path) -> None:
        assert resolve_weights_path("w/lm.safetensors", tmp_path) == tmp_path / "w/lm.safetensors"
        assert resolve_weights_path("w/lm.safetensors") == Path("w/lm.safetensors")
