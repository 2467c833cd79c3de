# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for the pydantic config schemas."""

import pytest
from pydantic import ValidationError

from deepseek_ocr.config.schema import (
    DeepseekOCRConfig,
    GlobalConfig,
    InferenceConfig,
    LanguageModelSchema,
)


class TestGlobalConfig:
    def test_seed_must_be_non_negative(self) -> None:
        with pytest.raises(ValidationError):
            GlobalConfig(config_version="1.0.0", seed=-1)

    def test_default_log_level_is_info(self) -> None:
        assert GlobalConfig(config_version="1.0.0").log_level == "INFO"

    def test_default_project_name(self) -> None:
        assert GlobalConfig(config_version="1.0.0").project_name == "deepseek-ocr"

    def test_config_version_is_required(self) -> None:
        with pytest.raises(ValidationError):
            GlobalConfig()  # type: ignore[call-arg]


class TestLanguageModelSchema:
    def test_defaults_describe_deepseek_ocr(self) -> None:
        schema = LanguageModelSchema(config_version="1.0.0")
        assert schema.vocab_size == 129280
        assert schema.hidden_size == 1280
        assert schema.n_layers == 12
        assert schema.n_routed_experts == 64
        assert schema.num_experts_per_tok == 6
        assert schema.attn_implementation is None

    def test_odd_head_dim_rejected(self) -> None:
        with pytest.raises(ValidationError, match="head_dim"):
            LanguageModelSchema(config_version="1.0.0", head_dim=15)

    def test_too_many_experts_per_token(self) -> None:
        with pytest.raises(ValidationError):
            LanguageModelSchema(config_version="1.0.0", n_routed_experts=4, num_experts_per_tok=5)

    def test_dense_stack_ignores_routing_width(self) -> None:
        schema = LanguageModelSchema(config_version="1.0.0", n_routed_experts=0, num_experts_per_tok=6)
        assert schema.n_routed_experts == 0

    def test_non_positive_eps_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LanguageModelSchema(config_version="1.0.0", rms_norm_eps=0.0)


class TestInferenceConfig:
    def test_defaults(self) -> None:
        config = InferenceConfig(config_version="1.0.0")
        assert config.device == "cpu"
        assert config.precision is None
        assert config.use_cache is True
        assert config.gpu_memory_utilization is None
        assert config.max_num_seqs is None

    @pytest.mark.parametrize("value", [-0.1, 1.01])
    def test_memory_utilization_range(self, value: float) -> None:
        with pytest.raises(ValidationError):
            InferenceConfig(config_version="1.0.0", gpu_memory_utilization=value)

    def test_memory_utilization_bounds_inclusive(self) -> None:
        assert InferenceConfig(config_version="1.0.0", gpu_memory_utilization=1.0)
        assert InferenceConfig(config_version="1.0.0", gpu_memory_utilization=0.0)

    def test_max_num_seqs_positive(self) -> None:
        with pytest.raises(ValidationError):
            InferenceConfig(config_version="1.0.0", max_num_seqs=0)


class TestDeepseekOCRConfig:
    def test_requires_global_section(self) -> None:
        with pytest.raises(ValidationError):
            DeepseekOCRConfig.model_validate({})

    def test_rejects_top_level_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            DeepseekOCRConfig.model_validate(
                {"global": {"config_version": "1.0.0"}, "tokenizer": {}}
            )

    def test_populate_by_name(self) -> None:
        config = DeepseekOCRConfig(global_config=GlobalConfig(config_version="1.0.0"))
        assert config.global_config.seed == 42
