# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for the DeepSeek-OCR language core tests.

Fixtures here are available to every test file automatically. Models are
the tiny presets so the whole suite runs on CPU in seconds.
"""

import textwrap
from pathlib import Path

import pytest

from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.factory import build_model, tiny_config, tiny_moe_config
from deepseek_ocr.model.kernel import FLASH_ATTENTION_ENV
from deepseek_ocr.model.transformer import DeepseekLanguageModel
from deepseek_ocr.model.weights import save_weights


@pytest.fixture(autouse=True)
def _no_kernel_override(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a flash-attention override in the developer's shell out of the tests."""
    monkeypatch.delenv(FLASH_ATTENTION_ENV, raising=False)


@pytest.fixture()
def dense_config() -> LanguageModelConfig:
    return tiny_config()


@pytest.fixture()
def moe_config() -> LanguageModelConfig:
    return tiny_moe_config()


@pytest.fixture()
def dense_model(dense_config: LanguageModelConfig) -> DeepseekLanguageModel:
    return build_model(dense_config)


@pytest.fixture()
def moe_model(moe_config: LanguageModelConfig) -> DeepseekLanguageModel:
    return build_model(moe_config)


@pytest.fixture()
def weights_file(tmp_path: Path, dense_model: DeepseekLanguageModel) -> Path:
    """The dense model's weights as safetensors, with a checksum in metadata.json."""
    return save_weights(dense_model.transformer_weights, tmp_path / "weights" / "lm.safetensors")


def tiny_config_yaml(weights_path: Path, device: str = "cpu") -> str:
    """A full config matching the ``tiny`` preset."""
    return textwrap.dedent(f"""\
        global:
          config_version: "1.0.0"
          project_name: "deepseek-ocr-test"
          seed: 42
          log_level: "DEBUG"
        model:
          config_version: "1.0.0"
          vocab_size: 256
          hidden_size: 64
          n_layers: 2
          n_heads: 4
          head_dim: 16
          intermediate_size: 128
          max_position_embeddings: 256
          n_routed_experts: 0
          n_shared_experts: 0
          num_experts_per_tok: 1
          first_k_dense_replace: 0
        inference:
          config_version: "1.0.0"
          device: "{device}"
          weights_path: "{weights_path.as_posix()}"
          max_new_tokens: 8
          max_num_seqs: 4
          seed: 42
    """)


@pytest.fixture()
def make_config_yaml():
    """Factory fixture for full tiny-model configs pointing at a given weights file."""
    return tiny_config_yaml


@pytest.fixture()
def tiny_config_file(tmp_path: Path, weights_file: Path) -> Path:
    config_file = tmp_path / "tiny.yaml"
    config_file.write_text(tiny_config_yaml(weights_file), encoding="utf-8")
    return config_file


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """
    Create a minimal valid config YAML file in a temp directory.

    This is the smallest config that passes schema validation.
    Tests that need specific config values should write their own files.
    """
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "deepseek-ocr-test"
          seed: 42
          log_level: "DEBUG"
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """A config file that's valid YAML but fails schema validation (missing required field)."""
    config_content = textwrap.dedent("""\
        global:
          project_name: "deepseek-ocr-test"
          seed: 42
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file
