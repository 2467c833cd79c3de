# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the weight store and weight files.

We verify:
  - state dicts are checked tensor by tensor against the config
  - safetensors and torch files load, with checksum verification
  - every failure surfaces as WeightLoadError
"""

import json
from pathlib import Path

import pytest
import torch

from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.exceptions import InitializationError, WeightLoadError
from deepseek_ocr.model.transformer import DeepseekLanguageModel
from deepseek_ocr.model.weights import (
    DECODER_PREFIX,
    LM_HEAD_KEY,
    METADATA_FILENAME,
    LanguageModelWeights,
    expected_layer_shapes,
    load_weights,
    save_weights,
)
from deepseek_ocr.utils.hashing import compute_sha256


class TestFromStateDict:
    def test_expected_shapes_cover_model(self, moe_model: DeepseekLanguageModel) -> None:
        decoder_keys = {
            name[len(DECODER_PREFIX):]
            for name in moe_model.state_dict()
            if name.startswith(DECODER_PREFIX)
        }
        assert decoder_keys == set(expected_layer_shapes(moe_model.config))

    def test_missing_tensor(self, dense_model: DeepseekLanguageModel) -> None:
        state = dense_model.state_dict()
        del state[LM_HEAD_KEY]
        with pytest.raises(WeightLoadError, match="missing"):
            LanguageModelWeights.from_state_dict(dense_model.config, state)

    def test_missing_layer_tensor(self, dense_model: DeepseekLanguageModel) -> None:
        state = dense_model.state_dict()
        del state["decoder.layers.1.attention.wo.weight"]
        with pytest.raises(WeightLoadError, match="missing"):
            LanguageModelWeights.from_state_dict(dense_model.config, state)

    def test_wrong_shape(self, dense_model: DeepseekLanguageModel) -> None:
        state = dense_model.state_dict()
        state["decoder.layers.0.attention.wq.weight"] = torch.zeros(3, 3)
        with pytest.raises(WeightLoadError, match="shape"):
            LanguageModelWeights.from_state_dict(dense_model.config, state)

    def test_unexpected_tensor(self, dense_model: DeepseekLanguageModel) -> None:
        state = dense_model.state_dict()
        state["decoder.layers.7.attention.wq.weight"] = torch.zeros(1)
        with pytest.raises(WeightLoadError, match="unexpected"):
            LanguageModelWeights.from_state_dict(dense_model.config, state)

    def test_vocab_mismatch(self, dense_model: DeepseekLanguageModel) -> None:
        config = dense_model.config
        smaller = LanguageModelConfig(
            vocab_size=config.vocab_size - 1,
            dim=config.dim,
            n_layers=config.n_layers,
            n_heads=config.n_heads,
            head_dim=config.head_dim,
            intermediate_dim=config.intermediate_dim,
            max_position_embeddings=config.max_position_embeddings,
        )
        with pytest.raises(WeightLoadError):
            LanguageModelWeights.from_state_dict(smaller, dense_model.state_dict())

    def test_round_trip(self, dense_model: DeepseekLanguageModel) -> None:
        weights = dense_model.transformer_weights
        state = weights.to_state_dict()
        assert set(state) == set(dense_model.state_dict())
        assert weights.num_parameters() == dense_model.count_parameters()


class TestWeightFiles:
    def test_safetensors_load(self, weights_file: Path, dense_model: DeepseekLanguageModel) -> None:
        state = load_weights(weights_file)
        for name, tensor in dense_model.state_dict().items():
            assert torch.equal(state[name], tensor)

    def test_checksum_recorded(self, weights_file: Path) -> None:
        metadata = json.loads((weights_file.parent / METADATA_FILENAME).read_text())
        assert weights_file.name in metadata["checksums"]

    def test_checksum_mismatch(self, weights_file: Path) -> None:
        meta_path = weights_file.parent / METADATA_FILENAME
        meta_path.write_text(json.dumps({"checksums": {weights_file.name: "0" * 64}}))
        with pytest.raises(WeightLoadError, match="checksum"):
            load_weights(weights_file)

    def test_uppercase_checksum_accepted(self, weights_file: Path) -> None:
        meta_path = weights_file.parent / METADATA_FILENAME
        digest = compute_sha256(weights_file).upper()
        meta_path.write_text(json.dumps({"weights_sha256": digest}))
        assert load_weights(weights_file)

    def test_torch_file_load(self, tmp_path: Path, dense_model: DeepseekLanguageModel) -> None:
        path = tmp_path / "lm.pt"
        torch.save(dense_model.state_dict(), path)
        state = load_weights(path)
        assert set(state) == set(dense_model.state_dict())

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(WeightLoadError, match="not found"):
            load_weights(tmp_path / "absent.safetensors")

    def test_unsupported_format(self, tmp_path: Path) -> None:
        path = tmp_path / "lm.npz"
        path.write_bytes(b"\x00")
        with pytest.raises(WeightLoadError, match="unsupported"):
            load_weights(path)

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "lm.safetensors"
        path.write_bytes(b"definitely not safetensors")
        with pytest.raises(WeightLoadError):
            load_weights(path)

    def test_model_load(self, weights_file: Path, dense_model: DeepseekLanguageModel) -> None:
        loaded = DeepseekLanguageModel.load(dense_model.config, weights_file)
        ids = torch.tensor([[1, 2, 3, 4]])
        assert torch.equal(loaded(input_ids=ids).logits, dense_model(input_ids=ids).logits)

    def test_model_load_half_precision(
        self, weights_file: Path, dense_model: DeepseekLanguageModel
    ) -> None:
        loaded = DeepseekLanguageModel.load(dense_model.config, weights_file, dtype=torch.bfloat16)
        assert loaded.dtype == torch.bfloat16
        assert loaded.decoder.freqs_cis.is_complex()
        out = loaded(input_ids=torch.tensor([[1, 2, 3]]))
        assert out.logits.dtype == torch.bfloat16
        assert torch.isfinite(out.logits.float()).all()

    def test_load_errors_are_initialization_errors(self, tmp_path: Path) -> None:
        save_path = tmp_path / "empty.safetensors"
        assert issubclass(WeightLoadError, InitializationError)
        with pytest.raises(InitializationError):
            load_weights(save_path)
