# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for the decoder stack: attention bias, shape checks, aux loss."""

import pytest
import torch

from deepseek_ocr.model.cache import DynamicCache
from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.decoder import TransformerDecoder, build_attention_bias
from deepseek_ocr.model.exceptions import CacheRequiredError, ShapeMismatchError
from deepseek_ocr.model.kernel import AttentionKernel
from deepseek_ocr.model.weights import init_weights

NEG = torch.finfo(torch.float32).min


def _decoder(config: LanguageModelConfig, kernel: AttentionKernel = AttentionKernel.STANDARD):
    decoder = TransformerDecoder(config, kernel=kernel)
    init_weights(decoder, seed=0)
    decoder.eval()
    return decoder


class TestAttentionBias:
    def test_causal_without_cache(self) -> None:
        bias = build_attention_bias(None, 3, 0, torch.float32, torch.device("cpu"))
        assert bias.shape == (1, 1, 3, 3)
        allowed = bias[0, 0] == 0
        assert allowed.tolist() == [
            [True, False, False],
            [True, True, False],
            [True, True, True],
        ]

    def test_offset_by_past_length(self) -> None:
        bias = build_attention_bias(None, 2, 3, torch.float32, torch.device("cpu"))
        assert bias.shape == (1, 1, 2, 5)
        allowed = bias[0, 0] == 0
        assert allowed.tolist() == [
            [True, True, True, True, False],
            [True, True, True, True, True],
        ]

    def test_padding_mask_blocks_keys(self) -> None:
        mask = torch.tensor([[0, 1, 1], [1, 1, 1]])
        bias = build_attention_bias(mask, 3, 0, torch.float32, torch.device("cpu"))
        assert bias.shape == (2, 1, 3, 3)
        assert bias[0, 0, 2, 0] == NEG
        assert bias[0, 0, 2, 1] == 0
        assert bias[1, 0, 2, 0] == 0

    def test_masked_value_is_finite(self) -> None:
        bias = build_attention_bias(None, 4, 0, torch.float16, torch.device("cpu"))
        assert bias.dtype == torch.float16
        assert torch.isfinite(bias).all()


class TestDecoderShapes:
    def test_output_shape(self, dense_config: LanguageModelConfig) -> None:
        decoder = _decoder(dense_config)
        with torch.no_grad():
            out = decoder(torch.randn(2, 5, dense_config.dim))
        assert out.hidden_states.shape == (2, 5, dense_config.dim)
        assert out.aux_loss is None

    def test_wrong_hidden_size(self, dense_config: LanguageModelConfig) -> None:
        decoder = _decoder(dense_config)
        with pytest.raises(ShapeMismatchError):
            decoder(torch.randn(1, 3, dense_config.dim + 1))

    def test_position_shape_mismatch(self, dense_config: LanguageModelConfig) -> None:
        decoder = _decoder(dense_config)
        with pytest.raises(ShapeMismatchError):
            decoder(torch.randn(1, 3, dense_config.dim), position_ids=torch.tensor([[0, 1]]))

    def test_position_beyond_table(self, dense_config: LanguageModelConfig) -> None:
        decoder = _decoder(dense_config)
        positions = torch.tensor([[0, 1, dense_config.max_position_embeddings]])
        with pytest.raises(ShapeMismatchError):
            decoder(torch.randn(1, 3, dense_config.dim), position_ids=positions)

    def test_mask_must_cover_cached_tokens(self, dense_config: LanguageModelConfig) -> None:
        decoder = _decoder(dense_config)
        cache = DynamicCache(n_layers=dense_config.n_layers)
        with torch.no_grad():
            decoder(torch.randn(1, 4, dense_config.dim), cache=cache, use_cache=True)
            with pytest.raises(ShapeMismatchError):
                decoder(
                    torch.randn(1, 1, dense_config.dim),
                    attention_mask=torch.ones(1, 1),
                    cache=cache,
                    use_cache=True,
                )
        assert cache.seq_len == 4

    def test_use_cache_requires_cache(self, dense_config: LanguageModelConfig) -> None:
        decoder = _decoder(dense_config)
        with pytest.raises(CacheRequiredError):
            decoder(torch.randn(1, 2, dense_config.dim), use_cache=True)


class TestDecoderKernelsAndAux:
    def test_flash_matches_standard(self, dense_config: LanguageModelConfig) -> None:
        standard = _decoder(dense_config, AttentionKernel.STANDARD)
        flash = _decoder(dense_config, AttentionKernel.FLASH)
        assert flash.flash_attention_enabled
        assert not standard.flash_attention_enabled
        x = torch.randn(2, 6, dense_config.dim)
        with torch.no_grad():
            a = standard(x).hidden_states
            b = flash(x).hidden_states
        assert torch.allclose(a, b, atol=1e-4)

    def test_moe_stack_reports_aux_loss(self, moe_config: LanguageModelConfig) -> None:
        decoder = _decoder(moe_config)
        assert decoder.has_aux_loss
        with torch.no_grad():
            out = decoder(torch.randn(1, 4, moe_config.dim))
        assert out.aux_loss is not None
        assert out.aux_loss.dim() == 0

    def test_kernel_resolved_from_config(self, dense_config: LanguageModelConfig) -> None:
        config = LanguageModelConfig(
            vocab_size=dense_config.vocab_size,
            dim=dense_config.dim,
            n_layers=1,
            n_heads=dense_config.n_heads,
            head_dim=dense_config.head_dim,
            intermediate_dim=dense_config.intermediate_dim,
            max_position_embeddings=64,
            attn_implementation="flash_attention_2",
        )
        assert TransformerDecoder(config, environ={}).kernel is AttentionKernel.FLASH
