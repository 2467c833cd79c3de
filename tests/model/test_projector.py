# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for RMSNorm and the output projector."""

import pytest
import torch

from deepseek_ocr.model.exceptions import ShapeMismatchError
from deepseek_ocr.model.layers.norm.rmsnorm import RMSNormLayer, rms_norm
from deepseek_ocr.model.projector import OutputProjector


def _projector(dim: int = 8, vocab: int = 32) -> OutputProjector:
    projector = OutputProjector(dim, vocab, eps=1e-6)
    generator = torch.Generator().manual_seed(0)
    with torch.no_grad():
        projector.lm_head.copy_(torch.randn(vocab, dim, generator=generator))
        projector.norm_weight.copy_(torch.rand(dim, generator=generator) + 0.5)
    return projector


class TestRMSNorm:
    def test_unit_rms_after_norm(self) -> None:
        x = torch.randn(4, 16) * 7.0
        out = rms_norm(x, torch.ones(16), eps=1e-6)
        rms = out.pow(2).mean(dim=-1).sqrt()
        assert torch.allclose(rms, torch.ones(4), atol=1e-4)

    def test_zero_input_is_finite(self) -> None:
        out = rms_norm(torch.zeros(2, 16), torch.ones(16), eps=1e-6)
        assert torch.isfinite(out).all()
        assert torch.equal(out, torch.zeros(2, 16))

    def test_half_precision_tiny_values(self) -> None:
        x = torch.full((2, 16), 1e-4, dtype=torch.float16)
        out = rms_norm(x, torch.ones(16, dtype=torch.float16), eps=1e-6)
        assert out.dtype == torch.float16
        assert torch.isfinite(out).all()

    def test_layer_matches_function(self) -> None:
        layer = RMSNormLayer(16, eps=1e-5)
        x = torch.randn(2, 3, 16)
        assert torch.equal(layer(x), rms_norm(x, layer.weight, 1e-5))


class TestOutputProjector:
    def test_logits_shape(self) -> None:
        projector = _projector(dim=8, vocab=32)
        normed, logits = projector(torch.randn(2, 5, 8))
        assert normed.shape == (2, 5, 8)
        assert logits.shape == (2, 5, 32)

    def test_matches_manual_computation(self) -> None:
        projector = _projector()
        hidden = torch.randn(2, 3, 8)
        _, logits = projector(hidden)
        expected = rms_norm(hidden, projector.norm_weight, 1e-6) @ projector.lm_head.t()
        assert torch.allclose(logits, expected, atol=1e-5)

    def test_rows_are_independent(self) -> None:
        projector = _projector()
        hidden = torch.randn(3, 4, 8)
        _, batched = projector(hidden)
        _, single = projector(hidden[1:2, 2:3])
        assert torch.allclose(batched[1, 2], single[0, 0], atol=1e-5)

    def test_wrong_hidden_size_rejected(self) -> None:
        projector = _projector(dim=8)
        with pytest.raises(ShapeMismatchError):
            projector(torch.randn(1, 2, 9))
