# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for attention kernel resolution."""

import pytest

from deepseek_ocr.model.kernel import (
    FLASH_ATTENTION_ENV,
    AttentionKernel,
    parse_bool_override,
    resolve_attention_kernel,
)


class TestParseBoolOverride:
    @pytest.mark.parametrize("value", ["1", "true", "TRUE", "Yes"])
    def test_true_values(self, value: str) -> None:
        assert parse_bool_override(value) is True

    @pytest.mark.parametrize("value", ["0", "false", "False", "NO"])
    def test_false_values(self, value: str) -> None:
        assert parse_bool_override(value) is False

    @pytest.mark.parametrize("value", [None, "", "maybe", "2", "on", " yes ", "true\n"])
    def test_unrecognised_values(self, value: str) -> None:
        assert parse_bool_override(value) is None


class TestResolveAttentionKernel:
    def test_default_is_standard(self) -> None:
        assert resolve_attention_kernel(None, environ={}) is AttentionKernel.STANDARD

    def test_config_selects_flash(self) -> None:
        assert resolve_attention_kernel("flash_attention_2", environ={}) is AttentionKernel.FLASH

    def test_config_value_is_case_insensitive(self) -> None:
        assert resolve_attention_kernel("Flash_Attention_2", environ={}) is AttentionKernel.FLASH

    def test_other_config_values_are_standard(self) -> None:
        assert resolve_attention_kernel("eager", environ={}) is AttentionKernel.STANDARD

    def test_override_enables_flash(self) -> None:
        env = {FLASH_ATTENTION_ENV: "yes"}
        assert resolve_attention_kernel(None, environ=env) is AttentionKernel.FLASH

    def test_override_beats_config(self) -> None:
        env = {FLASH_ATTENTION_ENV: "0"}
        assert resolve_attention_kernel("flash_attention_2", environ=env) is AttentionKernel.STANDARD

    def test_unrecognised_override_falls_back_to_config(self) -> None:
        env = {FLASH_ATTENTION_ENV: "sometimes"}
        assert resolve_attention_kernel("flash_attention_2", environ=env) is AttentionKernel.FLASH
        assert resolve_attention_kernel(None, environ=env) is AttentionKernel.STANDARD

    def test_padded_override_is_ignored(self) -> None:
        env = {FLASH_ATTENTION_ENV: " yes "}
        assert resolve_attention_kernel(None, environ=env) is AttentionKernel.STANDARD

    def test_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(FLASH_ATTENTION_ENV, "true")
        assert resolve_attention_kernel(None) is AttentionKernel.FLASH
