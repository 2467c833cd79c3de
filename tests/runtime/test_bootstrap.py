# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for runtime bootstrap and deterministic seeding."""

import logging
import os
import random

import pytest
import torch

from deepseek_ocr.config.schema import GlobalConfig
from deepseek_ocr.runtime.bootstrap import bootstrap, set_deterministic_seed


@pytest.fixture(autouse=True)
def _restore_hash_seed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONHASHSEED", "0")


class TestSeeding:
    def test_same_seed_same_draws(self) -> None:
        set_deterministic_seed(123)
        first = (random.random(), torch.rand(4))
        set_deterministic_seed(123)
        second = (random.random(), torch.rand(4))

        assert first[0] == second[0]
        assert torch.equal(first[1], second[1])

    def test_sets_hash_seed(self) -> None:
        set_deterministic_seed(7)
        assert os.environ["PYTHONHASHSEED"] == "7"


class TestBootstrap:
    def test_returns_runtime_logger(self) -> None:
        logger = bootstrap(GlobalConfig(config_version="1.0.0", seed=5, log_level="WARNING"))
        assert logger.name == "deepseek_ocr.runtime"
        assert logger.level == logging.WARNING
