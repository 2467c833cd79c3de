# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Process-wide shared model state.

Loading the language model takes seconds and gigabytes, so a process loads
it once and every caller reuses it. Two primitives make that safe:

  LazyResource   — memoizes the first successful result of a factory.
                   Concurrent first callers wait on one lock, so only one
                   load runs. A failed load is not memoized: the exception
                   goes to the caller that ran it, and the next caller to
                   take the lock (callers already waiting included) runs the
                   factory again from scratch. Which waiting caller retries
                   first is up to the lock and is unspecified.

  ExclusiveModel — a model plus a lock. A model instance is not safe for
                   concurrent forward calls, so all access goes through
                   ``access()`` or ``run()``, which serialize callers.

The shared language assets (config, weight view and the locked model) are
built from the YAML config named by the DEEPSEEK_OCR_CONFIG environment
variable, defaulting to ``configs/deepseek_ocr.yaml``.
"""

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generic, Optional, TypeVar

from deepseek_ocr.config.loader import load_config
from deepseek_ocr.logging.logger import get_logger
from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.transformer import DeepseekLanguageModel
from deepseek_ocr.model.weights import LanguageModelWeights
from deepseek_ocr.runtime.bootstrap import bootstrap
from deepseek_ocr.runtime.loader import load_language_model

logger: logging.Logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

CONFIG_ENV = "DEEPSEEK_OCR_CONFIG"
DEFAULT_CONFIG_PATH = Path("configs/deepseek_ocr.yaml")


class LazyResource(Generic[T]):
    """
    Thread-safe lazy value with retry-on-failure.

    Args:
        factory: Zero-argument callable producing the value.
        name: Label used in log lines.
    """

    def __init__(self, factory: Callable[[], T], name: str) -> None:
        self._factory = factory
        self._name = name
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def get(self) -> T:
        """
        Return the memoized value, running the factory if there is none.

        Raises:
            Whatever the factory raises. The failure is not remembered.
        """
        if self._loaded:
            return self._value  # type: ignore[return-value]

        with self._lock:
            if self._loaded:
                return self._value  # type: ignore[return-value]

            logger.info("shared_resource_loading", extra={"resource": self._name})
            try:
                value = self._factory()
            except Exception as err:
                logger.error(
                    "shared_resource_failed",
                    extra={"resource": self._name, "error": str(err)},
                )
                raise
            self._value = value
            self._loaded = True
            logger.info("shared_resource_ready", extra={"resource": self._name})
            return value

    def reset(self) -> None:
        """Forget the memoized value so the next ``get`` loads again."""
        with self._lock:
            self._value = None
            self._loaded = False


class ExclusiveModel(Generic[T]):
    """
    Serializes access to one model instance.

    Example::

        shared = ExclusiveModel(model)
        with shared.access() as m:
            out = m(input_ids=ids)
    """

    def __init__(self, model: T) -> None:
        self._model = model
        self._lock = threading.Lock()

    @contextmanager
    def access(self) -> Iterator[T]:
        with self._lock:
            yield self._model

    def run(self, op: Callable[[T], R]) -> R:
        """Call ``op(model)`` while holding the lock and return its result."""
        with self.access() as model:
            return op(model)


@dataclass(frozen=True, eq=False)
class SharedLanguageAssets:
    config: LanguageModelConfig
    weights: LanguageModelWeights
    model: ExclusiveModel[DeepseekLanguageModel]


def shared_config_path() -> Path:
    return Path(os.environ.get(CONFIG_ENV, str(DEFAULT_CONFIG_PATH)))


def _load_language_assets() -> SharedLanguageAssets:
    config_path = shared_config_path()
    config = load_config(config_path)
    bootstrap(config.global_config)
    model = load_language_model(config)
    return SharedLanguageAssets(
        config=model.config,
        weights=model.transformer_weights,
        model=ExclusiveModel(model),
    )


_LANGUAGE_ASSETS: LazyResource[SharedLanguageAssets] = LazyResource(
    _load_language_assets, "language_assets"
)


def shared_language_assets() -> SharedLanguageAssets:
    return _LANGUAGE_ASSETS.get()


def with_shared_language_model(op: Callable[[DeepseekLanguageModel], R]) -> R:
    """
    Run ``op`` on the process-wide language model, one caller at a time.

    The model is loaded on first use; a failed load raises here and is
    retried by the next call.
    """
    return shared_language_assets().model.run(op)


def shared_language_config() -> LanguageModelConfig:
    return shared_language_assets().config


def shared_transformer_weights() -> LanguageModelWeights:
    return shared_language_assets().weights


def reset_shared_assets() -> None:
    """Drop the shared model (tests, or reloading after a config change)."""
    _LANGUAGE_ASSETS.reset()
