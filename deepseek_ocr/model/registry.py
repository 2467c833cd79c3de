# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Layer type registry for the language model.

Each layer family (attention kernel, feed-forward, norm) has its own registry
so a name can never resolve to a class of the wrong family. Registries are
populated once, at import time of the ``layers`` subpackages, and are
read-only afterwards.

The attention registry is keyed by ``AttentionKernel`` values ("standard",
"flash"); the decoder resolves the kernel once at construction and looks the
class up here.
"""

import logging

import torch.nn as nn

logger = logging.getLogger(__name__)


class LayerRegistry:
    """Name → class mapping for one layer family."""

    def __init__(self, family: str) -> None:
        self._family = family
        self._entries: dict[str, type[nn.Module]] = {}

    def register(self, name: str, cls: type[nn.Module]) -> None:
        """
        Register a layer class under a unique name.

        Raises:
            ValueError: If ``name`` is already registered.
        """
        if name in self._entries:
            raise ValueError(
                f"{self._family} type '{name}' is already registered to "
                f"{self._entries[name].__name__}"
            )
        self._entries[name] = cls
        logger.debug(
            "registered_layer",
            extra={"family": self._family, "name": name, "cls": cls.__name__},
        )

    def get(self, name: str) -> type[nn.Module]:
        """
        Retrieve a registered class by name.

        Raises:
            KeyError: If ``name`` is not registered.
        """
        if name not in self._entries:
            raise KeyError(
                f"Unknown {self._family} type '{name}'. Available: {self.names()}"
            )
        return self._entries[name]

    def names(self) -> list[str]:
        return sorted(self._entries)


_ATTENTION_REGISTRY = LayerRegistry("Attention")
_FEED_FORWARD_REGISTRY = LayerRegistry("FeedForward")
_NORM_REGISTRY = LayerRegistry("Norm")


def register_attention(name: str, cls: type[nn.Module]) -> None:
    _ATTENTION_REGISTRY.register(name, cls)


def get_attention(name: str) -> type[nn.Module]:
    _register_builtins()
    return _ATTENTION_REGISTRY.get(name)


def list_attention_types() -> list[str]:
    _register_builtins()
    return _ATTENTION_REGISTRY.names()


def register_feed_forward(name: str, cls: type[nn.Module]) -> None:
    _FEED_FORWARD_REGISTRY.register(name, cls)


def get_feed_forward(name: str) -> type[nn.Module]:
    _register_builtins()
    return _FEED_FORWARD_REGISTRY.get(name)


def list_feed_forward_types() -> list[str]:
    _register_builtins()
    return _FEED_FORWARD_REGISTRY.names()


def register_norm(name: str, cls: type[nn.Module]) -> None:
    _NORM_REGISTRY.register(name, cls)


def get_norm(name: str) -> type[nn.Module]:
    _register_builtins()
    return _NORM_REGISTRY.get(name)


def list_norm_types() -> list[str]:
    _register_builtins()
    return _NORM_REGISTRY.names()


_BUILTINS_REGISTERED: bool = False


def _register_builtins() -> None:
    """
    Import the built-in layer subpackages, which register themselves.

    Idempotent. Lookups call this lazily so importing the registry alone
    never drags in every layer module.
    """
    global _BUILTINS_REGISTERED
    if _BUILTINS_REGISTERED:
        return

    import deepseek_ocr.model.layers.attention  # noqa: F401
    import deepseek_ocr.model.layers.mlp  # noqa: F401
    import deepseek_ocr.model.layers.norm  # noqa: F401

    _BUILTINS_REGISTERED = True

    logger.debug(
        "builtins_registered",
        extra={
            "attention_types": _ATTENTION_REGISTRY.names(),
            "feed_forward_types": _FEED_FORWARD_REGISTRY.names(),
            "norm_types": _NORM_REGISTRY.names(),
        },
    )
