# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Dynamic KV cache for incremental decoding.

During generation every attention layer produces keys and values for every
token. The keys and values of tokens already processed never change, so the
cache keeps them and each new forward call only computes the new tokens'
share. One cache instance belongs to exactly one generation session.

The cache grows on demand instead of being pre-allocated: each layer's entry
is the concatenation of everything appended so far along the sequence axis.
Appending builds a new tensor and rebinds the entry; the tensors handed out
by earlier calls are never written to, so anything a caller captured from a
previous step stays bit-for-bit identical.

Bookkeeping is a single integer, ``seq_len``. Layers append during the
forward pass, then the decoder calls ``advance`` once the whole stack has
finished. Every append checks the layer is still at ``seq_len``, so a cache
left half-updated by a failed call refuses further use instead of silently
misaligning positions.

The first forward call of a session runs under a ``PromptCacheGuard``. The
guard is exclusive: asking for a second one on a guarded cache fails
immediately.
"""

import logging
import threading
from types import TracebackType
from typing import TYPE_CHECKING, Optional

import torch

from deepseek_ocr.logging.logger import get_logger
from deepseek_ocr.model.exceptions import CacheGuardError, ShapeMismatchError

if TYPE_CHECKING:
    from deepseek_ocr.model.decoder import TransformerDecoder

logger: logging.Logger = get_logger(__name__)

# Key/value layout: [batch, n_heads, seq_len, head_dim]
_SEQ_AXIS = 2


class DynamicCache:
    """
    Append-only per-layer key/value storage for one generation session.

    Args:
        n_layers: Expected number of decoder layers. When given, layer
                  indices outside ``[0, n_layers)`` are rejected.
    """

    def __init__(self, n_layers: Optional[int] = None) -> None:
        self._n_layers = n_layers
        self._keys: list[torch.Tensor] = []
        self._values: list[torch.Tensor] = []
        self._seq_len = 0
        self._prompt_length: Optional[int] = None
        self._guard_lock = threading.Lock()
        self._prompt_active = False

    @property
    def seq_len(self) -> int:
        """Number of tokens stored (0 for an empty cache)."""
        return self._seq_len

    @property
    def is_empty(self) -> bool:
        return self._seq_len == 0

    @property
    def num_layers(self) -> int:
        """Number of layers holding entries."""
        return len(self._keys)

    @property
    def expected_layers(self) -> Optional[int]:
        return self._n_layers

    @property
    def prompt_length(self) -> Optional[int]:
        """Length of the prompt once a prompt guard has been released."""
        return self._prompt_length

    @property
    def is_guarded(self) -> bool:
        return self._guard_lock.locked()

    @property
    def in_prompt_phase(self) -> bool:
        return self._prompt_active

    def layer(self, layer_idx: int) -> Optional[tuple[torch.Tensor, torch.Tensor]]:
        """Stored (keys, values) for one layer, or None if it has no entry yet."""
        if layer_idx < len(self._keys):
            return self._keys[layer_idx], self._values[layer_idx]
        return None

    def update(
        self,
        layer_idx: int,
        new_key: torch.Tensor,
        new_value: torch.Tensor,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """
        Append new key/value tensors to one layer and return the full
        accumulated keys and values for that layer.

        Args:
            layer_idx: Decoder layer index.
            new_key: Tensor of shape [batch, heads, new_tokens, head_dim].
            new_value: Tensor of the same shape as ``new_key``.

        Returns:
            (keys, values) covering all ``seq_len + new_tokens`` positions.

        Raises:
            ShapeMismatchError: On any disagreement between the new tensors,
                the stored entry and the cache's sequence length.
        """
        if new_key.dim() != 4 or new_key.shape != new_value.shape:
            raise ShapeMismatchError(
                f"key/value must share a [batch, heads, seq, head_dim] shape, "
                f"got {tuple(new_key.shape)} and {tuple(new_value.shape)}"
            )
        if self._n_layers is not None and not 0 <= layer_idx < self._n_layers:
            raise ShapeMismatchError(
                f"layer index {layer_idx} out of range for a {self._n_layers}-layer cache"
            )

        existing = self.layer(layer_idx)
        if existing is None:
            if layer_idx != len(self._keys):
                raise ShapeMismatchError(
                    f"layer {layer_idx} appended before layer {len(self._keys)}"
                )
            if self._seq_len != 0:
                raise ShapeMismatchError(
                    f"layer {layer_idx} has no entry but the cache holds {self._seq_len} tokens"
                )
            self._keys.append(new_key)
            self._values.append(new_value)
            return new_key, new_value

        keys, values = existing
        stored_len = keys.shape[_SEQ_AXIS]
        if stored_len != self._seq_len:
            raise ShapeMismatchError(
                f"layer {layer_idx} holds {stored_len} positions but the cache is at "
                f"{self._seq_len}; the cache was left inconsistent by an earlier failure"
            )
        if (
            keys.shape[0] != new_key.shape[0]
            or keys.shape[1] != new_key.shape[1]
            or keys.shape[3] != new_key.shape[3]
        ):
            raise ShapeMismatchError(
                f"cannot append {tuple(new_key.shape)} to layer {layer_idx} "
                f"holding {tuple(keys.shape)}"
            )

        keys = torch.cat([keys, new_key.to(keys.dtype)], dim=_SEQ_AXIS)
        values = torch.cat([values, new_value.to(values.dtype)], dim=_SEQ_AXIS)
        self._keys[layer_idx] = keys
        self._values[layer_idx] = values
        return keys, values

    def advance(self, steps: int) -> None:
        """
        Commit ``steps`` new tokens once every layer has appended them.

        Raises:
            ShapeMismatchError: If some layer did not receive the new tokens.
        """
        target = self._seq_len + steps
        for idx, keys in enumerate(self._keys):
            if keys.shape[_SEQ_AXIS] != target:
                raise ShapeMismatchError(
                    f"layer {idx} holds {keys.shape[_SEQ_AXIS]} positions, expected {target}"
                )
        self._seq_len = target

    def reset(self) -> None:
        """Drop every entry so the instance can start a new session."""
        if self.is_guarded:
            raise CacheGuardError("cannot reset a cache while a prompt guard is held")
        self._keys.clear()
        self._values.clear()
        self._seq_len = 0
        self._prompt_length = None

    def memory_bytes(self) -> int:
        """How much memory the stored keys and values occupy."""
        total = 0
        for k, v in zip(self._keys, self._values):
            total += k.nelement() * k.element_size()
            total += v.nelement() * v.element_size()
        return total

    def memory_mb(self) -> float:
        return self.memory_bytes() / (1024 * 1024)

    def _acquire_guard(self) -> None:
        if not self._guard_lock.acquire(blocking=False):
            raise CacheGuardError("a prompt guard is already held for this cache")
        self._prompt_active = True

    def _release_guard(self) -> None:
        self._prompt_active = False
        self._prompt_length = self._seq_len
        self._guard_lock.release()


class PromptCacheGuard:
    """
    Scoped marker for the prompt phase of a session.

    Use it as a context manager around the first forward call::

        cache = model.new_cache()
        with model.prompt_guard(cache):
            out = model(input_ids=prompt, cache=cache, use_cache=True)

    Entering fails fast with CacheGuardError when the cache is already
    guarded. The guard is released on every exit path, including
    exceptions, and records the prompt length on the cache.
    """

    def __init__(self, cache: DynamicCache, decoder: "TransformerDecoder") -> None:
        self._cache = cache
        self._decoder = decoder
        self._held = False

    @property
    def cache(self) -> DynamicCache:
        return self._cache

    def acquire(self) -> "PromptCacheGuard":
        expected = self._cache.expected_layers
        if expected is not None and expected != self._decoder.n_layers:
            raise ShapeMismatchError(
                f"cache was built for {expected} layers, decoder has {self._decoder.n_layers}"
            )
        self._cache._acquire_guard()
        self._held = True
        logger.debug("prompt_guard_acquired", extra={"cache_len": self._cache.seq_len})
        return self

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        self._cache._release_guard()
        logger.debug("prompt_guard_released", extra={"prompt_len": self._cache.seq_len})

    def __enter__(self) -> "PromptCacheGuard":
        return self.acquire()

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
