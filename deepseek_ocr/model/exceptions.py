# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Exceptions raised by the language model core.

Three families, handled differently by callers:

  - LanguageModelValidationError: the call was malformed. Nothing ran, the
    model and the cache are untouched, the caller can fix the inputs and
    try again.
  - ComputationError: something broke while tensors were flowing. The cache
    of that session may be half-updated and should be thrown away.
  - InitializationError: the model could not be built (weights, device).
    Never memoized; the next access retries from scratch.
"""


class LanguageModelError(Exception):
    """Base for every error raised by the language model core."""


class LanguageModelValidationError(LanguageModelError, ValueError):
    """Inputs rejected before any computation happened."""


class AmbiguousInputError(LanguageModelValidationError):
    """Both or neither of input_ids and inputs_embeds were supplied."""


class CacheRequiredError(LanguageModelValidationError):
    """use_cache=True was requested without a cache to write into."""


class InputShapeError(LanguageModelValidationError):
    """A caller-supplied tensor has the wrong rank (e.g. ids not [batch, seq])."""


class ComputationError(LanguageModelError, RuntimeError):
    """Failure inside the decoder stack or projector."""


class ShapeMismatchError(ComputationError):
    """Embeddings, mask, positions or cache state disagree on shape."""


class CacheGuardError(ComputationError):
    """A prompt guard was requested for a cache that is already guarded."""


class InitializationError(LanguageModelError, RuntimeError):
    """The model or one of its assets could not be constructed."""


class WeightLoadError(InitializationError):
    """Weights are missing, unreadable, corrupted or have unexpected shapes."""


class DeviceUnavailableError(InitializationError):
    """The requested compute device cannot be initialised."""
