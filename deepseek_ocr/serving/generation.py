# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Token generation.

Two pieces:

  sample_next_token — the "what comes next?" decision for one logits row:
    1. Greedy (temperature=0.0): argmax, deterministic.
    2. Temperature sampling: scale logits before sampling.
    3. Top-k sampling: only the k most likely tokens stay eligible.

  generate_tokens — the decode loop for a single sequence. With a cache the
  prompt runs once under the prompt guard and every later step feeds only
  the newest token; without a cache every step recomputes the whole prefix.
  Both paths produce the same tokens under greedy decoding.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import torch

from deepseek_ocr.logging.logger import get_logger
from deepseek_ocr.model.exceptions import (
    AmbiguousInputError,
    CacheRequiredError,
    InputShapeError,
)
from deepseek_ocr.model.transformer import DeepseekLanguageModel

logger: logging.Logger = get_logger(__name__)

FINISH_EOS = "eos"
FINISH_LENGTH = "length"


@dataclass(frozen=True)
class GenerationConfig:
    """
    Parameters that control decoding. The defaults give deterministic
    greedy decoding.
    """

    max_new_tokens: int = 512
    temperature: float = 0.0
    top_k: int = 0
    seed: int = 42
    eos_token_id: Optional[int] = None


@dataclass(frozen=True)
class GenerationResult:
    token_ids: list[int]
    finish_reason: str
    prompt_length: int


def sample_next_token(
    logits: torch.Tensor,
    config: GenerationConfig,
    generator: Optional[torch.Generator] = None,
) -> int:
    """
    Pick the next token from a logits vector.

    Args:
        logits: Scores of shape [vocab_size]; for a 2-D input the last row
                is used.
        config: Generation parameters (temperature, top_k).
        generator: Optional torch RNG for reproducible sampling.

    Returns:
        The selected token id.
    """
    if logits.dim() > 1:
        logits = logits[-1]

    if config.temperature <= 1e-8:
        return int(logits.argmax(dim=-1).item())

    scaled = logits.float() / config.temperature

    if config.top_k > 0:
        top_values, _ = torch.topk(scaled, min(config.top_k, scaled.size(-1)))
        threshold = top_values[-1]
        scaled = scaled.masked_fill(scaled < threshold, float("-inf"))

    probs = torch.softmax(scaled, dim=-1)
    selected = torch.multinomial(probs, num_samples=1, generator=generator)
    return int(selected.item())


def _prompt_length(
    input_ids: Optional[torch.Tensor],
    inputs_embeds: Optional[torch.Tensor],
) -> int:
    prompt = input_ids if input_ids is not None else inputs_embeds
    if prompt.dim() < 2 or prompt.shape[0] != 1 or prompt.shape[1] == 0:
        raise InputShapeError(
            f"generation needs one non-empty sequence, got prompt shape {tuple(prompt.shape)}"
        )
    return prompt.shape[1]


def generate_tokens(
    model: DeepseekLanguageModel,
    *,
    input_ids: Optional[torch.Tensor] = None,
    inputs_embeds: Optional[torch.Tensor] = None,
    config: GenerationConfig = GenerationConfig(),
    use_cache: bool = True,
) -> GenerationResult:
    """
    Generate up to ``config.max_new_tokens`` tokens after a prompt.

    Args:
        model: The language model.
        input_ids: Prompt ids of shape (1, prompt_len).
        inputs_embeds: Prompt embeddings of shape (1, prompt_len, dim).
        config: Decoding parameters.
        use_cache: Decode incrementally with a KV cache.

    Returns:
        GenerationResult with the new token ids (prompt excluded).

    Raises:
        AmbiguousInputError: Both or neither prompt forms given.
        CacheRequiredError: Embedding prompts without a cache (the prefix
                            cannot be re-embedded from ids).
    """
    if (input_ids is None) == (inputs_embeds is None):
        raise AmbiguousInputError("provide exactly one of input_ids or inputs_embeds")
    if not use_cache and input_ids is None:
        raise CacheRequiredError("generating from inputs_embeds requires use_cache=True")

    prompt_len = _prompt_length(input_ids, inputs_embeds)
    max_positions = model.config.max_position_embeddings
    generator = torch.Generator()
    generator.manual_seed(config.seed)

    generated: list[int] = []
    finish_reason = FINISH_LENGTH
    if config.max_new_tokens <= 0:
        return GenerationResult(generated, finish_reason, prompt_len)

    cache = model.new_cache() if use_cache else None
    sequence = input_ids

    if cache is not None:
        with model.prompt_guard(cache):
            output = model(
                input_ids=input_ids, inputs_embeds=inputs_embeds, cache=cache, use_cache=True
            )
    else:
        output = model(input_ids=sequence)

    while True:
        next_logits = output.logits[0, -1].float().cpu()
        token = sample_next_token(next_logits, config, generator)
        generated.append(token)

        if config.eos_token_id is not None and token == config.eos_token_id:
            finish_reason = FINISH_EOS
            break
        if len(generated) >= config.max_new_tokens:
            break
        if prompt_len + len(generated) >= max_positions:
            break

        step = torch.tensor([[token]], dtype=torch.long, device=model.device)
        if cache is not None:
            output = model(input_ids=step, cache=cache, use_cache=True)
        else:
            sequence = torch.cat([sequence.to(model.device), step], dim=1)
            output = model(input_ids=sequence)

    logger.info(
        "generation_complete",
        extra={
            "prompt_length": prompt_len,
            "generated": len(generated),
            "finish_reason": finish_reason,
            "use_cache": use_cache,
            "cache_mb": round(cache.memory_mb(), 3) if cache is not None else 0.0,
        },
    )
    return GenerationResult(generated, finish_reason, prompt_len)
