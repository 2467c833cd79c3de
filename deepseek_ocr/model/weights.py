# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Weight store for the language model.

``LanguageModelWeights`` is the immutable bundle of every learned tensor:
the embedding table, the per-layer tensors, the final norm vector and the
vocabulary projection. It is built once, either from a checkpoint on disk
or from a live model, and only read afterwards.

Checkpoint tensors use the model's own state-dict names:

    embedding.weight                      [vocab, dim]
    decoder.layers.{i}.<layer tensor>     see ``expected_layer_shapes``
    projector.norm_weight                 [dim]
    projector.lm_head                     [vocab, dim]

Loading is strict. A missing tensor, an unexpected tensor, a wrong shape
or a checksum mismatch raises ``WeightLoadError`` before any model is
constructed.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Optional, Union

import torch
import torch.nn as nn
from safetensors import SafetensorError
from safetensors.torch import load_file, save_file

from deepseek_ocr.logging.logger import get_logger
from deepseek_ocr.model.config import LanguageModelConfig
from deepseek_ocr.model.exceptions import WeightLoadError
from deepseek_ocr.utils.hashing import compute_sha256, verify_checksum

logger: logging.Logger = get_logger(__name__)

EMBEDDING_KEY = "embedding.weight"
FINAL_NORM_KEY = "projector.norm_weight"
LM_HEAD_KEY = "projector.lm_head"
DECODER_PREFIX = "decoder."

METADATA_FILENAME = "metadata.json"
SAFETENSORS_SUFFIX = ".safetensors"
TORCH_SUFFIXES = (".pt", ".bin")


def _swiglu_shapes(prefix: str, dim: int, hidden: int) -> dict[str, tuple[int, ...]]:
    return {
        f"{prefix}.w1.weight": (hidden, dim),
        f"{prefix}.w2.weight": (dim, hidden),
        f"{prefix}.w3.weight": (hidden, dim),
    }


def expected_layer_shapes(config: LanguageModelConfig) -> dict[str, tuple[int, ...]]:
    """
    Name → shape of every per-layer tensor, keyed relative to the decoder
    (``layers.{i}....``).
    """
    dim = config.dim
    proj = config.n_heads * config.head_dim
    shapes: dict[str, tuple[int, ...]] = {}
    for idx in range(config.n_layers):
        prefix = f"layers.{idx}"
        shapes[f"{prefix}.attention_norm.weight"] = (dim,)
        shapes[f"{prefix}.attention.wq.weight"] = (proj, dim)
        shapes[f"{prefix}.attention.wk.weight"] = (proj, dim)
        shapes[f"{prefix}.attention.wv.weight"] = (proj, dim)
        shapes[f"{prefix}.attention.wo.weight"] = (dim, proj)
        shapes[f"{prefix}.ffn_norm.weight"] = (dim,)

        ffn = f"{prefix}.feed_forward"
        if config.is_moe_layer(idx):
            shapes[f"{ffn}.gate.weight"] = (config.n_routed_experts, dim)
            for expert in range(config.n_routed_experts):
                shapes.update(
                    _swiglu_shapes(f"{ffn}.experts.{expert}", dim, config.moe_intermediate_dim)
                )
            if config.n_shared_experts > 0:
                shapes.update(
                    _swiglu_shapes(
                        f"{ffn}.shared_experts",
                        dim,
                        config.moe_intermediate_dim * config.n_shared_experts,
                    )
                )
        else:
            shapes.update(_swiglu_shapes(ffn, dim, config.intermediate_dim))
    return shapes


def _check_shape(name: str, tensor: torch.Tensor, expected: tuple[int, ...]) -> None:
    if tuple(tensor.shape) != expected:
        raise WeightLoadError(
            f"tensor '{name}' has shape {tuple(tensor.shape)}, expected {expected}"
        )


@dataclass(frozen=True, eq=False)
class LanguageModelWeights:
    """
    Immutable set of learned tensors.

    Attributes:
        token_embedding: Embedding table, shape (vocab_size, dim).
        layers: Read-only mapping of decoder tensors keyed ``layers.{i}....``.
        final_norm: Output RMSNorm scale, shape (dim,).
        lm_head: Vocabulary projection, shape (vocab_size, dim).
    """

    token_embedding: torch.Tensor
    layers: Mapping[str, torch.Tensor]
    final_norm: torch.Tensor
    lm_head: torch.Tensor

    @classmethod
    def from_state_dict(
        cls,
        config: LanguageModelConfig,
        state_dict: Mapping[str, torch.Tensor],
    ) -> "LanguageModelWeights":
        """
        Validate a flat state dict against ``config`` and bundle it.

        Raises:
            WeightLoadError: On missing, unexpected or misshapen tensors.
        """
        for key in (EMBEDDING_KEY, FINAL_NORM_KEY, LM_HEAD_KEY):
            if key not in state_dict:
                raise WeightLoadError(f"missing tensor '{key}'")
        _check_shape(EMBEDDING_KEY, state_dict[EMBEDDING_KEY], (config.vocab_size, config.dim))
        _check_shape(FINAL_NORM_KEY, state_dict[FINAL_NORM_KEY], (config.dim,))
        _check_shape(LM_HEAD_KEY, state_dict[LM_HEAD_KEY], (config.vocab_size, config.dim))

        expected = expected_layer_shapes(config)
        layers: dict[str, torch.Tensor] = {}
        unexpected: list[str] = []
        for name, tensor in state_dict.items():
            if name in (EMBEDDING_KEY, FINAL_NORM_KEY, LM_HEAD_KEY):
                continue
            if not name.startswith(DECODER_PREFIX):
                unexpected.append(name)
                continue
            layer_name = name[len(DECODER_PREFIX):]
            if layer_name not in expected:
                unexpected.append(name)
                continue
            _check_shape(name, tensor, expected[layer_name])
            layers[layer_name] = tensor

        if unexpected:
            raise WeightLoadError(f"unexpected tensors: {sorted(unexpected)[:5]}")
        missing = sorted(set(expected) - set(layers))
        if missing:
            raise WeightLoadError(
                f"missing {len(missing)} decoder tensors, e.g. '{DECODER_PREFIX}{missing[0]}'"
            )

        return cls(
            token_embedding=state_dict[EMBEDDING_KEY],
            layers=MappingProxyType(layers),
            final_norm=state_dict[FINAL_NORM_KEY],
            lm_head=state_dict[LM_HEAD_KEY],
        )

    @classmethod
    def from_module(cls, config: LanguageModelConfig, module: nn.Module) -> "LanguageModelWeights":
        """Snapshot the parameters of a live model (tensors are detached, not copied)."""
        state = {name: tensor.detach() for name, tensor in module.state_dict().items()}
        return cls.from_state_dict(config, state)

    def to_state_dict(self) -> dict[str, torch.Tensor]:
        """Flat state dict in the model's parameter naming."""
        state = {EMBEDDING_KEY: self.token_embedding}
        for name, tensor in self.layers.items():
            state[f"{DECODER_PREFIX}{name}"] = tensor
        state[FINAL_NORM_KEY] = self.final_norm
        state[LM_HEAD_KEY] = self.lm_head
        return state

    def num_parameters(self) -> int:
        return sum(t.numel() for t in self.to_state_dict().values())


def _expected_checksum(path: Path) -> Optional[str]:
    meta_path = path.parent / METADATA_FILENAME
    if not meta_path.is_file():
        return None
    try:
        metadata = json.loads(meta_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as err:
        raise WeightLoadError(f"unreadable weight metadata {meta_path}: {err}") from err

    checksums = metadata.get("checksums", {})
    if isinstance(checksums, dict) and path.name in checksums:
        return str(checksums[path.name])
    value = metadata.get("weights_sha256")
    return str(value) if value is not None else None


def _verify_checksum(path: Path) -> None:
    expected_hash = _expected_checksum(path)
    if expected_hash is None:
        logger.debug("weights_checksum_skipped", extra={"path": str(path)})
        return

    if not verify_checksum(path, expected_hash):
        actual_hash = compute_sha256(path)
        raise WeightLoadError(
            f"checksum mismatch for {path.name}: "
            f"expected {expected_hash[:16]}..., got {actual_hash[:16]}..."
        )
    logger.info("weights_checksum_verified", extra={"hash": expected_hash[:16].lower() + "..."})


def load_weights(path: Union[str, Path]) -> dict[str, torch.Tensor]:
    """
    Read a flat state dict from disk onto the CPU.

    Supports ``.safetensors`` and torch pickles (``.pt`` / ``.bin``, loaded
    with ``weights_only=True``). When a ``metadata.json`` beside the file
    records its SHA256, the digest is verified first.

    Raises:
        WeightLoadError: Missing file, unsupported format, checksum mismatch
                         or an unreadable file.
    """
    path = Path(path)
    if not path.is_file():
        raise WeightLoadError(f"weights file not found: {path}")

    _verify_checksum(path)

    suffix = path.suffix.lower()
    try:
        if suffix == SAFETENSORS_SUFFIX:
            state_dict = load_file(str(path), device="cpu")
        elif suffix in TORCH_SUFFIXES:
            state_dict = torch.load(path, map_location="cpu", weights_only=True)
        else:
            raise WeightLoadError(
                f"unsupported weights format '{suffix}' "
                f"(expected {SAFETENSORS_SUFFIX} or one of {TORCH_SUFFIXES})"
            )
    except WeightLoadError:
        raise
    except (OSError, RuntimeError, ValueError, SafetensorError) as err:
        raise WeightLoadError(f"failed to read weights from {path}: {err}") from err

    if not isinstance(state_dict, dict):
        raise WeightLoadError(f"{path} does not contain a state dict")

    logger.info(
        "weights_loaded",
        extra={"path": str(path), "tensors": len(state_dict)},
    )
    return state_dict


def save_weights(
    weights: LanguageModelWeights,
    path: Union[str, Path],
    write_checksum: bool = True,
) -> Path:
    """
    Write weights as safetensors, optionally recording the file's SHA256 in
    the sibling ``metadata.json``.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tensors = {name: t.contiguous() for name, t in weights.to_state_dict().items()}
    save_file(tensors, str(path))

    if write_checksum:
        meta_path = path.parent / METADATA_FILENAME
        metadata: dict[str, object] = {}
        if meta_path.is_file():
            metadata = json.loads(meta_path.read_text(encoding="utf-8"))
        checksums = dict(metadata.get("checksums", {}))
        checksums[path.name] = compute_sha256(path)
        metadata["checksums"] = checksums
        meta_path.write_text(json.dumps(metadata, indent=2, sort_keys=True), encoding="utf-8")

    logger.info("weights_saved", extra={"path": str(path)})
    return path


def init_weights(module: nn.Module, seed: int, init_std: float = 0.02) -> None:
    """
    Initialize all parameters in a module deterministically.

    Matrices get a normal(0, init_std) draw from a dedicated Generator, so the
    result is independent of the global RNG state; vectors are norm scales
    and start at 1.0.
    """
    generator = torch.Generator()
    generator.manual_seed(seed)

    with torch.no_grad():
        for _, param in module.named_parameters():
            if param.dim() >= 2:
                param.copy_(
                    torch.empty(param.shape).normal_(0.0, init_std, generator=generator)
                )
            else:
                param.fill_(1.0)
