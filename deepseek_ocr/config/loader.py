# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Config loader — reads YAML from disk and produces a validated, frozen
DeepseekOCRConfig.

The loading pipeline is linear:
  1. Read raw text from the file
  2. Parse as YAML into a plain dict
  3. Hand the dict to pydantic for schema validation
  4. Return the frozen, immutable config object

Overrides (from a caller or a command line) never mutate a loaded config.
`apply_overrides` re-validates the touched section and returns a new object,
so an out-of-range override fails exactly like an out-of-range file value.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ValidationError

from deepseek_ocr.config.exceptions import ConfigLoadError, ConfigValidationError
from deepseek_ocr.config.schema import (
    DeepseekOCRConfig,
    InferenceConfig,
    LanguageModelSchema,
)


def _read_yaml_file(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML file and return the parsed dict.

    Args:
        config_path: Absolute or relative path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        ConfigLoadError: If the file doesn't exist, isn't readable, or isn't valid YAML.
    """
    if not config_path.exists():
        raise ConfigLoadError(f"Config file not found: {config_path}")

    if not config_path.is_file():
        raise ConfigLoadError(f"Config path is not a file: {config_path}")

    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except OSError as err:
        raise ConfigLoadError(f"Cannot read config file {config_path}: {err}") from err

    try:
        parsed = yaml.safe_load(raw_text)
    except yaml.YAMLError as err:
        raise ConfigLoadError(f"Invalid YAML in {config_path}: {err}") from err

    if not isinstance(parsed, dict):
        raise ConfigLoadError(
            f"Config file must contain a YAML mapping (dict), got {type(parsed).__name__}"
        )

    return parsed


def load_config(config_path: Path) -> DeepseekOCRConfig:
    """
    Load, validate, and freeze a config file into a DeepseekOCRConfig object.

    Args:
        config_path: Path to a YAML config file.

    Returns:
        A fully validated, frozen DeepseekOCRConfig instance.

    Raises:
        ConfigLoadError: File I/O or YAML parse failures.
        ConfigValidationError: Schema violations (missing fields, wrong types, unknown keys).
    """
    raw_data = _read_yaml_file(config_path)

    try:
        config = DeepseekOCRConfig.model_validate(raw_data)
    except ValidationError as err:
        raise ConfigValidationError(
            f"Config validation failed for {config_path}:\n{err}"
        ) from err

    return config


def _revalidate(
    section_cls: type[BaseModel],
    current: Optional[BaseModel],
    config_version: str,
    updates: dict[str, Any],
) -> Optional[BaseModel]:
    """Merge non-None updates into a section and validate the result."""
    if not updates:
        return current
    data: dict[str, Any] = (
        current.model_dump() if current is not None else {"config_version": config_version}
    )
    data.update(updates)
    try:
        return section_cls.model_validate(data)
    except ValidationError as err:
        raise ConfigValidationError(
            f"Override produced an invalid {section_cls.__name__}:\n{err}"
        ) from err


def apply_overrides(
    config: DeepseekOCRConfig,
    *,
    device: Optional[str] = None,
    precision: Optional[str] = None,
    weights_path: Optional[str] = None,
    max_new_tokens: Optional[int] = None,
    use_cache: Optional[bool] = None,
    gpu_memory_utilization: Optional[float] = None,
    max_num_seqs: Optional[int] = None,
    attn_implementation: Optional[str] = None,
    log_level: Optional[str] = None,
) -> DeepseekOCRConfig:
    """
    Return a copy of ``config`` with every non-None override applied.

    A missing `inference:` or `model:` section is created from defaults when
    an override targets it, using the global config_version.

    Raises:
        ConfigValidationError: If an override violates the schema.
    """
    version = config.global_config.config_version

    inference_updates = {
        key: value
        for key, value in {
            "device": device,
            "precision": precision,
            "weights_path": weights_path,
            "max_new_tokens": max_new_tokens,
            "use_cache": use_cache,
            "gpu_memory_utilization": gpu_memory_utilization,
            "max_num_seqs": max_num_seqs,
        }.items()
        if value is not None
    }
    model_updates = (
        {"attn_implementation": attn_implementation} if attn_implementation is not None else {}
    )

    inference = _revalidate(InferenceConfig, config.inference, version, inference_updates)
    model = _revalidate(LanguageModelSchema, config.model, version, model_updates)

    global_config = config.global_config
    if log_level is not None:
        global_config = global_config.model_copy(update={"log_level": log_level})

    return config.model_copy(
        update={"global_config": global_config, "inference": inference, "model": model}
    )
