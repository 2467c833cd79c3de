# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for the DeepSeek-OCR language core.

Each config section gets its own frozen pydantic model. Frozen means once you
create it, you cannot mutate it; overrides produce a new object instead (see
config/loader.py).

The models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

Defaults for the language model mirror the DeepSeek-OCR text decoder: a
12-layer DeepSeek-V2 style stack with a dense first layer followed by
mixture-of-experts layers.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GlobalConfig(BaseModel):
    """
    Cross-cutting settings that apply to the entire process: identity,
    reproducibility (seed) and observability (log level and file).
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    project_name: str = Field(
        default="deepseek-ocr", description="Human-readable project identifier"
    )
    seed: int = Field(
        default=42,
        ge=0,
        description="Global random seed propagated to all subsystems",
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )


class LanguageModelSchema(BaseModel):
    """
    Architecture of the text decoder. Everything the language model needs to
    build its modules and check weight shapes comes from here.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    vocab_size: int = Field(
        default=129280,
        ge=2,
        description="Vocabulary size; rows of the embedding and projection matrices",
    )
    hidden_size: int = Field(
        default=1280,
        ge=2,
        description="Model hidden dimension",
    )
    n_layers: int = Field(
        default=12,
        ge=1,
        le=128,
        description="Number of decoder layers",
    )
    n_heads: int = Field(
        default=10,
        ge=1,
        description="Number of attention heads",
    )
    head_dim: int = Field(
        default=128,
        ge=2,
        description="Dimension per attention head (must be even for rotary embedding)",
    )
    intermediate_size: int = Field(
        default=6848,
        ge=1,
        description="SwiGLU hidden size of the dense feed-forward layers",
    )
    rms_norm_eps: float = Field(
        default=1e-6,
        gt=0.0,
        description="Epsilon for RMSNorm numerical stability",
    )
    rope_theta: float = Field(
        default=10000.0,
        gt=0.0,
        description="Base frequency for Rotary Positional Embedding",
    )
    max_position_embeddings: int = Field(
        default=8192,
        ge=1,
        description="Largest position index the rotary table covers",
    )
    attn_implementation: Optional[str] = Field(
        default=None,
        description="'flash_attention_2' selects the fused attention kernel",
    )
    n_routed_experts: int = Field(
        default=64,
        ge=0,
        description="Routed experts per MoE layer; 0 builds a fully dense stack",
    )
    n_shared_experts: int = Field(
        default=2,
        ge=0,
        description="Always-active experts added to every MoE layer",
    )
    num_experts_per_tok: int = Field(
        default=6,
        ge=1,
        description="Experts each token is routed to",
    )
    moe_intermediate_size: int = Field(
        default=896,
        ge=1,
        description="SwiGLU hidden size of each expert",
    )
    first_k_dense_replace: int = Field(
        default=1,
        ge=0,
        description="Number of leading layers that stay dense",
    )
    norm_topk_prob: bool = Field(
        default=False,
        description="Renormalize the selected routing weights to sum to one",
    )
    aux_loss_alpha: float = Field(
        default=0.001,
        ge=0.0,
        description="Scale of the load-balancing auxiliary loss",
    )
    init_std: float = Field(
        default=0.02,
        gt=0.0,
        description="Standard deviation for random weight initialization",
    )

    @model_validator(mode="after")
    def _check_architecture(self) -> "LanguageModelSchema":
        if self.head_dim % 2 != 0:
            raise ValueError(f"head_dim must be even for rotary embedding, got {self.head_dim}")
        if self.n_routed_experts > 0 and self.num_experts_per_tok > self.n_routed_experts:
            raise ValueError(
                f"num_experts_per_tok ({self.num_experts_per_tok}) cannot exceed "
                f"n_routed_experts ({self.n_routed_experts})"
            )
        return self


class InferenceConfig(BaseModel):
    """
    Runtime settings for serving the language model: where the weights live,
    which device and precision to use, and the admission-control knobs the
    serving layer enforces around the model.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    device: Literal["cpu", "mps", "cuda"] = Field(
        default="cpu",
        description="Compute device kind",
    )
    precision: Optional[Literal["f32", "f16", "bf16"]] = Field(
        default=None,
        description="Numeric precision; accelerators default to f16, CPU to f32",
    )
    weights_path: str = Field(
        default="weights/language_model.safetensors",
        description="Weight file (.safetensors, .pt or .bin)",
    )
    max_new_tokens: int = Field(
        default=512,
        ge=1,
        description="Upper bound on generated tokens per request",
    )
    use_cache: bool = Field(
        default=True,
        description="Decode incrementally with a KV cache",
    )
    gpu_memory_utilization: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Fraction of accelerator memory reserved for model and cache",
    )
    max_num_seqs: Optional[int] = Field(
        default=None,
        ge=1,
        description="Maximum concurrent sequences admitted by the serving layer",
    )
    seed: int = Field(
        default=42,
        ge=0,
        description="Seed for sampling and random initialization",
    )


class DeepseekOCRConfig(BaseModel):
    """
    Top-level config container. A file may hold only `global:`, or add
    `model:` and `inference:` for anything that loads weights. Sections not
    present stay None; callers check for what they need.
    """

    model_config = ConfigDict(
        frozen=True, extra="forbid", validate_default=True, populate_by_name=True
    )

    global_config: GlobalConfig = Field(alias="global")
    model: Optional[LanguageModelSchema] = Field(default=None)
    inference: Optional[InferenceConfig] = Field(default=None)
