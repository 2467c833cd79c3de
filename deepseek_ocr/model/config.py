# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Model configuration for the DeepSeek-OCR language core.

This is a plain data object (not Pydantic) because it travels through torch
modules and needs to be lightweight. Validation happens in config/schema.py;
runtime/loader.py bridges the validated schema into this class.

One instance is shared by reference by every module of a loaded model and is
never mutated after construction.
"""

from typing import Optional


class LanguageModelConfig:
    """
    Configuration for the text decoder.

    Args:
        vocab_size: Size of the token vocabulary.
        dim: Hidden dimension of the model.
        n_layers: Number of decoder layers.
        n_heads: Number of attention heads.
        head_dim: Dimension per attention head.
        intermediate_dim: SwiGLU hidden size of dense feed-forward layers.
        norm_eps: Epsilon for RMSNorm.
        rope_theta: Base frequency for RoPE.
        max_position_embeddings: Size of the precomputed rotary table.
        attn_implementation: Attention kernel selector from the model config
            (``"flash_attention_2"`` asks for the fused kernel).
        n_routed_experts: Routed experts per MoE layer (0 = dense stack).
        n_shared_experts: Always-active experts per MoE layer.
        num_experts_per_tok: Experts each token is routed to.
        moe_intermediate_dim: SwiGLU hidden size of each expert.
        first_k_dense_replace: Leading layers that stay dense.
        norm_topk_prob: Renormalize selected routing weights.
        aux_loss_alpha: Scale of the load-balancing loss.
        init_std: Standard deviation for random initialization.
        seed: Random seed for deterministic initialization.
    """

    __slots__ = (
        "vocab_size",
        "dim",
        "n_layers",
        "n_heads",
        "head_dim",
        "intermediate_dim",
        "norm_eps",
        "rope_theta",
        "max_position_embeddings",
        "attn_implementation",
        "n_routed_experts",
        "n_shared_experts",
        "num_experts_per_tok",
        "moe_intermediate_dim",
        "first_k_dense_replace",
        "norm_topk_prob",
        "aux_loss_alpha",
        "init_std",
        "seed",
    )

    def __init__(
        self,
        vocab_size: int,
        dim: int,
        n_layers: int,
        n_heads: int,
        head_dim: int,
        intermediate_dim: int,
        norm_eps: float = 1e-6,
        rope_theta: float = 10000.0,
        max_position_embeddings: int = 8192,
        attn_implementation: Optional[str] = None,
        n_routed_experts: int = 0,
        n_shared_experts: int = 0,
        num_experts_per_tok: int = 1,
        moe_intermediate_dim: int = 0,
        first_k_dense_replace: int = 0,
        norm_topk_prob: bool = False,
        aux_loss_alpha: float = 0.001,
        init_std: float = 0.02,
        seed: int = 42,
    ) -> None:
        self.vocab_size = vocab_size
        self.dim = dim
        self.n_layers = n_layers
        self.n_heads = n_heads
        self.head_dim = head_dim
        self.intermediate_dim = intermediate_dim
        self.norm_eps = norm_eps
        self.rope_theta = rope_theta
        self.max_position_embeddings = max_position_embeddings
        self.attn_implementation = attn_implementation
        self.n_routed_experts = n_routed_experts
        self.n_shared_experts = n_shared_experts
        self.num_experts_per_tok = num_experts_per_tok
        self.moe_intermediate_dim = moe_intermediate_dim
        self.first_k_dense_replace = first_k_dense_replace
        self.norm_topk_prob = norm_topk_prob
        self.aux_loss_alpha = aux_loss_alpha
        self.init_std = init_std
        self.seed = seed

    def is_moe_layer(self, layer_idx: int) -> bool:
        """Whether decoder layer ``layer_idx`` uses the gated MoE feed-forward."""
        return self.n_routed_experts > 0 and layer_idx >= self.first_k_dense_replace

    @property
    def has_moe(self) -> bool:
        """True when at least one layer is MoE, i.e. an aux loss is produced."""
        return any(self.is_moe_layer(idx) for idx in range(self.n_layers))

    @property
    def mlp_type(self) -> str:
        """Registry name of the dense feed-forward layer."""
        return "swiglu"
