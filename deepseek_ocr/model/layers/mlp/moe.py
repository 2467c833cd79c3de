# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Gated mixture-of-experts feedforward.

Every token is scored against all routed experts with a softmax gate, sent
to its top-k experts, and the expert outputs are summed with the routing
weights. Shared experts see every token and are added on top.

The gate also produces a load-balancing penalty:

    aux_loss = alpha * Σ_i P_i · f_i

where P_i is the mean routing probability of expert i and f_i is the
fraction of routing slots it received, scaled by the number of experts. The
penalty is computed on every call so an MoE model always reports it, in
training and inference alike.
"""

from typing import Optional

import torch
import torch.nn as nn
import torch.nn.functional as F

from deepseek_ocr.model.interfaces import FeedForwardBase
from deepseek_ocr.model.layers.mlp.swiglu import SwiGLUFeedForward
from deepseek_ocr.model.registry import register_feed_forward


class MoEGate(nn.Module):
    """
    Softmax top-k router.

    Args:
        dim: Model hidden dimension.
        n_experts: Number of routed experts.
        top_k: Experts selected per token.
        norm_topk_prob: Renormalize selected weights to sum to one.
        aux_loss_alpha: Scale of the load-balancing loss.
    """

    def __init__(
        self,
        dim: int,
        n_experts: int,
        top_k: int,
        norm_topk_prob: bool = False,
        aux_loss_alpha: float = 0.001,
    ) -> None:
        super().__init__()
        self.n_experts = n_experts
        self.top_k = top_k
        self.norm_topk_prob = norm_topk_prob
        self.alpha = aux_loss_alpha
        self.weight = nn.Parameter(torch.empty(n_experts, dim))
        nn.init.normal_(self.weight, std=0.02)

    def forward(
        self, x_flat: torch.Tensor
    ) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Route flattened tokens.

        Args:
            x_flat: Tensor of shape (tokens, dim).

        Returns:
            (topk_idx, topk_weight, aux_loss) with index/weight tensors of
            shape (tokens, top_k) and a scalar float32 loss.
        """
        scores = F.linear(x_flat.float(), self.weight.float()).softmax(dim=-1)
        topk_weight, topk_idx = torch.topk(scores, k=self.top_k, dim=-1, sorted=False)

        if self.top_k > 1 and self.norm_topk_prob:
            topk_weight = topk_weight / (topk_weight.sum(dim=-1, keepdim=True) + 1e-20)

        slot_share = F.one_hot(topk_idx.reshape(-1), num_classes=self.n_experts).float().mean(0)
        mean_prob = scores.mean(0)
        aux_loss = (mean_prob * slot_share * self.n_experts).sum() * self.alpha

        return topk_idx, topk_weight, aux_loss


class MoEFeedForward(FeedForwardBase):
    """
    Mixture-of-experts layer with routed and shared SwiGLU experts.

    Args:
        dim: Model hidden dimension.
        intermediate_dim: SwiGLU hidden size of each expert.
        n_routed_experts: Number of routed experts.
        num_experts_per_tok: Experts each token is sent to.
        n_shared_experts: Always-active experts, fused into one SwiGLU of
                          width ``intermediate_dim * n_shared_experts``.
        norm_topk_prob: Renormalize selected routing weights.
        aux_loss_alpha: Scale of the load-balancing loss.
    """

    def __init__(
        self,
        dim: int,
        intermediate_dim: int,
        n_routed_experts: int,
        num_experts_per_tok: int,
        n_shared_experts: int = 0,
        norm_topk_prob: bool = False,
        aux_loss_alpha: float = 0.001,
    ) -> None:
        super().__init__()
        self.experts = nn.ModuleList(
            [SwiGLUFeedForward(dim, intermediate_dim) for _ in range(n_routed_experts)]
        )
        self.gate = MoEGate(
            dim,
            n_routed_experts,
            num_experts_per_tok,
            norm_topk_prob=norm_topk_prob,
            aux_loss_alpha=aux_loss_alpha,
        )
        self.shared_experts = (
            SwiGLUFeedForward(dim, intermediate_dim * n_shared_experts)
            if n_shared_experts > 0
            else None
        )

    def forward(self, x: torch.Tensor) -> tuple[torch.Tensor, Optional[torch.Tensor]]:
        """
        Args:
            x: Input tensor of shape (batch, seq_len, dim).

        Returns:
            (output of the same shape, scalar aux loss)
        """
        orig_shape = x.shape
        x_flat = x.reshape(-1, orig_shape[-1])
        topk_idx, topk_weight, aux_loss = self.gate(x_flat)

        routed = torch.zeros_like(x_flat)
        for expert_idx, expert in enumerate(self.experts):
            token_idx, slot = torch.where(topk_idx == expert_idx)
            if token_idx.numel() == 0:
                continue
            expert_out = expert.project(x_flat[token_idx])
            weight = topk_weight[token_idx, slot].unsqueeze(-1).to(expert_out.dtype)
            routed.index_add_(0, token_idx, expert_out * weight)

        y = routed.view(orig_shape)
        if self.shared_experts is not None:
            y = y + self.shared_experts.project(x)
        return y, aux_loss


register_feed_forward("moe", MoEFeedForward)
