# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

from dataclasses import dataclass
from typing import Optional

import torch


@dataclass(frozen=True, eq=False)
class LanguageModelOutput:
    """
    Result of one forward call.

    Attributes:
        hidden_states: Final hidden states after the output RMSNorm,
                       shape (batch, seq_len, dim).
        logits: Shape (batch, seq_len, vocab_size).
        aux_loss: Summed MoE load-balancing loss. Always a tensor for models
                  with MoE layers and always None for dense models.
    """

    hidden_states: torch.Tensor
    logits: torch.Tensor
    aux_loss: Optional[torch.Tensor] = None

    def last_token_logits(self) -> torch.Tensor:
        """Logits of the final position of every row, shape (batch, vocab_size)."""
        return self.logits[:, -1, :]
