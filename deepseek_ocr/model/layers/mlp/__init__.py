# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Feed-forward layer implementations.

Importing this package registers the "swiglu" and "moe" types.
"""

from deepseek_ocr.model.layers.mlp.moe import MoEFeedForward, MoEGate
from deepseek_ocr.model.layers.mlp.swiglu import SwiGLUFeedForward

__all__ = ["MoEFeedForward", "MoEGate", "SwiGLUFeedForward"]
