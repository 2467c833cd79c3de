# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Normalization layer implementations.

Importing this package registers all built-in Norm types with the registry.
"""

from deepseek_ocr.model.layers.norm.rmsnorm import RMSNormLayer, rms_norm

__all__ = ["RMSNormLayer", "rms_norm"]
