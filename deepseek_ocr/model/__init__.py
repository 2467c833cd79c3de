# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
DeepSeek-OCR language model package.

Decoder-only transformer used as the text decoder of DeepSeek-OCR:
  - RMSNorm (pre-norm blocks and final norm)
  - RoPE positional encoding gathered at explicit position ids
  - Multi-head causal self-attention, standard or fused kernel
  - SwiGLU feedforward, gated mixture-of-experts after the first layers
  - Untied embedding / LM head
  - Append-only KV cache for incremental decoding
"""
