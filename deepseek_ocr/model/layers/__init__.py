# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Pluggable layer implementations for the language model.

Each subdirectory (attention/, mlp/, norm/) contains concrete implementations
that register themselves with the layer registry on import.
"""
