# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""Dense elimination kernels."""
