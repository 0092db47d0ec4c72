# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""Linear Gaussian factors, conditionals and Bayes nets."""
