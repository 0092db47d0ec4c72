# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""Keys, values, configuration, errors and the decision-tree algebra."""
