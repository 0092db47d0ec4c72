# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Equality helpers shared by the test-suite and by callers that need to check
two model entities against each other.

Every entity in HybridJIT (trees, factors, conditionals, nets, values)
exposes ``equals(other, tol)`` and ``render()``. :func:`assert_equal` turns a
failed comparison into a :class:`StructuralMismatchError` carrying both
renderings, which is far easier to read in a pytest report than a bare
``assert a.equals(b)``.
"""

from __future__ import annotations

from typing import Any, Optional

from .config import get_config
from .errors import StructuralMismatchError


def _render(obj: Any) -> str:
    if hasattr(obj, "render"):
        return obj.render()
    return repr(obj)


def assert_equal(expected: Any, actual: Any, tol: Optional[float] = None) -> None:
    """Raise :class:`StructuralMismatchError` unless ``expected.equals(actual, tol)``."""
    tol = get_config().equals_tol if tol is None else tol
    if type(expected) is not type(actual):
        raise StructuralMismatchError(
            f"Type mismatch: expected {type(expected).__name__}, "
            f"got {type(actual).__name__}"
        )
    if not expected.equals(actual, tol):
        raise StructuralMismatchError(
            "Not equal within tolerance {}:\nexpected:\n{}\nactual:\n{}".format(
                tol, _render(expected), _render(actual)
            )
        )
