# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Exception hierarchy for HybridJIT.

All failures are local, synchronous precondition violations raised at the
point where they are detected; nothing is retried internally.

Hierarchy:
    HybridError
    ├── MissingAssignmentError     – a query needs a key the values lack
    ├── UnresolvedParentError      – sampling/solving reached an unresolved parent
    ├── MissingMeasurementError    – measurements only partly cover a conditional
    ├── DegenerateAssignmentError  – no discrete assignment has positive support
    ├── StructuralMismatchError    – categories, key sets or cardinalities disagree
    └── ConfigurationError         – invalid configuration value
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


class HybridError(Exception):
    """Base class for all HybridJIT errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error_type": type(self).__name__, "message": self.message}


class MissingAssignmentError(HybridError):
    """A discrete or continuous value needed on the traversed path is absent."""

    def __init__(self, key: Any, message: Optional[str] = None) -> None:
        self.key = key
        super().__init__(message or f"No value assigned to key {key}")

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["key"] = self.key
        return result


class UnresolvedParentError(HybridError):
    """A conditional was visited before one of its parents was resolved."""

    def __init__(self, key: Any, message: Optional[str] = None) -> None:
        self.key = key
        super().__init__(
            message or f"Parent key {key} is neither given nor produced earlier in the walk"
        )

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["key"] = self.key
        return result


class MissingMeasurementError(HybridError):
    """Measurements cover only part of a conditional's frontal keys."""

    def __init__(self, keys: Iterable[Any], message: Optional[str] = None) -> None:
        self.keys = tuple(keys)
        super().__init__(message or f"Missing measurements for frontal keys {list(self.keys)}")

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["keys"] = list(self.keys)
        return result


class DegenerateAssignmentError(HybridError):
    """No discrete assignment (or the requested one) has positive support."""
    pass


class StructuralMismatchError(HybridError):
    """Two entities disagree in category, keys, cardinalities or payload."""
    pass


class ConfigurationError(HybridError):
    """Invalid configuration value."""

    def __init__(self, message: str, config_key: Optional[str] = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result
