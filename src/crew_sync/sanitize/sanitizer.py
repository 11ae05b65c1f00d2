"""Generic payload sanitization for remote transmission.

The wire format is JSON-shaped: mappings with string keys, lists, strings,
finite numbers, booleans and null. ``sanitize`` normalizes an arbitrary
Python value into that shape and reports what it had to change:

- ``UNDEFINED`` in a mapping is dropped; inside a list it becomes ``None``
  (lists cannot have holes).
- ``NaN``/``±inf`` become ``None``.
- Strings are trimmed.
- Tuples become lists, datetimes become epoch milliseconds.
- Mapping keys become strings; keys that collide once coerced are rejected.

The function is pure and idempotent: feeding its output back in returns an
equal value and an empty report.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from crew_sync.errors import ValidationError


class _Undefined:
    """Marker for "no value", distinct from ``None`` (which is JSON null)."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED: Any = _Undefined()

ROOT_PATH = "(root)"


@dataclass
class SanitizeReport:
    """What sanitization changed. Empty when the input was already clean."""

    removed_paths: list[str] = field(default_factory=list)
    numeric_corrections: list[str] = field(default_factory=list)
    string_corrections: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.removed_paths
            or self.numeric_corrections
            or self.string_corrections
            or self.warnings
        )

    def extend(self, other: SanitizeReport) -> None:
        self.removed_paths.extend(other.removed_paths)
        self.numeric_corrections.extend(other.numeric_corrections)
        self.string_corrections.extend(other.string_corrections)
        self.warnings.extend(other.warnings)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "removed_paths": list(self.removed_paths),
            "numeric_corrections": list(self.numeric_corrections),
            "string_corrections": list(self.string_corrections),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class SanitizeResult:
    """Sanitized value plus the report describing the changes."""

    cleaned: Any
    report: SanitizeReport


def join_path(parent: str, key: str | int) -> str:
    """Join document path segments with dots."""
    if not parent:
        return str(key)
    return f"{parent}.{key}"


def sanitize(value: Any, doc_path: str = ROOT_PATH, path: str = "") -> SanitizeResult:
    """Sanitize ``value`` for transmission.

    Args:
        value: Arbitrary structured value.
        doc_path: Document path used in error messages (e.g. ``"jobs/42"``).
        path: Field path prefix for report entries.

    Raises:
        ValidationError: if the value (or something inside it) has a type the
            wire format cannot represent at all.
    """
    report = SanitizeReport()
    if value is UNDEFINED:
        report.removed_paths.append(path or ROOT_PATH)
        return SanitizeResult(cleaned=None, report=report)
    cleaned = _sanitize(value, path, report, doc_path)
    return SanitizeResult(cleaned=cleaned, report=report)


def _sanitize(value: Any, path: str, report: SanitizeReport, doc_path: str) -> Any:
    if value is None:
        return None

    if isinstance(value, bool):
        return value

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            report.numeric_corrections.append(path or ROOT_PATH)
            return None
        return value

    if isinstance(value, str):
        trimmed = value.strip()
        if trimmed != value:
            report.string_corrections.append(path or ROOT_PATH)
        return trimmed

    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=UTC)
        report.numeric_corrections.append(path or ROOT_PATH)
        return int(aware.timestamp() * 1000)

    if isinstance(value, dict):
        cleaned: dict[str, Any] = {}
        for key, raw in value.items():
            child_path = join_path(path, key)
            if raw is UNDEFINED:
                report.removed_paths.append(child_path)
                continue
            name = key if isinstance(key, str) else str(key)
            if name in cleaned:
                raise ValidationError(child_path, doc_path, "duplicate key after string coercion")
            if name is not key:
                report.string_corrections.append(child_path)
            cleaned[name] = _sanitize(raw, child_path, report, doc_path)
        return cleaned

    if isinstance(value, (list, tuple)):
        items: list[Any] = []
        for index, raw in enumerate(value):
            child_path = join_path(path, index)
            if raw is UNDEFINED:
                report.removed_paths.append(child_path)
                items.append(None)
                continue
            items.append(_sanitize(raw, child_path, report, doc_path))
        return items

    raise ValidationError(
        path or ROOT_PATH,
        doc_path,
        f"unsupported value type {type(value).__name__}",
    )
