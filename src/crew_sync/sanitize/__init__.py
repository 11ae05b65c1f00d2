"""Payload sanitization and document validation."""

from crew_sync.sanitize.sanitizer import (
    UNDEFINED,
    SanitizeReport,
    SanitizeResult,
    sanitize,
)
from crew_sync.sanitize.schema import prepare_document, prepare_mutation

__all__ = [
    "UNDEFINED",
    "SanitizeReport",
    "SanitizeResult",
    "sanitize",
    "prepare_document",
    "prepare_mutation",
]
