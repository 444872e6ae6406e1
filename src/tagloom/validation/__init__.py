"""Validation domain: structural, referential, uniqueness and cycle checks, complexity."""

from tagloom.validation.complexity import ComplexityAnalysis, analyze_complexity
from tagloom.validation.cycles import find_all_cycles, find_dependency_cycle, format_cycle
from tagloom.validation.engine import (
    CollectionValidation,
    ValidationContext,
    ValidationResult,
    validate_collection,
    validate_tag,
)

__all__ = [
    "CollectionValidation",
    "ComplexityAnalysis",
    "ValidationContext",
    "ValidationResult",
    "analyze_complexity",
    "find_all_cycles",
    "find_dependency_cycle",
    "format_cycle",
    "validate_collection",
    "validate_tag",
]
