"""Validation and sanity checks for reward runs."""

from .sanity_checks import SanityChecker, ValidationWarning, validate_run_history

__all__ = [
    "SanityChecker",
    "ValidationWarning",
    "validate_run_history"
]
