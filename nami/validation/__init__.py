"""Validation package."""

from nami.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
