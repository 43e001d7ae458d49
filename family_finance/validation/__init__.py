"""Validation package."""

from family_finance.validation.validator import ObligationValidator

__all__ = ["ObligationValidator"]
