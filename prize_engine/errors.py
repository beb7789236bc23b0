# prize_engine/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class PrizeEngineError(ValueError):
    """Base error of the rule engine; carries a stable code for API responses."""

    code = "prize_engine_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(PrizeEngineError):
    """Malformed rule or match context; rejected before matching/computation."""

    code = "validation_error"
    status_code = 400


class RuleNotFoundError(PrizeEngineError):
    code = "not_found"
    status_code = 404


class NoApplicableRuleError(PrizeEngineError):
    """No rule matched and no active default rule exists.

    Fatal for the payout run of that match until an operator configures a
    default rule.
    """

    code = "no_applicable_rule"
    status_code = 404


class UnsupportedDistributionTypeError(PrizeEngineError):
    """Distribution type has no computed path (percentage, custom)."""

    code = "unsupported_distribution_type"
    status_code = 422


class ConcurrentModificationError(PrizeEngineError):
    """Stored version differs from the expected one; re-read and retry."""

    code = "concurrent_modification"
    status_code = 409
