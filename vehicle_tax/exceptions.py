"""
Typed errors raised by the vehicle tax engine.

Every error carries a stable ``code`` so callers can branch on the kind of
failure instead of parsing message text.
"""

from __future__ import annotations

from typing import Any, Optional


class TaxCalculationError(Exception):
    """Base class for all engine errors."""

    code = "TAX_CALCULATION_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class JurisdictionNotFoundError(TaxCalculationError):
    code = "JURISDICTION_NOT_FOUND"

    def __init__(self, postal_code: str, as_of: Any = None) -> None:
        where = f" as of {as_of}" if as_of is not None else ""
        super().__init__(
            f"Tax jurisdiction not found for postal code: {postal_code}{where}",
            details={"postal_code": postal_code, "as_of": str(as_of) if as_of else None},
        )
        self.postal_code = postal_code


class UnsupportedStateError(TaxCalculationError):
    code = "UNSUPPORTED_STATE"

    def __init__(self, state: str, as_of: Any = None) -> None:
        where = f" as of {as_of}" if as_of is not None else ""
        super().__init__(
            f"Tax calculations not supported for state: {state}{where}",
            details={"state": state},
        )
        self.state = state


class InvalidTaxCalculationError(TaxCalculationError):
    code = "INVALID_CALCULATION"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, details={"field": field} if field else {})
        self.field = field


class ValidationFailedError(TaxCalculationError):
    code = "VALIDATION_FAILED"

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            "Tax calculation validation failed: " + "; ".join(errors),
            details={"errors": list(errors)},
        )
        self.errors = list(errors)


class OverlappingEffectiveWindowError(TaxCalculationError):
    code = "OVERLAPPING_WINDOW"


class AuditImmutabilityError(TaxCalculationError):
    code = "AUDIT_IMMUTABLE"


class AuditRecordNotFoundError(TaxCalculationError):
    code = "AUDIT_NOT_FOUND"

    def __init__(self, calculation_id: str) -> None:
        super().__init__(
            f"No audit record for calculation: {calculation_id}",
            details={"calculation_id": calculation_id},
        )
