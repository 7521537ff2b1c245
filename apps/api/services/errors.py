"""Domain error taxonomy shared by the ledger, billing and verification services."""

from __future__ import annotations

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for errors reported to the immediate caller."""

    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data: Dict[str, Any] = dict(data or {})

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.data}


class NotFoundError(DomainError):
    code = "not_found"
    status_code = 404


class ConflictError(DomainError):
    code = "conflict"
    status_code = 409


class ForbiddenError(DomainError):
    code = "forbidden"
    status_code = 403


class InvalidArgumentError(DomainError):
    code = "invalid_argument"
    status_code = 400


class InsufficientCreditsError(DomainError):
    """Raised when a debit would exceed the available balance."""

    code = "insufficient_credits"
    status_code = 402

    def __init__(self, required_credits: int, available_credits: int, message: Optional[str] = None):
        self.required_credits = int(required_credits)
        self.available_credits = int(available_credits)
        super().__init__(
            message
            or (
                f"Insufficient credits. Required: {self.required_credits}, "
                f"available: {self.available_credits}. Top up credits to continue."
            ),
            data={
                "required_credits": self.required_credits,
                "available_credits": self.available_credits,
                "shortfall": max(self.required_credits - self.available_credits, 0),
            },
        )
