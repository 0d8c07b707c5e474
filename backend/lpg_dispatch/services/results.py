# Overview: Structured operation results returned across the service boundary.

"""
Every public core operation returns an ActionResult instead of raising.

Callers (routes, CLI) display ``error`` and may retry; ``code`` lets them
pick a status without parsing the message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# Error codes
UNAUTHORIZED = "unauthorized"
NOT_FOUND = "not_found"  # absent OR another tenant's; deliberately conflated
VALIDATION = "validation"
INSUFFICIENT_STOCK = "insufficient_stock"
ZERO_STOCK = "zero_stock"
INSUFFICIENT_FUNDS = "insufficient_funds"
OWNERSHIP_VALIDATION_FAILURE = "ownership_validation_failure"
ORDER_UPDATE_FAILURE = "order_update_failure"
FINANCIAL_RECORD_FAILURE = "financial_record_failure"
ASSET_MOVE_FAILURE = "asset_move_failure"
EXTERNAL_PROCEDURE_FAILURE = "external_procedure_failure"
RECORD_UPDATE_FAILURE = "record_update_failure"

HTTP_STATUS_BY_CODE = {
    UNAUTHORIZED: 401,
    NOT_FOUND: 404,
    VALIDATION: 400,
    INSUFFICIENT_FUNDS: 400,
    INSUFFICIENT_STOCK: 409,
    ZERO_STOCK: 409,
    OWNERSHIP_VALIDATION_FAILURE: 409,
    ORDER_UPDATE_FAILURE: 500,
    FINANCIAL_RECORD_FAILURE: 500,
    ASSET_MOVE_FAILURE: 500,
    EXTERNAL_PROCEDURE_FAILURE: 502,
    RECORD_UPDATE_FAILURE: 500,
}


class ServiceError(Exception):
    """Base for typed service failures; carries an error code."""

    code = VALIDATION

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code


@dataclass
class ActionResult:
    success: bool
    error: str | None = None
    code: str | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str | None = None, **data) -> "ActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: str, code: str = VALIDATION) -> "ActionResult":
        return cls(success=False, error=error, code=code)

    @classmethod
    def from_error(cls, exc: ServiceError) -> "ActionResult":
        return cls.fail(str(exc), exc.code)

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return HTTP_STATUS_BY_CODE.get(self.code, 400)

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False, "error": self.error, "code": self.code}
        body: dict[str, Any] = {"success": True}
        if self.message:
            body["message"] = self.message
        body.update(self.data)
        return body
