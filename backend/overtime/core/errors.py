"""Error taxonomy raised by the overtime engine.

Every error carries a machine-readable ``code``, a human ``message`` and a
``details`` payload, plus the HTTP status the API layer answers with.
"""

from typing import Any


class OvertimeError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(OvertimeError):
    """Malformed input. Retrying the same call will fail the same way."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthorizationError(OvertimeError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"


class NotFoundError(OvertimeError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, details: dict[str, Any] | None = None):
        super().__init__(f"{resource} not found", details)


class ConflictError(OvertimeError):
    """Overlap, stale row version or already-decided step.

    Safe to retry after the caller refreshes its view of the resource.
    """

    status_code = 409
    code = "CONFLICT"


class IdempotencyKeyConflict(ConflictError):
    code = "IDEMPOTENCY_CONFLICT"


class BusinessRuleViolation(OvertimeError):
    """One or more policy rules failed. ``violations`` lists every one of them."""

    status_code = 422
    code = "BUSINESS_RULE_VIOLATION"

    def __init__(self, violations: list[dict[str, Any]]):
        self.violations = violations
        codes = ", ".join(v["code"] for v in violations)
        super().__init__(
            f"Business rules violated: {codes}",
            details={"violations": violations},
        )
