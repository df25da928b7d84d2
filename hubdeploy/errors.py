from typing import Any


class DeployError(Exception):
    """Base class for errors raised by the deployment and mapping services."""

    code = "deploy_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            detail.update(self.details)
        return detail


class ValidationError(DeployError):
    code = "validation_failed"

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(message, details={"errors": errors} if errors else None)
        self.errors = errors or []


class NotFoundError(DeployError):
    code = "not_found"


class ConflictError(DeployError):
    code = "conflict"


class InvalidStateError(DeployError):
    code = "invalid_state"

    def __init__(self, deployment_id: str, current: str, expected: list[str]) -> None:
        super().__init__(
            f"Deployment {deployment_id} is {current}, expected one of: {', '.join(expected)}",
            details={"current_status": current, "expected_status": expected},
        )
        self.current = current
        self.expected = expected


class RemoteError(DeployError):
    code = "hubspot_request_failed"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        response: Any = None,
    ) -> None:
        details: dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, code=code, details=details)
        self.status_code = status_code
        self.response = response


class TransientError(RemoteError):
    code = "hubspot_unavailable"


class RejectedError(RemoteError):
    code = "hubspot_rejected"


class PartialRollbackError(DeployError):
    code = "partial_rollback"

    def __init__(self, deployment_id: str, remaining: list[dict[str, Any]]) -> None:
        super().__init__(
            f"Rollback of deployment {deployment_id} left {len(remaining)} entities in place",
            details={"remaining": remaining},
        )
        self.remaining = remaining
