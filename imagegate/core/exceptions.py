"""Application error taxonomy.

Every error a client can see is an ``AppError`` carrying its HTTP status,
a stable machine-readable ``code`` and optional ``details``. The exception
handler in ``imagegate.main`` renders them as the standard envelope::

    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str = "", details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_envelope(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class FileTooLargeError(ValidationError):
    code = "FILE_TOO_LARGE"


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Authentication required"


class InsufficientCreditsError(AppError):
    status_code = 402
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, required: int, balance: int | None = None):
        self.required = required
        self.balance = balance
        plural = "s" if required != 1 else ""
        super().__init__(
            f"You have insufficient credits. This operation requires {required} credit{plural}.",
            details={"required": required},
        )


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Forbidden"


class TierAccessError(ForbiddenError):
    def __init__(self, model_id: str, user_tier: str, required_tier: str):
        super().__init__(
            f"Model '{model_id}' requires the {required_tier} plan or higher.",
            details={"modelId": model_id, "tier": user_tier, "requiredTier": required_tier},
        )


class AccountNotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"No credit account for {owner_id}")


class RateLimitedError(AppError):
    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many requests. Please wait before trying again."


class AdmissionDenied(AppError):
    """Guest request refused by the admission controller.

    ``reason_code`` is one of GLOBAL_LIMIT, IP_LIMIT, BOT_DETECTED. Bot
    detection maps to 403, counter limits to 429.
    """

    def __init__(self, reason_code: str, message: str):
        self.reason_code = reason_code
        if reason_code == "BOT_DETECTED":
            self.status_code = 403
            self.code = "FORBIDDEN"
        else:
            self.status_code = 429
            self.code = "RATE_LIMITED"
        super().__init__(message, details={"reason": reason_code, "upgradeUrl": "/?signup=1"})


class ModelNotFoundError(AppError):
    """Unknown model id. A configuration bug, never a user error."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Model not configured: {model_id}")


class AIGenerationError(AppError):
    """The provider refused or failed to produce an image.

    ``finish_reason == "SAFETY"`` is a content-safety rejection and is
    reported to the client as 422.
    """

    def __init__(self, message: str, finish_reason: str = "ERROR"):
        self.finish_reason = finish_reason
        if finish_reason == "SAFETY":
            self.status_code = 422
            self.code = "INVALID_REQUEST"
        else:
            self.status_code = 500
            self.code = "PROCESSING_FAILED"
        super().__init__(message, details={"finishReason": finish_reason})


class ProcessingError(AppError):
    status_code = 500
    code = "PROCESSING_FAILED"
    default_message = "Processing failed. Please try again."
