from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    """Base error for the core and the HTTP layer.

    ``kind`` is the stable error category callers switch on; ``code`` is the
    machine-readable identifier rendered to clients.
    """

    kind = "error"
    default_status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        status_code: int | None = None,
        code: str | None = None,
        message: str = "",
    ):
        message = message or self.default_code
        super().__init__(message)
        self.status_code = status_code or self.default_status_code
        self.code = code or self.default_code
        self.message = message


class ValidationError(ApiError):
    kind = "validation"
    default_status_code = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None, code: str | None = None):
        super().__init__(code=code, message=message)
        self.field = field


class InvalidIdError(ValidationError):
    default_code = "INVALID_ID"


class NotFoundError(ApiError):
    kind = "notFound"
    default_status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, message: str = "Document not found.", *, code: str | None = None):
        super().__init__(code=code, message=message)


class DuplicateKeyError(ApiError):
    kind = "duplicate"
    default_status_code = 409
    default_code = "DUPLICATE_KEY"

    def __init__(self, message: str = "Duplicate key.", *, code: str | None = None):
        super().__init__(code=code, message=message)


class StoreTimeoutError(ApiError):
    kind = "timeout"
    default_status_code = 504
    default_code = "STORE_TIMEOUT"

    def __init__(self, message: str = "Store operation deadline exceeded.", *, code: str | None = None):
        super().__init__(code=code, message=message)


class StoreError(ApiError):
    default_code = "STORE_ERROR"

    def __init__(self, message: str = "Store operation failed.", *, code: str | None = None):
        super().__init__(code=code, message=message)


# Secret codec


class CiphertextError(ApiError):
    kind = "invalidCiphertext"
    default_code = "INVALID_CIPHERTEXT"

    def __init__(self, message: str = "Ciphertext cannot be decrypted."):
        super().__init__(message=message)


class KeyUnavailableError(ApiError):
    kind = "keyUnavailable"
    default_code = "ENCRYPTION_KEY_UNAVAILABLE"

    def __init__(self, message: str = "Encryption key is unavailable."):
        super().__init__(message=message)


# Activity log


class InvalidActivityKindError(ValidationError):
    default_code = "INVALID_ACTIVITY_TYPE"

    def __init__(self, activity_type: object):
        super().__init__(f"invalid activity type: {activity_type}", field="type")
        self.activity_type = activity_type


class InvalidActivityDataError(ValidationError):
    default_code = "INVALID_ACTIVITY_DATA"


class ActivityNotFoundError(NotFoundError):
    default_code = "ACTIVITY_NOT_FOUND"

    def __init__(self, message: str = "Activity not found."):
        super().__init__(message)


# Integrations


class InvalidIntegrationTypeError(ValidationError):
    default_code = "INVALID_INTEGRATION_TYPE"

    def __init__(self, integration_type: object):
        super().__init__(f"invalid integration type: {integration_type}", field="type")
        self.integration_type = integration_type


class InvalidApiKeyError(ValidationError):
    default_code = "INVALID_API_KEY"

    def __init__(self, message: str = "API key must not be empty."):
        super().__init__(message, field="api_key")


class InvalidMetadataError(ValidationError):
    default_code = "INVALID_METADATA"


class IntegrationNotFoundError(NotFoundError):
    default_code = "INTEGRATION_NOT_FOUND"

    def __init__(self, integration_type: str):
        super().__init__(f"integration not found: {integration_type}")
        self.integration_type = integration_type


class ApiKeyMissingError(NotFoundError):
    default_code = "API_KEY_MISSING"

    def __init__(self, integration_type: str):
        super().__init__(f"integration {integration_type} has no API key configured")
        self.integration_type = integration_type


class IntegrationInactiveError(ApiError):
    kind = "inactive"
    default_status_code = 409
    default_code = "INTEGRATION_INACTIVE"

    def __init__(self, integration_type: str):
        super().__init__(message=f"integration {integration_type} is not active")
        self.integration_type = integration_type


class IntegrationExistsError(DuplicateKeyError):
    default_code = "INTEGRATION_EXISTS"

    def __init__(self, integration_type: str):
        super().__init__(f"integration already exists: {integration_type}")
        self.integration_type = integration_type


# System settings


class InvalidSettingsError(ValidationError):
    default_code = "INVALID_SETTINGS"


class SettingsAlreadyExistError(DuplicateKeyError):
    default_code = "SETTINGS_ALREADY_EXIST"

    def __init__(self) -> None:
        super().__init__("system settings already exist")


class EmailNotificationsDisabledError(ApiError):
    kind = "validation"
    default_status_code = 409
    default_code = "EMAIL_NOTIFICATIONS_DISABLED"

    def __init__(self) -> None:
        super().__init__(message="email notifications are not enabled")


# Overtime adjustments


class InvalidAdjustmentError(ValidationError):
    default_code = "INVALID_ADJUSTMENT"


class InvalidStatusError(ValidationError):
    default_code = "INVALID_STATUS"

    def __init__(self, status: object):
        super().__init__(f"invalid adjustment status: {status}", field="status")
        self.status = status


class AdjustmentNotFoundError(NotFoundError):
    default_code = "ADJUSTMENT_NOT_FOUND"

    def __init__(self, adjustment_id: str):
        super().__init__(f"overtime adjustment not found: {adjustment_id}")
        self.adjustment_id = adjustment_id


class AlreadyProcessedError(ApiError):
    kind = "alreadyProcessed"
    default_status_code = 409
    default_code = "ALREADY_PROCESSED"

    def __init__(self, adjustment_id: str, current_status: str):
        super().__init__(
            message=f"overtime adjustment {adjustment_id} was already processed (status: {current_status})"
        )
        self.adjustment_id = adjustment_id
        self.current_status = current_status


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
