from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = frozenset(
    key.lower()
    for key in (
        "apiKey",
        "api_key",
        "password",
        "ssn",
        "socialSecurityNumber",
        "social_security_number",
        "accountNumber",
        "account_number",
        "routingNumber",
        "routing_number",
        "creditCard",
        "cardNumber",
        "cvv",
        "securityCode",
        "access_token",
        "accessToken",
        "clientSecret",
    )
)
REDACTED = "[REDACTED]"

_SSN_PATTERN = re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b")
_LONG_DIGITS_PATTERN = re.compile(r"(?<![\w-])\d{10,19}(?![\w-])")


class FinanceError(Exception):
    """Base for every failure raised by the finance integration layer."""

    code = "FINANCE_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details: dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        return self.message


class FinanceValidationError(FinanceError):
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        if field:
            merged.setdefault("field", field)
        super().__init__(message, code=code, details=merged)
        self.field = field


class FinanceAPIError(FinanceError):
    """The lender answered, but not with something we can use."""

    code = "API_ERROR"

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int = 500,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        merged.setdefault("provider", provider)
        merged.setdefault("lender_status", status_code)
        super().__init__(message, status_code=status_code, details=merged)
        self.provider = provider


class FinanceNotFoundError(FinanceAPIError):
    code = "NOT_FOUND"

    def __init__(self, message: str, provider: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, provider, 404, details=details)


class FinanceNetworkError(FinanceError):
    code = "NETWORK_ERROR"
    status_code = 503


class FinanceConfigurationError(FinanceError):
    code = "CREDENTIALS_REQUIRED"
    status_code = 503


class UnsupportedLenderError(FinanceError):
    code = "UNSUPPORTED_LENDER"
    status_code = 400

    def __init__(self, lender_id: str) -> None:
        super().__init__(
            f"Unsupported lender: {lender_id}",
            details={"lender_id": lender_id},
        )
        self.lender_id = lender_id


class DuplicateApplicationError(FinanceError):
    """An active application for the same proposal and lender already exists."""

    code = "DUPLICATE_APPLICATION"
    status_code = 409

    def __init__(self, existing_application_id: str) -> None:
        super().__init__(
            "An active finance application already exists for this proposal",
            details={
                "existing_application_id": existing_application_id,
                "existingApplicationId": existing_application_id,
            },
        )
        self.existing_application_id = existing_application_id


def _mask_text(value: str) -> str:
    value = _SSN_PATTERN.sub("***-**-****", value)
    return _LONG_DIGITS_PATTERN.sub(lambda match: f"****{match.group(0)[-4:]}", value)


def redact_sensitive_data(data: Any) -> Any:
    """Return a copy of ``data`` that is safe to write to logs."""
    if isinstance(data, dict):
        redacted = {}
        for key, value in data.items():
            if str(key).lower() in SENSITIVE_KEYS and value not in (None, ""):
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_sensitive_data(value)
        return redacted
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item) for item in data]
    if isinstance(data, str):
        return _mask_text(data)
    return data


def format_finance_error(error: BaseException) -> str:
    if isinstance(error, FinanceError):
        return error.message
    return str(error) or "An unexpected error occurred"


def log_finance_error(error: BaseException, context: str | None = None) -> None:
    prefix = f"[finance:{context}]" if context else "[finance]"
    if isinstance(error, FinanceError):
        extra = {
            "finance_details": redact_sensitive_data(
                {"code": error.code, "status_code": error.status_code, **error.details}
            )
        }
        if isinstance(error, FinanceValidationError):
            logger.warning("%s validation error: %s", prefix, error.message, extra=extra)
        else:
            logger.error("%s %s: %s", prefix, error.code.lower(), _mask_text(error.message), extra=extra)
        return
    logger.error("%s unexpected error: %s", prefix, _mask_text(str(error)), exc_info=error)
