"""Exceptions for the publishing pipeline.

Every error carries a human-readable message and a ``details`` dict that the
HTTP layer can expose.  Validation and eligibility checks do *not* raise these
for a negative outcome; they return structured results instead.  The classes
here cover the failures that must stop the current operation.
"""

from __future__ import annotations

from typing import Any


class PlatformError(Exception):
    """Base exception for all platform-related errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


class CredentialsMissing(PlatformError):
    """The app id / app secret are not configured on the server."""


class Unauthorized(PlatformError):
    """The caller is not authenticated."""


class Forbidden(PlatformError):
    """The caller does not own the local campaign."""


class TokenMissing(PlatformError):
    """No delegated token is stored for the campaign; the user must connect."""


class TokenRequired(TokenMissing):
    """A check that needs the user's token was called without one."""


class TokenExpired(PlatformError):
    """The stored token is past its expiry or was invalidated by the platform."""


class ExchangeRejected(PlatformError):
    """The platform refused to exchange the short-lived token."""


class CompatibilityError(PlatformError):
    """The selected Business / Page / Ad Account cannot be used together."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(reason, details)
        self.reason = reason


class PaymentIneligible(PlatformError):
    """The ad account cannot receive a payment method right now."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(reason, details)
        self.reason = reason


class InvalidLaunchSpec(PlatformError):
    """The launch input cannot drive the next pipeline step."""


class InvalidPublishTarget(PlatformError):
    """The object to publish was not created by this campaign's pipeline."""


class RemoteAPIError(PlatformError):
    """Error returned by the Graph API, passed through unchanged."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        subcode: int | None = None,
        error_type: str | None = None,
        http_status: int | None = None,
        fbtrace_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "code": code,
                "subcode": subcode,
                "type": error_type,
                "http_status": http_status,
                "fbtrace_id": fbtrace_id,
            },
        )
        self.code = code
        self.subcode = subcode
        self.error_type = error_type
        self.http_status = http_status
        self.fbtrace_id = fbtrace_id


class PipelineStepFailed(PlatformError):
    """One orchestration step failed; re-running the pipeline resumes at ``step``."""

    def __init__(self, step: str, cause: Exception | str) -> None:
        cause_message = cause.message if isinstance(cause, PlatformError) else str(cause)
        details: dict[str, Any] = {"step": step, "cause": cause_message}
        if isinstance(cause, RemoteAPIError):
            details["remote"] = cause.details
        super().__init__(f"Step '{step}' failed: {cause_message}", details)
        self.step = step
        self.cause = cause
