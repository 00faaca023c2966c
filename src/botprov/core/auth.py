from __future__ import annotations
from typing import Any

# Error taxonomy shared by the token cache, consent check and provisioning.
class AuthError(Exception):
    code = "auth_error"; hint = "Unknown error."
    error_code: str | None = None  # upstream MSAL error code, when there is one
    def __init__(self, message: str = "", *, hint: str | None = None):
        super().__init__(message or self.__class__.__name__)
        if hint: self.hint = hint

class ConsentRequired(AuthError):
    code = "consent_required"; hint = "Share the admin consent URL with a tenant administrator."
class TransientOrUnknown(AuthError):
    code = "transient_or_unknown"; hint = "Token acquisition failed unexpectedly. Try again or sign in again."
class InvalidCode(AuthError):
    code = "invalid_code"; hint = "Authorization code missing, expired or already redeemed."
class InvalidSession(AuthError):
    code = "invalid_session"; hint = "Session unknown or expired. Please sign in again."
class InvalidEndpoint(AuthError):
    code = "invalid_endpoint"; hint = "Messaging endpoint must be an https:// URL."
class InvalidRequest(AuthError):
    code = "invalid_request"; hint = "A required field is missing or blank."
class InvalidState(AuthError):
    code = "invalid_state"; hint = "Sign-in state missing, unknown or expired. Start sign-in again."
class UnexpectedUpstream(AuthError):
    code = "unexpected_upstream"; hint = "Consent status could not be determined."
class Cancelled(AuthError):
    code = "cancelled"; hint = "Request cancelled by the caller."

class FatalPipelineError(AuthError):
    code = "pipeline_failed"; hint = "Provisioning aborted. Restart it from the beginning."
    def __init__(self, step: str, payload: Any = None, message: str = ""):
        super().__init__(message or f"Provisioning step {step} failed")
        self.step = step
        self.payload = payload
