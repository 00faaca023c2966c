from __future__ import annotations
from urllib.parse import quote

from botprov.core.auth import AuthError, ConsentRequired, TransientOrUnknown

AUTHORITY_HOST = "https://login.microsoftonline.com"

# Structured MSAL error codes that always mean "a tenant admin has not granted this".
_CONSENT_CODES = {"consent_required", "interaction_required"}

# Legacy shape: invalid_grant whose description carries the AADSTS65001 marker
# or its English text. This is string matching on free text and will break if
# Entra ID rewords the message; keep test_auth_helpers in sync with any change.
_CONSENT_MARKERS = ("AADSTS65001", "has not consented")


def build_authority(tenant: str, host: str = AUTHORITY_HOST) -> str:
    return f"{host.rstrip('/')}/{tenant}"


def build_admin_consent_url(tenant_id: str, client_id: str, redirect_uri: str,
                            host: str = AUTHORITY_HOST) -> str:
    return (
        f"{build_authority(tenant_id, host)}/adminconsent"
        f"?client_id={client_id}&redirect_uri={quote(redirect_uri, safe='')}"
    )


def is_consent_error(error_code: str | None, description: str | None) -> bool:
    code = (error_code or "").strip()
    if code in _CONSENT_CODES:
        return True
    if code == "invalid_grant":
        d = description or ""
        return any(m in d for m in _CONSENT_MARKERS)
    return False


def classify_msal_error(result: dict | None, scope: str = "") -> AuthError:
    """
    Map an MSAL error result to ConsentRequired or TransientOrUnknown.

    This is the only place that inspects MSAL error payloads; callers never
    re-classify the returned exception.
    """
    if not result:
        return TransientOrUnknown(f"No cached credential able to serve {scope or 'scope'}.")
    code = result.get("error")
    desc = result.get("error_description") or ""
    if is_consent_error(code, desc):
        err = ConsentRequired(f"{scope}: {code}")
    else:
        err = TransientOrUnknown(f"{scope}: {code or desc or 'unknown error'}")
    err.error_code = code or "unknown"
    return err


def scope_name(scope: str) -> str:
    return scope.rstrip("/").split("/")[-1]


def scope_resource(scope: str) -> str:
    """Resource base URI of a qualified scope ('' for bare Graph scopes like User.Read)."""
    if "://" not in scope:
        return ""
    head, _, _ = scope.rstrip("/").rpartition("/")
    return head
