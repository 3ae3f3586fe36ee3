# src/oidc_drive_bff/errors.py
from typing import Any, Dict, Optional


class OIDCClientError(Exception):
    """Base class for failures in the authorization/token lifecycle, formatted like OAuth error bodies."""

    error: str = "server_error"

    def __init__(self, error_description: Optional[str] = None, error: Optional[str] = None):
        if error:
            self.error = error
        self.error_description = error_description
        super().__init__(error_description or self.error)

    def to_dict(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"error": self.error}
        if self.error_description:
            detail["error_description"] = self.error_description
        return detail


class StateMismatchError(OIDCClientError):
    """The callback's `state` does not match the one stored on the session."""

    error = "invalid_state"


class TokenEndpointError(OIDCClientError):
    """
    The token endpoint answered with an OAuth error body, a non-2xx status,
    or a body without an access token.
    """

    error = "invalid_grant"

    def __init__(
        self,
        error_description: Optional[str] = None,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.status_code = status_code
        super().__init__(error_description=error_description, error=error)


class ProviderUnavailableError(OIDCClientError):
    """Network failure, timeout, or an unparseable body from the provider."""

    error = "temporarily_unavailable"


class IDTokenValidationError(OIDCClientError):
    """The ID token could not be decoded, failed verification, or carries the wrong nonce."""

    error = "invalid_id_token"


class MissingRefreshTokenError(OIDCClientError):
    """No refresh token on the session; only a new authorization flow can recover."""

    error = "login_required"


class ResourceAccessError(OIDCClientError):
    """The resource API rejected the request, including after the single refresh-and-retry."""

    error = "invalid_credentials"

    def __init__(
        self,
        error_description: Optional[str] = None,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.status_code = status_code
        super().__init__(error_description=error_description, error=error)
