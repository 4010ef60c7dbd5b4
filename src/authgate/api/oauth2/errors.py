# OAuth2 error taxonomy (RFC 6749 section 4.1.2.1 / 5.2, RFC 6750, RFC 7591).
# Created: 2026-10-18

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def append_query(uri: str, params: dict[str, str | None]) -> str:
    """Append *params* to *uri*, keeping any query it was registered with."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


class OAuth2Error(Exception):
    """Protocol error with an RFC error code.

    When ``redirect_uri`` is set the redirect URI has already been validated
    and the error is delivered to the client by redirect; otherwise it is
    answered directly and must never be redirected.
    """

    error = "invalid_request"
    status_code = 400
    description = "The request is invalid."

    def __init__(
        self,
        description: str | None = None,
        *,
        redirect_uri: str | None = None,
        state: str | None = None,
    ):
        if description is not None:
            self.description = description
        self.redirect_uri = redirect_uri
        self.state = state
        super().__init__(f"{self.error}: {self.description}")

    @property
    def redirectable(self) -> bool:
        return self.redirect_uri is not None

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}

    def redirect_location(self) -> str:
        if self.redirect_uri is None:
            raise ValueError("error has no validated redirect_uri")
        return append_query(
            self.redirect_uri,
            {
                "error": self.error,
                "error_description": self.description,
                "state": self.state or None,
            },
        )


class InvalidRequestError(OAuth2Error):
    error = "invalid_request"


class InvalidClientError(OAuth2Error):
    error = "invalid_client"
    status_code = 401
    description = "Client authentication failed."


class InvalidGrantError(OAuth2Error):
    error = "invalid_grant"
    description = "The grant is invalid, expired, or has already been used."


class UnauthorizedClientError(OAuth2Error):
    error = "unauthorized_client"
    description = "The client is not authorized to use this grant."


class UnsupportedResponseTypeError(OAuth2Error):
    error = "unsupported_response_type"
    description = "Only response_type=code is supported."


class UnsupportedGrantTypeError(OAuth2Error):
    error = "unsupported_grant_type"
    description = "Supported grant types: authorization_code, refresh_token."


class InvalidScopeError(OAuth2Error):
    error = "invalid_scope"
    description = "The requested scope is invalid or exceeds what was granted."


class AccessDeniedError(OAuth2Error):
    error = "access_denied"
    status_code = 403
    description = "The user denied the request."


class InvalidTokenError(OAuth2Error):
    error = "invalid_token"
    status_code = 401
    description = "The access token is invalid or expired."


class ServerError(OAuth2Error):
    error = "server_error"
    status_code = 500
    description = "The server encountered an unexpected error."


# ---------------------------------------------------------------------------
# Client registry and storage errors
# ---------------------------------------------------------------------------


class ClientRegistrationError(ValueError):
    """Client metadata rejected (RFC 7591 section 3.2.2)."""

    def __init__(self, error: str, description: str):
        self.error = error
        self.description = description
        super().__init__(f"{error}: {description}")

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


class ClientNotFound(LookupError):
    """No client with that id."""


class Forbidden(PermissionError):
    """Caller does not own the client."""


class StorageError(RuntimeError):
    """The backing store failed; surfaced to callers as server_error."""
