# OAuth2 Authorization Server with PKCE support.
# Created: 2026-10-18
#
# Authorization code flow (RFC 6749 section 4.1) with PKCE (RFC 7636), refresh
# tokens with rotation and replay detection, and OpenID Connect id_tokens.
#
# The authorize step runs received -> client_validated -> redirect_validated ->
# scope_resolved -> consented -> code_issued. Until the redirect URI is validated
# errors are answered directly; afterwards they carry redirect_uri/state.

from __future__ import annotations

import base64
import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import unquote_plus

from authgate.api.oauth2 import pkce
from authgate.api.oauth2.errors import (
    AccessDeniedError,
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    InvalidTokenError,
    ServerError,
    StorageError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
    append_query,
)
from authgate.api.oauth2.grants import ConsentedAppsView
from authgate.api.oauth2.id_token import mint_id_token
from authgate.api.oauth2.models import (
    OFFLINE_ACCESS,
    OPENID,
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
    utcnow,
)
from authgate.api.oauth2.registry import ClientPublicView, ClientRegistry
from authgate.api.oauth2.storage import OAuthStorageProtocol, create_storage
from authgate.api.oauth2.userinfo import NullProfileProvider, ProfileProvider, build_claims
from authgate.api.oauth2.validators import (
    check_redirect_uri,
    format_scope,
    is_subset,
    narrow_scope,
    parse_scope,
)
from authgate.security.audit import get_audit_logger

logger = logging.getLogger(__name__)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"

DEFAULT_SCOPE = [OPENID]

_ACCESS_PREFIX = "at_"
_REFRESH_PREFIX = "rt_"


def _new_token(prefix: str) -> str:
    return f"{prefix}{secrets.token_urlsafe(32)}"


@dataclass
class AuthorizationRequest:
    """A validated authorization request awaiting the user's decision."""

    client: ClientPublicView
    redirect_uri: str
    scopes: list[str]
    requested_scopes: list[str]
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    response_type: str = "code"

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    def error(self, exc_type, description: str | None = None):
        return exc_type(description, redirect_uri=self.redirect_uri, state=self.state)


@dataclass
class ClientCredentials:
    client_id: str | None
    client_secret: str | None
    via_basic: bool = False


@dataclass
class TokenResponse:
    access_token: str
    expires_in: int
    scope: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.id_token:
            data["id_token"] = self.id_token
        return data


def parse_basic_auth(authorization: str | None) -> tuple[str, str] | None:
    """Decode ``Authorization: Basic`` into (client_id, client_secret).

    Both parts are form-urlencoded before base64 (RFC 6749 section 2.3.1).
    Returns None when the header is absent or not Basic; raises InvalidClientError
    when it is Basic but malformed.
    """
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidClientError("Malformed Basic credentials.") from e
    client_id, sep, secret = decoded.partition(":")
    if not sep:
        raise InvalidClientError("Malformed Basic credentials.")
    return unquote_plus(client_id), unquote_plus(secret)


def extract_client_credentials(
    form: Mapping[str, Any], authorization: str | None = None
) -> ClientCredentials:
    basic = parse_basic_auth(authorization)
    form_id = form.get("client_id") or None
    if basic is not None:
        client_id, secret = basic
        if form_id and form_id != client_id:
            raise InvalidRequestError("client_id does not match the Basic credentials.")
        if form.get("client_secret"):
            raise InvalidRequestError("Use only one client authentication method.")
        return ClientCredentials(client_id, secret or None, via_basic=True)
    return ClientCredentials(form_id, form.get("client_secret") or None)


class AuthorizationServer:
    """OAuth2 authorization server with PKCE."""

    def __init__(
        self,
        storage: OAuthStorageProtocol | None = None,
        settings=None,
        clock: Callable[[], datetime] | None = None,
        profile_provider: ProfileProvider | None = None,
        secret_key: str | None = None,
    ):
        if settings is None:
            from authgate.config import get_settings

            settings = get_settings()
        self.settings = settings
        self.storage = storage or create_storage(settings)
        self.clock = clock or utcnow
        self.profiles = profile_provider or NullProfileProvider()
        self._secret_key = secret_key

        self.clients = ClientRegistry(self.storage, settings)
        self.revocation = self.clients.revocation
        self.grants = ConsentedAppsView(self.storage, self.revocation, clock=self.clock)

    # -- helpers --------------------------------------------------------

    @property
    def secret_key(self) -> str:
        if self._secret_key is None:
            from authgate.config import get_secret_key

            self._secret_key = get_secret_key(self.settings)
        return self._secret_key

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.access_token_ttl_seconds)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_ttl_days)

    @property
    def code_ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.authorization_code_ttl_seconds)

    def _expired(self, expires_at: datetime) -> bool:
        skew = timedelta(seconds=self.settings.clock_skew_seconds)
        return self.clock() > expires_at + skew

    def _format(self, scopes) -> str:
        return format_scope(scopes, self.settings.supported_scopes)

    # -- authorization endpoint ----------------------------------------

    def validate_authorization_request(
        self,
        client_id: str | None,
        redirect_uri: str | None,
        response_type: str | None = "code",
        scope: str | None = None,
        state: str | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
    ) -> AuthorizationRequest:
        """Validate an authorization request up to (not including) consent."""
        if not client_id:
            raise InvalidRequestError("Missing client_id.")
        if not redirect_uri:
            raise InvalidRequestError("Missing redirect_uri.")

        client = self.storage.get_client(client_id)
        if client is None or not client.is_active:
            raise InvalidClientError("Unknown or inactive client.")

        if not check_redirect_uri(client, redirect_uri):
            raise InvalidRequestError("redirect_uri is not registered for this client.")

        def fail(exc_type, description=None):
            return exc_type(description, redirect_uri=redirect_uri, state=state)

        if response_type != "code":
            raise fail(UnsupportedResponseTypeError)

        if code_challenge_method and not code_challenge:
            raise fail(InvalidRequestError, "code_challenge_method given without code_challenge.")
        if code_challenge:
            code_challenge_method = code_challenge_method or pkce.PLAIN
            if code_challenge_method not in pkce.SUPPORTED_METHODS:
                raise fail(InvalidRequestError, "Unsupported code_challenge_method.")
        elif client.is_public:
            raise fail(InvalidRequestError, "Public clients must use PKCE.")

        requested = parse_scope(scope) or list(DEFAULT_SCOPE)
        granted = narrow_scope(requested, client.allowed_scopes, self.settings.supported_scopes)
        if not granted:
            raise fail(InvalidScopeError)

        return AuthorizationRequest(
            client=ClientPublicView.from_client(client),
            redirect_uri=redirect_uri,
            scopes=granted,
            requested_scopes=requested,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method if code_challenge else None,
            response_type=response_type,
        )

    def deny(self, request: AuthorizationRequest) -> str:
        """Redirect location for a user who declined."""
        logger.info("User denied authorization for client %s", request.client.client_id)
        return request.error(AccessDeniedError).redirect_location()

    def approve(
        self,
        request: AuthorizationRequest,
        user_id: str,
        approved_scopes: str | list[str] | None = None,
    ) -> tuple[str, str]:
        """Persist a single-use code for the consented scopes.

        Returns (code, redirect_location).
        """
        if not user_id:
            raise ValueError("user_id is required")

        scopes = request.scopes
        if approved_scopes is not None:
            approved = set(parse_scope(approved_scopes))
            scopes = [s for s in request.scopes if s in approved]
        if not scopes:
            raise request.error(AccessDeniedError, "No scopes were approved.")

        now = self.clock()
        code = AuthorizationCode(
            code=secrets.token_urlsafe(32),
            client_id=request.client.client_id,
            user_id=user_id,
            redirect_uri=request.redirect_uri,
            scope=self._format(scopes),
            expires_at=now + self.code_ttl,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
            state=request.state,
            created_at=now,
        )
        try:
            self.storage.add_code(code)
        except StorageError as e:
            raise request.error(ServerError) from e

        get_audit_logger().log_api_event(
            action="oauth_code_issued",
            target=f"client:{code.client_id}",
            user_id=user_id,
            scope=code.scope,
            pkce=code.code_challenge_method or "none",
        )
        location = append_query(request.redirect_uri, {"code": code.code, "state": request.state})
        return code.code, location

    def authorize(
        self,
        user_id: str,
        client_id: str,
        redirect_uri: str,
        scope: str | None = None,
        state: str | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        response_type: str = "code",
    ) -> tuple[str, str]:
        """Validate and approve in one step (pre-consented or programmatic callers)."""
        request = self.validate_authorization_request(
            client_id,
            redirect_uri,
            response_type=response_type,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        return self.approve(request, user_id)

    # -- token endpoint ---------------------------------------------------

    def authenticate_client(self, client_id: str | None, client_secret: str | None) -> OAuthClient:
        return self.clients.authenticate(client_id, client_secret)

    def create_token_response(
        self, form: Mapping[str, Any], authorization: str | None = None
    ) -> dict[str, Any]:
        """Handle a token endpoint request body. Raises OAuth2Error."""
        grant_type = form.get("grant_type")
        if not grant_type:
            raise InvalidRequestError("Missing grant_type.")
        if grant_type not in (GRANT_AUTHORIZATION_CODE, GRANT_REFRESH_TOKEN):
            raise UnsupportedGrantTypeError()

        creds = extract_client_credentials(form, authorization)
        client = self.authenticate_client(creds.client_id, creds.client_secret)

        if grant_type == GRANT_AUTHORIZATION_CODE:
            code = form.get("code")
            redirect_uri = form.get("redirect_uri")
            if not code:
                raise InvalidRequestError("Missing code.")
            if not redirect_uri:
                raise InvalidRequestError("Missing redirect_uri.")
            result = self.exchange_code(client, code, redirect_uri, form.get("code_verifier"))
        else:
            refresh_token = form.get("refresh_token")
            if not refresh_token:
                raise InvalidRequestError("Missing refresh_token.")
            result = self.refresh(client, refresh_token, form.get("scope"))
        return result.to_dict()

    def exchange_code(
        self,
        client: OAuthClient,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        """Redeem an authorization code. At most one call per code ever succeeds."""
        record = self.storage.get_code(code)
        # One message for every reason, so callers learn nothing about the code.
        if (
            record is None
            or record.client_id != client.client_id
            or record.used
            or self._expired(record.expires_at)
        ):
            raise InvalidGrantError()

        if record.redirect_uri != redirect_uri:
            raise InvalidGrantError("redirect_uri does not match the authorization request.")

        if record.code_challenge:
            if not pkce.verify(code_verifier, record.code_challenge, record.code_challenge_method):
                logger.warning("PKCE verification failed for client %s", client.client_id)
                raise InvalidGrantError("PKCE verification failed.")
        elif code_verifier:
            raise InvalidGrantError("code_verifier sent for a code issued without PKCE.")

        if not self.storage.consume_code(record.code):
            logger.warning("Authorization code reuse for client %s", client.client_id)
            raise InvalidGrantError()

        response = self._issue_tokens(client.client_id, record.user_id, parse_scope(record.scope))
        get_audit_logger().log_api_event(
            action="oauth_token_issued",
            target=f"client:{client.client_id}",
            user_id=record.user_id,
            grant_type=GRANT_AUTHORIZATION_CODE,
            scope=response.scope,
            refresh=response.refresh_token is not None,
        )
        return response

    def refresh(
        self, client: OAuthClient, refresh_token: str, scope: str | None = None
    ) -> TokenResponse:
        """Redeem a refresh token for a new access token (and, rotating, a new refresh token)."""
        record = self.storage.get_refresh_token(refresh_token)
        if record is None or record.client_id != client.client_id:
            raise InvalidGrantError()

        if record.revoked:
            if record.replaced_by:
                self._handle_replay(record)
            raise InvalidGrantError()
        if self._expired(record.expires_at):
            raise InvalidGrantError()

        granted = parse_scope(record.scope)
        requested = parse_scope(scope)
        if requested and not is_subset(requested, granted):
            raise InvalidScopeError()
        access_scopes = requested or granted

        now = self.clock()
        access = AccessToken(
            token=_new_token(_ACCESS_PREFIX),
            client_id=client.client_id,
            user_id=record.user_id,
            scope=self._format(access_scopes),
            expires_at=now + self.access_token_ttl,
            created_at=now,
        )

        new_refresh: RefreshToken | None = None
        if self.settings.rotate_refresh_tokens:
            new_refresh = RefreshToken(
                token=_new_token(_REFRESH_PREFIX),
                client_id=client.client_id,
                user_id=record.user_id,
                scope=record.scope,
                expires_at=now + self.refresh_token_ttl,
                access_token_id=access.id,
                created_at=now,
            )
            access.refresh_token_id = new_refresh.id
            if not self.storage.rotate_refresh_token(record.id, access, new_refresh):
                # Lost the race against a concurrent refresh or revocation.
                raise InvalidGrantError()
        else:
            access.refresh_token_id = record.id
            self.storage.add_access_token(access)

        get_audit_logger().log_api_event(
            action="oauth_token_refreshed",
            target=f"client:{client.client_id}",
            user_id=record.user_id,
            scope=access.scope,
            rotated=new_refresh is not None,
        )
        return TokenResponse(
            access_token=access.token,
            expires_in=int(self.access_token_ttl.total_seconds()),
            scope=access.scope,
            refresh_token=new_refresh.token if new_refresh else None,
            id_token=self._id_token(client.client_id, record.user_id, access_scopes, now),
        )

    def _handle_replay(self, record: RefreshToken) -> None:
        revoked = self.revocation.revoke_chain(record)
        logger.warning(
            "Rotated refresh token replayed for client %s; revoked %d descendant tokens",
            record.client_id,
            revoked,
        )
        get_audit_logger().log_api_event(
            action="oauth_refresh_replay_detected",
            target=f"client:{record.client_id}",
            user_id=record.user_id,
            tokens_revoked=revoked,
        )

    def _issue_tokens(self, client_id: str, user_id: str, scopes: list[str]) -> TokenResponse:
        now = self.clock()
        scope = self._format(scopes)
        access = AccessToken(
            token=_new_token(_ACCESS_PREFIX),
            client_id=client_id,
            user_id=user_id,
            scope=scope,
            expires_at=now + self.access_token_ttl,
            created_at=now,
        )
        refresh: RefreshToken | None = None
        if OFFLINE_ACCESS in scopes:
            refresh = RefreshToken(
                token=_new_token(_REFRESH_PREFIX),
                client_id=client_id,
                user_id=user_id,
                scope=scope,
                expires_at=now + self.refresh_token_ttl,
                access_token_id=access.id,
                created_at=now,
            )
            access.refresh_token_id = refresh.id

        self.storage.add_access_token(access)
        if refresh is not None:
            self.storage.add_refresh_token(refresh)

        return TokenResponse(
            access_token=access.token,
            expires_in=int(self.access_token_ttl.total_seconds()),
            scope=scope,
            refresh_token=refresh.token if refresh else None,
            id_token=self._id_token(client_id, user_id, scopes, now),
        )

    def _id_token(
        self, client_id: str, user_id: str, scopes: list[str], now: datetime
    ) -> str | None:
        if OPENID not in scopes:
            return None
        claims = build_claims(user_id, scopes, self.profiles)
        return mint_id_token(
            issuer=self.settings.issuer.rstrip("/"),
            subject=user_id,
            audience=client_id,
            issued_at=now,
            ttl=self.access_token_ttl,
            key=self.secret_key,
            claims=claims,
        )

    # -- resource side ----------------------------------------------------

    def verify_access_token(self, token: str | None) -> AccessToken:
        """Return the live access token or raise InvalidTokenError (one reason for all)."""
        record = self.storage.get_access_token(token) if token else None
        if record is None or record.revoked or self._expired(record.expires_at):
            raise InvalidTokenError()
        return record

    def userinfo(self, token: str | None) -> dict[str, Any]:
        record = self.verify_access_token(token)
        return build_claims(record.user_id, parse_scope(record.scope), self.profiles)

    def revoke(
        self,
        form: Mapping[str, Any],
        authorization: str | None = None,
    ) -> bool:
        """RFC 7009 endpoint logic. Client credentials are optional but checked if given."""
        token = form.get("token")
        if not token:
            raise InvalidRequestError("Missing token.")
        creds = extract_client_credentials(form, authorization)
        client_id = None
        if creds.client_id:
            client_id = self.authenticate_client(creds.client_id, creds.client_secret).client_id
        return self.revocation.revoke(token, form.get("token_type_hint"), client_id=client_id)

    def purge_expired(self) -> int:
        return self.storage.purge_expired(self.clock())


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        _server = AuthorizationServer()
    return _server


def reset_oauth_server() -> None:
    """Reset singleton (for testing)."""
    global _server
    _server = None
