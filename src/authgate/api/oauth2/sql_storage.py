# SQLAlchemy storage backend for the OAuth2 core.
# Created: 2026-10-18
#
# Tables: oauth_clients, oauth_authorization_codes, oauth_access_tokens,
# oauth_refresh_tokens. Any number of server instances may share one database.
# consume_code(), revoke_refresh_token() and rotate_refresh_token() are conditional
# UPDATEs (WHERE used = false / WHERE revoked = false); rowcount decides the winner.
# rotate_refresh_token() inserts the successor tokens in the same transaction.

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    create_engine,
    delete,
    pool,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from authgate.api.oauth2.errors import StorageError
from authgate.api.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class ClientRow(Base):
    __tablename__ = "oauth_clients"

    client_id = Column(String(64), primary_key=True)
    client_secret = Column(String(128), nullable=False)
    owner_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    logo_url = Column(Text, nullable=True)
    redirect_uris = Column(JSON, nullable=False)
    allowed_scopes = Column(JSON, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    token_endpoint_auth_method = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class CodeRow(Base):
    __tablename__ = "oauth_authorization_codes"

    code = Column(String(128), primary_key=True)
    client_id = Column(String(64), ForeignKey("oauth_clients.client_id"), nullable=False)
    user_id = Column(String(255), nullable=False)
    redirect_uri = Column(Text, nullable=False)
    scope = Column(Text, nullable=False)
    code_challenge = Column(String(256), nullable=True)
    code_challenge_method = Column(String(16), nullable=True)
    state = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_oauth_codes_client_user", "client_id", "user_id"),)


class AccessTokenRow(Base):
    __tablename__ = "oauth_access_tokens"

    id = Column(String(64), primary_key=True)
    token = Column(String(128), nullable=False, unique=True)
    client_id = Column(String(64), ForeignKey("oauth_clients.client_id"), nullable=False)
    user_id = Column(String(255), nullable=False)
    scope = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    refresh_token_id = Column(String(64), nullable=True)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_oauth_access_client_user", "client_id", "user_id"),)


class RefreshTokenRow(Base):
    __tablename__ = "oauth_refresh_tokens"

    id = Column(String(64), primary_key=True)
    token = Column(String(128), nullable=False, unique=True)
    access_token_id = Column(String(64), nullable=True)
    replaced_by = Column(String(64), nullable=True)
    client_id = Column(String(64), ForeignKey("oauth_clients.client_id"), nullable=False)
    user_id = Column(String(255), nullable=False)
    scope = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_oauth_refresh_client_user", "client_id", "user_id"),)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


_CLIENT_FIELDS = (
    "client_id",
    "client_secret",
    "owner_id",
    "name",
    "description",
    "logo_url",
    "is_active",
    "is_verified",
    "token_endpoint_auth_method",
)


def _client_from_row(row: ClientRow) -> OAuthClient:
    return OAuthClient(
        **{f: getattr(row, f) for f in _CLIENT_FIELDS},
        redirect_uris=list(row.redirect_uris or []),
        allowed_scopes=list(row.allowed_scopes or []),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _client_values(client: OAuthClient) -> dict:
    values = {f: getattr(client, f) for f in _CLIENT_FIELDS}
    values.update(
        redirect_uris=list(client.redirect_uris),
        allowed_scopes=list(client.allowed_scopes),
        created_at=client.created_at,
        updated_at=client.updated_at,
    )
    return values


def _code_from_row(row: CodeRow) -> AuthorizationCode:
    return AuthorizationCode(
        code=row.code,
        client_id=row.client_id,
        user_id=row.user_id,
        redirect_uri=row.redirect_uri,
        scope=row.scope,
        expires_at=_aware(row.expires_at),
        code_challenge=row.code_challenge,
        code_challenge_method=row.code_challenge_method,
        state=row.state,
        used=row.used,
        created_at=_aware(row.created_at),
    )


def _access_from_row(row: AccessTokenRow) -> AccessToken:
    return AccessToken(
        id=row.id,
        token=row.token,
        client_id=row.client_id,
        user_id=row.user_id,
        scope=row.scope,
        expires_at=_aware(row.expires_at),
        refresh_token_id=row.refresh_token_id,
        revoked=row.revoked,
        created_at=_aware(row.created_at),
    )


def _refresh_from_row(row: RefreshTokenRow) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        access_token_id=row.access_token_id,
        replaced_by=row.replaced_by,
        client_id=row.client_id,
        user_id=row.user_id,
        scope=row.scope,
        expires_at=_aware(row.expires_at),
        revoked=row.revoked,
        created_at=_aware(row.created_at),
    )


def _access_row(token: AccessToken) -> AccessTokenRow:
    return AccessTokenRow(
        id=token.id,
        token=token.token,
        client_id=token.client_id,
        user_id=token.user_id,
        scope=token.scope,
        expires_at=token.expires_at,
        refresh_token_id=token.refresh_token_id,
        revoked=token.revoked,
        created_at=token.created_at,
    )


def _refresh_row(token: RefreshToken) -> RefreshTokenRow:
    return RefreshTokenRow(
        id=token.id,
        token=token.token,
        access_token_id=token.access_token_id,
        replaced_by=token.replaced_by,
        client_id=token.client_id,
        user_id=token.user_id,
        scope=token.scope,
        expires_at=token.expires_at,
        revoked=token.revoked,
        created_at=token.created_at,
    )


def _run(session: Session, stmt):
    # Bulk UPDATE/DELETE: nothing in the session to synchronize, and rowcount must be exact.
    return session.execute(stmt, execution_options={"synchronize_session": False})


def _filtered(stmt, model, client_id: str | None, user_id: str | None):
    if client_id is not None:
        stmt = stmt.where(model.client_id == client_id)
    if user_id is not None:
        stmt = stmt.where(model.user_id == user_id)
    return stmt


class SQLOAuthStorage:
    """OAuthStorageProtocol implementation over SQLAlchemy.

    Usage:
        storage = SQLOAuthStorage("postgresql://user:pw@db/authgate")
        storage.add_client(client)
    """

    def __init__(self, url: str, echo: bool = False, create_tables: bool = True):
        self.url = url
        self._engine = self._create_engine(url, echo)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
        )
        if create_tables:
            Base.metadata.create_all(self._engine)
        logger.info("OAuth SQL storage ready (%s)", self._engine.url.render_as_string())

    @staticmethod
    def _create_engine(url: str, echo: bool):
        if url.startswith("sqlite"):
            kwargs: dict = {"connect_args": {"check_same_thread": False, "timeout": 30}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees an empty database.
                kwargs["poolclass"] = pool.StaticPool
            return create_engine(url, echo=echo, **kwargs)
        return create_engine(url, echo=echo, pool_pre_ping=True, pool_recycle=1800)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ValueError(f"constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("OAuth storage failure: %s", e)
            raise StorageError(str(e)) from e
        finally:
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()

    # -- clients -----------------------------------------------------------

    def add_client(self, client: OAuthClient) -> None:
        with self._session() as s:
            s.add(ClientRow(**_client_values(client)))

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self._session() as s:
            row = s.get(ClientRow, client_id)
            return _client_from_row(row) if row else None

    def save_client(self, client: OAuthClient) -> None:
        values = _client_values(client)
        values.pop("client_id")
        with self._session() as s:
            result = _run(
                s,
                update(ClientRow).where(ClientRow.client_id == client.client_id).values(**values)
            )
            if result.rowcount == 0:
                raise KeyError(client.client_id)

    def list_clients(self, owner_id: str) -> list[OAuthClient]:
        with self._session() as s:
            rows = s.scalars(
                select(ClientRow)
                .where(ClientRow.owner_id == owner_id)
                .order_by(ClientRow.created_at.desc())
            )
            return [_client_from_row(r) for r in rows]

    def delete_client(self, client_id: str) -> bool:
        with self._session() as s:
            # Credential rows go with the client.
            _run(s, delete(CodeRow).where(CodeRow.client_id == client_id))
            _run(s, delete(RefreshTokenRow).where(RefreshTokenRow.client_id == client_id))
            _run(s, delete(AccessTokenRow).where(AccessTokenRow.client_id == client_id))
            result = _run(s, delete(ClientRow).where(ClientRow.client_id == client_id))
            return result.rowcount > 0

    # -- authorization codes ---------------------------------------------

    def add_code(self, code: AuthorizationCode) -> None:
        with self._session() as s:
            s.add(
                CodeRow(
                    code=code.code,
                    client_id=code.client_id,
                    user_id=code.user_id,
                    redirect_uri=code.redirect_uri,
                    scope=code.scope,
                    code_challenge=code.code_challenge,
                    code_challenge_method=code.code_challenge_method,
                    state=code.state,
                    expires_at=code.expires_at,
                    used=code.used,
                    created_at=code.created_at,
                )
            )

    def get_code(self, code: str) -> AuthorizationCode | None:
        with self._session() as s:
            row = s.get(CodeRow, code)
            return _code_from_row(row) if row else None

    def consume_code(self, code: str) -> bool:
        with self._session() as s:
            result = _run(
                s,
                update(CodeRow)
                .where(CodeRow.code == code, CodeRow.used.is_(False))
                .values(used=True)
            )
            return result.rowcount == 1

    def delete_codes(self, client_id: str, user_id: str | None = None) -> int:
        with self._session() as s:
            stmt = _filtered(delete(CodeRow), CodeRow, client_id, user_id)
            return _run(s, stmt).rowcount

    # -- access tokens ---------------------------------------------------

    def add_access_token(self, token: AccessToken) -> None:
        with self._session() as s:
            s.add(_access_row(token))

    def get_access_token(self, token: str) -> AccessToken | None:
        with self._session() as s:
            row = s.scalar(select(AccessTokenRow).where(AccessTokenRow.token == token))
            return _access_from_row(row) if row else None

    def get_access_token_by_id(self, token_id: str) -> AccessToken | None:
        with self._session() as s:
            row = s.get(AccessTokenRow, token_id)
            return _access_from_row(row) if row else None

    def revoke_access_token(self, token_id: str) -> bool:
        with self._session() as s:
            result = _run(
                s,
                update(AccessTokenRow)
                .where(AccessTokenRow.id == token_id, AccessTokenRow.revoked.is_(False))
                .values(revoked=True)
            )
            return result.rowcount == 1

    def list_access_tokens(
        self, *, client_id: str | None = None, user_id: str | None = None
    ) -> list[AccessToken]:
        with self._session() as s:
            stmt = _filtered(select(AccessTokenRow), AccessTokenRow, client_id, user_id)
            return [_access_from_row(r) for r in s.scalars(stmt)]

    # -- refresh tokens --------------------------------------------------

    def add_refresh_token(self, token: RefreshToken) -> None:
        with self._session() as s:
            s.add(_refresh_row(token))

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self._session() as s:
            row = s.scalar(select(RefreshTokenRow).where(RefreshTokenRow.token == token))
            return _refresh_from_row(row) if row else None

    def get_refresh_token_by_id(self, token_id: str) -> RefreshToken | None:
        with self._session() as s:
            row = s.get(RefreshTokenRow, token_id)
            return _refresh_from_row(row) if row else None

    def revoke_refresh_token(self, token_id: str, replaced_by: str | None = None) -> bool:
        values: dict = {"revoked": True}
        if replaced_by is not None:
            values["replaced_by"] = replaced_by
        with self._session() as s:
            result = _run(
                s,
                update(RefreshTokenRow)
                .where(RefreshTokenRow.id == token_id, RefreshTokenRow.revoked.is_(False))
                .values(**values)
            )
            return result.rowcount == 1

    def rotate_refresh_token(
        self, old_id: str, access: AccessToken, refresh: RefreshToken
    ) -> bool:
        with self._session() as s:
            result = _run(
                s,
                update(RefreshTokenRow)
                .where(RefreshTokenRow.id == old_id, RefreshTokenRow.revoked.is_(False))
                .values(revoked=True, replaced_by=refresh.id)
            )
            if result.rowcount != 1:
                return False
            s.add(_access_row(access))
            s.add(_refresh_row(refresh))
            return True

    def list_refresh_tokens(
        self, *, client_id: str | None = None, user_id: str | None = None
    ) -> list[RefreshToken]:
        with self._session() as s:
            stmt = _filtered(select(RefreshTokenRow), RefreshTokenRow, client_id, user_id)
            return [_refresh_from_row(r) for r in s.scalars(stmt)]

    # -- housekeeping ----------------------------------------------------

    def purge_expired(self, now: datetime) -> int:
        with self._session() as s:
            removed = 0
            for model in (CodeRow, AccessTokenRow, RefreshTokenRow):
                removed += _run(s, delete(model).where(model.expires_at < now)).rowcount
        if removed:
            logger.debug("Purged %d expired OAuth rows", removed)
        return removed
