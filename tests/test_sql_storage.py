# Tests for the storage backends (memory and SQLAlchemy).
# Created: 2026-10-18

from datetime import UTC, datetime, timedelta

import pytest

from authgate.api.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
)
from authgate.api.oauth2.sql_storage import SQLOAuthStorage
from authgate.api.oauth2.storage import MemoryOAuthStorage, OAuthStorageProtocol, create_storage
from authgate.config import Settings

NOW = datetime(2026, 5, 1, 9, 30, tzinfo=UTC)


@pytest.fixture(params=["memory", "sql"])
def storage(request, tmp_path):
    if request.param == "memory":
        yield MemoryOAuthStorage()
        return
    store = SQLOAuthStorage(f"sqlite:///{tmp_path / 'oauth.db'}")
    yield store
    store.dispose()


def _client(client_id="cl_1", owner_id="owner-1", created_at=NOW):
    return OAuthClient(
        client_id=client_id,
        client_secret="cs_secret",
        owner_id=owner_id,
        name="App",
        redirect_uris=["https://app.test/cb", "https://app.test/alt"],
        allowed_scopes=["openid", "email"],
        created_at=created_at,
        updated_at=created_at,
    )


def _code(code="c1", expires_at=NOW + timedelta(minutes=10)):
    return AuthorizationCode(
        code=code,
        client_id="cl_1",
        user_id="user-1",
        redirect_uri="https://app.test/cb",
        scope="openid",
        expires_at=expires_at,
        code_challenge="x" * 43,
        code_challenge_method="S256",
        state="st",
        created_at=NOW,
    )


def _access(token="at_1", expires_at=NOW + timedelta(hours=1), **kwargs):
    return AccessToken(
        token=token,
        client_id=kwargs.pop("client_id", "cl_1"),
        user_id=kwargs.pop("user_id", "user-1"),
        scope="openid",
        expires_at=expires_at,
        created_at=NOW,
        **kwargs,
    )


def _refresh(token="rt_1", expires_at=NOW + timedelta(days=30), **kwargs):
    return RefreshToken(
        token=token,
        client_id="cl_1",
        user_id="user-1",
        scope="openid offline_access",
        expires_at=expires_at,
        created_at=NOW,
        **kwargs,
    )


def test_backends_satisfy_protocol(storage):
    assert isinstance(storage, OAuthStorageProtocol)


class TestClients:
    def test_roundtrip_keeps_timezone_and_lists(self, storage):
        storage.add_client(_client())
        loaded = storage.get_client("cl_1")
        assert loaded.redirect_uris == ["https://app.test/cb", "https://app.test/alt"]
        assert loaded.allowed_scopes == ["openid", "email"]
        assert loaded.created_at == NOW
        assert loaded.created_at.tzinfo is not None

    def test_duplicate_id_rejected(self, storage):
        storage.add_client(_client())
        with pytest.raises(ValueError):
            storage.add_client(_client())

    def test_save_unknown_client(self, storage):
        with pytest.raises(KeyError):
            storage.save_client(_client("cl_missing"))

    def test_returned_records_are_copies(self, storage):
        storage.add_client(_client())
        loaded = storage.get_client("cl_1")
        loaded.name = "Changed"
        loaded.redirect_uris.append("https://evil.test/cb")
        assert storage.get_client("cl_1").name == "App"
        assert len(storage.get_client("cl_1").redirect_uris) == 2

    def test_list_by_owner_newest_first(self, storage):
        storage.add_client(_client("cl_old", created_at=NOW))
        storage.add_client(_client("cl_new", created_at=NOW + timedelta(minutes=1)))
        storage.add_client(_client("cl_other", owner_id="owner-2"))
        assert [c.client_id for c in storage.list_clients("owner-1")] == ["cl_new", "cl_old"]

    def test_delete(self, storage):
        storage.add_client(_client())
        storage.add_access_token(_access())
        assert storage.delete_client("cl_1") is True
        assert storage.get_client("cl_1") is None
        assert storage.get_access_token("at_1") is None
        assert storage.delete_client("cl_1") is False


class TestCodes:
    def test_consume_is_single_shot(self, storage):
        storage.add_client(_client())
        storage.add_code(_code())
        assert storage.consume_code("c1") is True
        assert storage.consume_code("c1") is False
        assert storage.get_code("c1").used is True

    def test_consume_unknown(self, storage):
        assert storage.consume_code("missing") is False

    def test_delete_codes_for_user(self, storage):
        storage.add_client(_client())
        storage.add_code(_code("c1"))
        storage.add_code(_code("c2"))
        assert storage.delete_codes("cl_1", "user-2") == 0
        assert storage.delete_codes("cl_1", "user-1") == 2
        assert storage.get_code("c1") is None


class TestTokens:
    def test_access_token_lookup_and_revoke(self, storage):
        storage.add_client(_client())
        token = _access()
        storage.add_access_token(token)
        assert storage.get_access_token("at_1").id == token.id
        assert storage.get_access_token_by_id(token.id).token == "at_1"
        assert storage.revoke_access_token(token.id) is True
        assert storage.revoke_access_token(token.id) is False
        assert storage.get_access_token("at_1").revoked is True

    def test_refresh_revoke_records_successor(self, storage):
        storage.add_client(_client())
        old = _refresh()
        storage.add_refresh_token(old)
        assert storage.revoke_refresh_token(old.id, replaced_by="next-id") is True
        assert storage.revoke_refresh_token(old.id, replaced_by="other-id") is False
        loaded = storage.get_refresh_token("rt_1")
        assert loaded.revoked is True
        assert loaded.replaced_by == "next-id"

    def test_rotate_stores_successors_and_revokes_old(self, storage):
        storage.add_client(_client())
        old = _refresh()
        storage.add_refresh_token(old)
        new = _refresh("rt_2")
        access = _access("at_2", refresh_token_id=new.id)

        assert storage.rotate_refresh_token(old.id, access, new) is True
        loaded = storage.get_refresh_token("rt_1")
        assert loaded.revoked is True
        assert loaded.replaced_by == new.id
        assert storage.get_refresh_token("rt_2").revoked is False
        assert storage.get_access_token("at_2").refresh_token_id == new.id

    def test_rotate_loser_stores_nothing(self, storage):
        storage.add_client(_client())
        old = _refresh()
        storage.add_refresh_token(old)
        assert storage.rotate_refresh_token(old.id, _access("at_2"), _refresh("rt_2")) is True

        assert storage.rotate_refresh_token(old.id, _access("at_3"), _refresh("rt_3")) is False
        assert storage.get_access_token("at_3") is None
        assert storage.get_refresh_token("rt_3") is None
        assert storage.rotate_refresh_token("missing", _access("at_4"), _refresh("rt_4")) is False

    def test_list_filters(self, storage):
        storage.add_client(_client())
        storage.add_access_token(_access("at_1"))
        storage.add_access_token(_access("at_2", user_id="user-2"))
        assert len(storage.list_access_tokens(client_id="cl_1")) == 2
        assert [t.token for t in storage.list_access_tokens(user_id="user-2")] == ["at_2"]
        assert storage.list_refresh_tokens(user_id="user-1") == []

    def test_purge_expired(self, storage):
        storage.add_client(_client())
        storage.add_code(_code("old", expires_at=NOW - timedelta(minutes=1)))
        storage.add_code(_code("new"))
        storage.add_access_token(_access("at_old", expires_at=NOW - timedelta(seconds=1)))
        storage.add_access_token(_access("at_new"))
        storage.add_refresh_token(_refresh("rt_old", expires_at=NOW - timedelta(days=1)))

        assert storage.purge_expired(NOW) == 3
        assert storage.get_code("new") is not None
        assert storage.get_access_token("at_new") is not None
        assert storage.get_access_token("at_old") is None
        assert storage.get_refresh_token("rt_old") is None


def test_create_storage_selects_backend(tmp_path):
    assert isinstance(create_storage(Settings(secret_key="s")), MemoryOAuthStorage)
    sql = create_storage(
        Settings(
            secret_key="s",
            storage_backend="sql",
            database_url=f"sqlite:///{tmp_path / 'x.db'}",
        )
    )
    assert isinstance(sql, SQLOAuthStorage)
    sql.dispose()


def test_sql_rotate_rolls_back_when_insert_fails(tmp_path):
    store = SQLOAuthStorage(f"sqlite:///{tmp_path / 'oauth.db'}")
    store.add_client(_client())
    old = _refresh()
    store.add_refresh_token(old)
    store.add_access_token(_access("at_taken"))

    # Duplicate access token value violates the unique constraint.
    with pytest.raises(ValueError):
        store.rotate_refresh_token(old.id, _access("at_taken"), _refresh("rt_2"))

    loaded = store.get_refresh_token("rt_1")
    assert loaded.revoked is False
    assert loaded.replaced_by is None
    assert store.get_refresh_token("rt_2") is None
    store.dispose()


def test_in_memory_sqlite_shares_one_connection():
    store = SQLOAuthStorage("sqlite://")
    store.add_client(_client())
    assert store.get_client("cl_1") is not None
    store.dispose()
