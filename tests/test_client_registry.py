# Tests for the client registry.
# Created: 2026-10-18

import pytest

from authgate.api.oauth2.errors import (
    ClientNotFound,
    ClientRegistrationError,
    Forbidden,
    InvalidClientError,
)
from authgate.api.oauth2.registry import (
    ClientFullView,
    ClientPatch,
    ClientPublicView,
    ClientRegistry,
)
from authgate.api.oauth2.storage import MemoryOAuthStorage
from authgate.config import Settings


@pytest.fixture
def settings():
    return Settings(secret_key="test-secret")


@pytest.fixture
def storage():
    return MemoryOAuthStorage()


@pytest.fixture
def registry(storage, settings):
    return ClientRegistry(storage, settings)


@pytest.fixture
def client(registry):
    return registry.register(
        owner_id="owner-1",
        name="Photo Printer",
        redirect_uris=["https://app.test/cb"],
        description="Prints photos",
    )


class TestRegister:
    def test_generates_identity_and_defaults(self, client):
        assert client.client_id.startswith("cl_")
        assert client.client_secret.startswith("cs_")
        assert client.allowed_scopes == ["openid", "profile", "email"]
        assert client.is_active is True
        assert client.is_verified is False

    def test_ids_and_secrets_are_unique(self, registry):
        a = registry.register("o", "A", ["https://a.test/cb"])
        b = registry.register("o", "B", ["https://b.test/cb"])
        assert a.client_id != b.client_id
        assert a.client_secret != b.client_secret

    def test_empty_redirect_uris(self, registry):
        with pytest.raises(ClientRegistrationError) as exc:
            registry.register("o", "A", [])
        assert exc.value.error == "invalid_redirect_uri"

    def test_fragment_redirect_rejected(self, registry):
        with pytest.raises(ClientRegistrationError) as exc:
            registry.register("o", "A", ["https://a.test/cb#x"])
        assert exc.value.error == "invalid_redirect_uri"

    def test_blank_name(self, registry):
        with pytest.raises(ClientRegistrationError) as exc:
            registry.register("o", "   ", ["https://a.test/cb"])
        assert exc.value.error == "invalid_client_metadata"

    def test_unknown_scope(self, registry):
        with pytest.raises(ClientRegistrationError) as exc:
            registry.register("o", "A", ["https://a.test/cb"], scopes=["openid", "admin"])
        assert exc.value.error == "invalid_client_metadata"

    def test_unknown_auth_method(self, registry):
        with pytest.raises(ClientRegistrationError):
            registry.register(
                "o", "A", ["https://a.test/cb"], token_endpoint_auth_method="private_key_jwt"
            )

    def test_nothing_persisted_on_failure(self, registry, storage):
        with pytest.raises(ClientRegistrationError):
            registry.register("o", "A", [])
        assert storage.list_clients("o") == []


class TestViews:
    def test_owner_sees_full_view(self, registry, client):
        view = registry.get(client.client_id, requester_id="owner-1")
        assert isinstance(view, ClientFullView)
        assert view.client_secret == client.client_secret
        assert view.owner_id == "owner-1"

    def test_other_user_sees_public_view(self, registry, client):
        view = registry.get(client.client_id, requester_id="someone-else")
        assert type(view) is ClientPublicView
        assert not hasattr(view, "client_secret")
        assert not hasattr(view, "owner_id")
        assert view.name == "Photo Printer"

    def test_anonymous_sees_public_view(self, registry, client):
        assert type(registry.get(client.client_id)) is ClientPublicView

    def test_unknown_client(self, registry):
        with pytest.raises(ClientNotFound):
            registry.get("cl_missing")

    def test_list_is_owner_scoped_and_secret_free(self, registry, client):
        registry.register("owner-2", "Other", ["https://o.test/cb"])
        newer = registry.register("owner-1", "Second", ["https://s.test/cb"])

        listed = registry.list_clients("owner-1")
        assert [c.client_id for c in listed] == [newer.client_id, client.client_id]
        assert all(not hasattr(c, "client_secret") for c in listed)

    def test_get_public_hides_secret_even_from_owner(self, registry, client):
        view = registry.get_public(client.client_id)
        assert type(view) is ClientPublicView
        assert view.redirect_uris == ["https://app.test/cb"]
        with pytest.raises(ClientNotFound):
            registry.get_public("cl_missing")

    def test_get_owned_checks_owner(self, registry, client):
        with pytest.raises(Forbidden):
            registry.get_owned(client.client_id, "intruder")


class TestMutations:
    def test_update_is_partial(self, registry, client):
        updated = registry.update(client.client_id, "owner-1", ClientPatch(name="Renamed"))
        assert updated.name == "Renamed"
        assert updated.description == "Prints photos"
        assert updated.redirect_uris == ["https://app.test/cb"]

    def test_update_validates_supplied_fields(self, registry, client):
        with pytest.raises(ClientRegistrationError):
            registry.update(client.client_id, "owner-1", ClientPatch(redirect_uris=[]))
        assert registry.get_owned(client.client_id, "owner-1").redirect_uris == [
            "https://app.test/cb"
        ]

    def test_update_requires_owner(self, registry, client):
        with pytest.raises(Forbidden):
            registry.update(client.client_id, "intruder", ClientPatch(name="Pwned"))

    def test_update_unknown_client(self, registry):
        with pytest.raises(ClientNotFound):
            registry.update("cl_missing", "owner-1", ClientPatch(name="x"))

    def test_rotate_secret_invalidates_old(self, registry, client):
        old = client.client_secret
        new = registry.rotate_secret(client.client_id, "owner-1")
        assert new != old
        with pytest.raises(InvalidClientError):
            registry.authenticate(client.client_id, old)
        assert registry.authenticate(client.client_id, new).client_id == client.client_id

    def test_rotate_requires_owner(self, registry, client):
        with pytest.raises(Forbidden):
            registry.rotate_secret(client.client_id, "intruder")

    def test_deactivate(self, registry, client):
        registry.deactivate(client.client_id, "owner-1")
        assert registry.get(client.client_id).is_active is False
        with pytest.raises(InvalidClientError):
            registry.authenticate(client.client_id, client.client_secret)

    def test_delete_requires_owner(self, registry, client):
        with pytest.raises(Forbidden):
            registry.delete(client.client_id, "intruder")
        assert registry.get(client.client_id)

    def test_delete_removes_client(self, registry, client):
        registry.delete(client.client_id, "owner-1")
        with pytest.raises(ClientNotFound):
            registry.get(client.client_id)

    def test_mark_verified(self, registry, client):
        registry.mark_verified(client.client_id)
        assert registry.get(client.client_id).is_verified is True


class TestAuthenticate:
    def test_good_secret(self, registry, client):
        assert registry.authenticate(client.client_id, client.client_secret).name == (
            "Photo Printer"
        )

    def test_bad_secret(self, registry, client):
        with pytest.raises(InvalidClientError):
            registry.authenticate(client.client_id, "cs_wrong")

    def test_confidential_client_without_secret(self, registry, client):
        with pytest.raises(InvalidClientError):
            registry.authenticate(client.client_id, None)

    def test_unknown_client(self, registry):
        with pytest.raises(InvalidClientError):
            registry.authenticate("cl_missing", "whatever")

    def test_public_client_without_secret(self, registry):
        public = registry.register(
            "o", "SPA", ["https://spa.test/cb"], token_endpoint_auth_method="none"
        )
        assert registry.authenticate(public.client_id, None).is_public
