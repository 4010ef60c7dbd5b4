# Concurrency tests: a code redeems once, a refresh token rotates once.
# Created: 2026-10-18

from concurrent.futures import ThreadPoolExecutor

import pytest

from authgate.api.oauth2 import pkce
from authgate.api.oauth2.errors import InvalidGrantError
from authgate.api.oauth2.server import AuthorizationServer
from authgate.api.oauth2.sql_storage import SQLOAuthStorage
from authgate.api.oauth2.storage import MemoryOAuthStorage
from authgate.config import Settings

REDIRECT = "https://app.test/cb"
WORKERS = 16


@pytest.fixture(params=["memory", "sql"])
def storage(request, tmp_path):
    if request.param == "memory":
        yield MemoryOAuthStorage()
        return
    store = SQLOAuthStorage(f"sqlite:///{tmp_path / 'race.db'}")
    yield store
    store.dispose()


@pytest.fixture
def server(storage):
    return AuthorizationServer(storage, settings=Settings(secret_key="s"), secret_key="s")


@pytest.fixture
def client(server):
    return server.clients.register(
        "dev-1", "Racer", [REDIRECT], scopes=["openid", "offline_access"]
    )


def _attempt(fn):
    try:
        return fn()
    except InvalidGrantError:
        return None


def test_parallel_code_redemption_succeeds_once(server, storage, client):
    verifier, challenge = pkce.make_pair()
    code, _ = server.authorize(
        "user-1",
        client.client_id,
        REDIRECT,
        scope="openid offline_access",
        code_challenge=challenge,
        code_challenge_method="S256",
    )

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(
            pool.map(
                lambda _: _attempt(
                    lambda: server.exchange_code(client, code, REDIRECT, verifier)
                ),
                range(WORKERS),
            )
        )

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert storage.get_code(code).used is True
    assert len(storage.list_access_tokens(client_id=client.client_id)) == 1


def test_parallel_refresh_rotates_once(server, storage, client):
    code, _ = server.authorize(
        "user-1", client.client_id, REDIRECT, scope="openid offline_access"
    )
    first = server.exchange_code(client, code, REDIRECT)

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(
            pool.map(
                lambda _: _attempt(lambda: server.refresh(client, first.refresh_token)),
                range(WORKERS),
            )
        )

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    live = [
        t for t in storage.list_refresh_tokens(client_id=client.client_id) if not t.revoked
    ]
    assert len(live) <= 1
