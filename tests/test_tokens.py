import threading
import time
from datetime import timedelta

import pytest
import requests
from cryptography.fernet import Fernet

from conftest import FakeResp, FakeSession, token_payload
from workout_calendar.errors import (
    ExchangeError,
    NoCredentialError,
    TokenRefreshError,
)
from workout_calendar.models import Credential
from workout_calendar.strava_client.tokens import TokenCipher, TokenManager, TokenStore
from workout_calendar.utils import mask_token


def _manager(store, clock, session, cipher=None):
    return TokenManager(
        TokenStore(store, cipher=cipher),
        session=session,
        clock=clock,
        client_id="cid",
        client_secret="csec",
    )


def _seed(store, expires_at, access="stored-access", refresh="stored-refresh"):
    store.set("strava_access_token", access)
    store.set("strava_refresh_token", refresh)
    store.set("strava_expires_at", str(expires_at))


def test_valid_token_returned_without_network(store, clock, valid_credential):
    session = FakeSession()
    manager = _manager(store, clock, session)

    assert manager.get_valid_access_token() == "stored-access"
    assert session.post_calls == []


def test_expired_token_refreshed_once_and_persisted(store, clock):
    _seed(store, int((clock() - timedelta(minutes=1)).timestamp()))
    new_expiry = int((clock() + timedelta(hours=6)).timestamp())
    session = FakeSession(
        post_responses=[
            FakeResp(200, token_payload("new-access", "new-refresh", new_expiry))
        ]
    )
    manager = _manager(store, clock, session)

    assert manager.get_valid_access_token() == "new-access"
    assert len(session.post_calls) == 1
    sent = session.post_calls[0]["data"]
    assert sent["grant_type"] == "refresh_token"
    assert sent["refresh_token"] == "stored-refresh"
    assert sent["client_id"] == "cid"
    assert store.get("strava_access_token") == "new-access"
    assert store.get("strava_refresh_token") == "new-refresh"
    assert int(store.get("strava_expires_at")) > clock().timestamp()


def test_token_expiring_exactly_now_is_refreshed(store, clock):
    _seed(store, int(clock().timestamp()))
    new_expiry = int((clock() + timedelta(hours=6)).timestamp())
    session = FakeSession(post_responses=[FakeResp(200, token_payload(expires_at=new_expiry))])

    assert _manager(store, clock, session).get_valid_access_token() == "AAA"
    assert len(session.post_calls) == 1


def test_refresh_keeps_old_refresh_token_when_not_rotated(store, clock):
    _seed(store, 0)
    payload = {"access_token": "new-access", "expires_in": 3600}
    session = FakeSession(post_responses=[FakeResp(200, payload)])

    _manager(store, clock, session).get_valid_access_token()

    assert store.get("strava_refresh_token") == "stored-refresh"
    expected = int((clock() + timedelta(seconds=3600)).timestamp())
    assert int(store.get("strava_expires_at")) == expected


def test_missing_credentials_raise_no_credential(store, clock):
    session = FakeSession()
    with pytest.raises(NoCredentialError):
        _manager(store, clock, session).get_valid_access_token()
    assert session.post_calls == []


def test_seeded_refresh_token_is_exchanged(store, clock):
    TokenStore(store).seed_refresh_token("seeded")
    expiry = int((clock() + timedelta(hours=6)).timestamp())
    session = FakeSession(post_responses=[FakeResp(200, token_payload(expires_at=expiry))])

    assert _manager(store, clock, session).get_valid_access_token() == "AAA"
    assert session.post_calls[0]["data"]["refresh_token"] == "seeded"


def test_refresh_http_error_leaves_storage_untouched(store, clock):
    _seed(store, 0)
    session = FakeSession(
        post_responses=[
            FakeResp(
                400,
                data={
                    "message": "Bad Request",
                    "errors": [{"field": "refresh_token", "code": "invalid"}],
                },
            )
        ]
    )

    with pytest.raises(TokenRefreshError) as excinfo:
        _manager(store, clock, session).get_valid_access_token()

    assert excinfo.value.status_code == 400
    assert "refresh_token:invalid" in excinfo.value.detail
    assert store.get("strava_refresh_token") == "stored-refresh"
    assert store.get("strava_access_token") == "stored-access"


def test_refresh_invalid_json(store, clock):
    _seed(store, 0)
    session = FakeSession(
        post_responses=[FakeResp(200, data=ValueError("invalid json"), text="not-json")]
    )
    with pytest.raises(TokenRefreshError):
        _manager(store, clock, session).get_valid_access_token()


def test_refresh_missing_access_token(store, clock):
    _seed(store, 0)
    session = FakeSession(post_responses=[FakeResp(200, {"refresh_token": "x"})])
    with pytest.raises(TokenRefreshError):
        _manager(store, clock, session).get_valid_access_token()


def test_refresh_transport_error(store, clock):
    _seed(store, 0)
    session = FakeSession(post_responses=[requests.ConnectionError("down")])
    with pytest.raises(TokenRefreshError):
        _manager(store, clock, session).get_valid_access_token()


def test_refresh_without_client_credentials(store, clock):
    _seed(store, 0)
    session = FakeSession()
    manager = TokenManager(
        TokenStore(store), session=session, clock=clock, client_id="", client_secret=""
    )
    with pytest.raises(TokenRefreshError):
        manager.get_valid_access_token()
    assert session.post_calls == []


def test_concurrent_callers_share_one_refresh(store, clock):
    _seed(store, 0)
    expiry = int((clock() + timedelta(hours=6)).timestamp())

    def slow_refresh(**kwargs):
        time.sleep(0.05)
        return FakeResp(200, token_payload("shared", "rotated", expiry))

    session = FakeSession(post_responses=[slow_refresh])
    manager = _manager(store, clock, session)
    results = []

    def worker():
        results.append(manager.get_valid_access_token())

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=2)

    assert results == ["shared"] * 5
    assert len(session.post_calls) == 1


def test_invalidate_keeps_refresh_token(store, clock, valid_credential):
    manager = _manager(store, clock, FakeSession())
    manager.invalidate_access_token()

    assert store.get("strava_access_token") is None
    assert store.get("strava_expires_at") is None
    assert manager.has_grant()


def test_exchange_authorization_code_success(store, clock):
    expiry = int((clock() + timedelta(hours=6)).timestamp())
    session = FakeSession(
        post_responses=[FakeResp(200, token_payload("first-access", "first-refresh", expiry))]
    )
    manager = _manager(store, clock, session)

    credential = manager.exchange_authorization_code("the-code", "http://localhost/cb")

    assert credential == Credential("first-access", "first-refresh", expiry)
    sent = session.post_calls[0]["data"]
    assert sent["grant_type"] == "authorization_code"
    assert sent["code"] == "the-code"
    assert sent["redirect_uri"] == "http://localhost/cb"
    assert manager.get_valid_access_token() == "first-access"


@pytest.mark.parametrize(
    "response",
    [
        FakeResp(400, {"message": "Bad Request"}),
        FakeResp(200, data=ValueError("bad json"), text="<html>"),
        FakeResp(200, {"access_token": "only-access"}),
        requests.Timeout("slow"),
    ],
)
def test_exchange_authorization_code_failures(store, clock, response):
    session = FakeSession(post_responses=[response])
    with pytest.raises(ExchangeError):
        _manager(store, clock, session).exchange_authorization_code("code")
    assert store.get("strava_access_token") is None


def test_exchange_requires_code(store, clock):
    session = FakeSession()
    with pytest.raises(ExchangeError):
        _manager(store, clock, session).exchange_authorization_code("")
    assert session.post_calls == []


def test_clear_all_credentials_drops_activity_cache(store, clock, valid_credential):
    store.set("strava_activities_cache", "[]")
    store.set("strava_activities_cache_expiry", "1")
    store.set("hevy_workouts_cache", "[]")

    _manager(store, clock, FakeSession()).clear_all_credentials()

    assert set(store.snapshot()) == {"hevy_workouts_cache"}


def test_cipher_encrypts_tokens_at_rest(store, clock):
    cipher = TokenCipher(Fernet.generate_key().decode())
    token_store = TokenStore(store, cipher=cipher)
    token_store.save(Credential("plain-access", "plain-refresh", 123))

    raw = store.snapshot()
    assert raw["strava_access_token"] != "plain-access"
    assert raw["strava_refresh_token"] != "plain-refresh"
    assert raw["strava_expires_at"] == "123"
    assert token_store.load() == Credential("plain-access", "plain-refresh", 123)


def test_cipher_with_wrong_key_treats_tokens_as_absent(store):
    TokenStore(store, cipher=TokenCipher(Fernet.generate_key())).save(
        Credential("a", "r", 123)
    )
    other = TokenStore(store, cipher=TokenCipher(Fernet.generate_key()))

    assert other.load() is None
    assert not other.has_grant()


def test_cipher_rejects_malformed_key():
    with pytest.raises(ValueError):
        TokenCipher("not-a-fernet-key")


def test_mask_token_only_shows_tail():
    assert mask_token("abcdef123456") == "********3456"
    assert mask_token("abc") == "abc"
    assert mask_token(None) == ""
    assert mask_token("secret", visible=0) == "******"


def test_refresh_logs_mask_tokens(store, clock, caplog):
    _seed(store, 0, refresh="refresh-secret-9999")
    expiry = int((clock() + timedelta(hours=6)).timestamp())
    session = FakeSession(
        post_responses=[FakeResp(200, token_payload("access-secret-1111", "r2", expiry))]
    )

    with caplog.at_level("INFO"):
        _manager(store, clock, session).get_valid_access_token()

    assert "refresh-secret-9999" not in caplog.text
    assert "access-secret-1111" not in caplog.text
    assert "9999" in caplog.text


@pytest.mark.parametrize("raw", ["inf", "1e400", "soon"])
def test_corrupt_expiry_treated_as_absent(store, clock, raw):
    _seed(store, 0)
    store.set("strava_expires_at", raw)

    assert TokenStore(store).load() is None
    assert TokenStore(store).has_grant()
