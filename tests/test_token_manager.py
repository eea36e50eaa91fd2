import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import connect_linkedin
from multipost.db import crud_accounts, crud_users, token_crypto
from multipost.db.base import Base
from multipost.db.models import Platform
from multipost.errors import AuthExchangeFailed, NotConnected, ReauthRequired
from multipost.services import token_manager
from multipost.services.linkedin_api import LinkedInClient
from multipost.services.platforms import TokenGrant
from multipost.utils.helpers import utcnow


def _client(grant=None, error=None):
    client = MagicMock(spec=LinkedInClient)
    if error is not None:
        client.refresh.side_effect = error
    else:
        client.refresh.return_value = grant
    return client


def _stored(db, user_id):
    return crud_accounts.get_account(db, user_id, Platform.LINKEDIN, fresh=True)


def test_valid_token_is_returned_unchanged(db, user):
    connect_linkedin(db, user.id, access="still-good", expires_in=3600)
    client = _client()

    token = token_manager.get_valid_token(db, user.id, client=client)

    assert token.access_token == "still-good"
    assert token.refreshed is False
    client.refresh.assert_not_called()


def test_token_expiring_in_four_minutes_is_refreshed(db, user):
    connect_linkedin(db, user.id, access="old", refresh="refresh-1", expires_in=240)
    client = _client(TokenGrant(access_token="new", expires_in=3600, refresh_token="refresh-2"))

    token = token_manager.get_valid_token(db, user.id, client=client)

    assert token.access_token == "new"
    assert token.refreshed is True
    client.refresh.assert_called_once_with("refresh-1")
    row = _stored(db, user.id)
    assert token_crypto.decrypt_token(row.access_token_encrypted) == "new"
    assert token_crypto.decrypt_token(row.refresh_token_encrypted) == "refresh-2"
    assert row.token_expires_at > utcnow() + timedelta(minutes=55)


def test_refresh_without_new_refresh_token_keeps_the_old_one(db, user):
    connect_linkedin(db, user.id, access="old", refresh="keep-me", expires_in=-60)
    client = _client(TokenGrant(access_token="new", expires_in=3600))

    token_manager.get_valid_token(db, user.id, client=client)

    row = _stored(db, user.id)
    assert token_crypto.decrypt_token(row.refresh_token_encrypted) == "keep-me"


def test_expired_without_refresh_token_requires_reauth_and_leaves_row(db, user):
    connect_linkedin(db, user.id, access="old", refresh=None, expires_in=-60)
    before = _stored(db, user.id)
    snapshot = (before.access_token_encrypted, before.refresh_token_encrypted, before.token_expires_at)
    client = _client()

    with pytest.raises(ReauthRequired) as exc:
        token_manager.get_valid_token(db, user.id, client=client)

    assert "reconnect" in exc.value.message.lower()
    client.refresh.assert_not_called()
    after = _stored(db, user.id)
    assert (after.access_token_encrypted, after.refresh_token_encrypted, after.token_expires_at) == snapshot


def test_failed_refresh_requires_reauth(db, user):
    connect_linkedin(db, user.id, access="old", refresh="revoked", expires_in=-60)
    client = _client(error=AuthExchangeFailed("The provided refresh token is invalid"))

    with pytest.raises(ReauthRequired) as exc:
        token_manager.get_valid_token(db, user.id, client=client)

    assert "refresh token is invalid" in exc.value.message
    assert token_crypto.decrypt_token(_stored(db, user.id).access_token_encrypted) == "old"


def test_not_connected(db, user):
    with pytest.raises(NotConnected):
        token_manager.get_valid_token(db, user.id, client=_client())


def test_lost_rotation_race_uses_the_winning_token(db, user):
    connect_linkedin(db, user.id, access="old", refresh="refresh-1", expires_in=60)

    def concurrent_refresh(refresh_token):
        # another process rotates the row while our exchange is in flight
        connect_linkedin(db, user.id, access="theirs", refresh="refresh-x", expires_in=3600)
        return TokenGrant(access_token="ours", expires_in=3600)

    client = MagicMock(spec=LinkedInClient)
    client.refresh.side_effect = concurrent_refresh

    token = token_manager.get_valid_token(db, user.id, client=client)

    assert token.access_token == "theirs"
    assert token.refreshed is False
    assert token_crypto.decrypt_token(_stored(db, user.id).access_token_encrypted) == "theirs"


def test_status_round_trip_after_connect(db, user):
    connect_linkedin(db, user.id, refresh="r", expires_in=3600)

    status = token_manager.get_status(db, user.id)

    assert status["connected"] is True
    assert status["isExpired"] is False
    assert status["canRefresh"] is True
    assert status["needsReconnect"] is False


def test_status_flags_reconnect_when_dead(db, user):
    connect_linkedin(db, user.id, refresh=None, expires_in=-10)

    status = token_manager.get_status(db, user.id)

    assert status == {
        "connected": True,
        "expiresAt": status["expiresAt"],
        "isExpired": True,
        "canRefresh": False,
        "needsReconnect": True,
    }


def test_status_not_connected(db, user):
    assert token_manager.get_status(db, user.id) == {"connected": False}


def test_missing_expiry_counts_as_expired():
    assert token_manager.is_token_expired(None) is True
    now = utcnow()
    assert token_manager.is_token_expired(now + timedelta(minutes=4), now) is True
    assert token_manager.is_token_expired(now + timedelta(minutes=6), now) is False


def test_concurrent_callers_share_a_single_refresh(tmp_path):
    # file database so each session gets its own connection
    engine = create_engine(f"sqlite:///{tmp_path / 'tokens.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    user_id = crud_users.create_user(setup, "grace@example.com").id
    connect_linkedin(setup, user_id, access="old", refresh="r1", expires_in=60)
    setup.close()

    def slow_refresh(refresh_token):
        time.sleep(0.2)
        return TokenGrant(access_token="new", expires_in=3600, refresh_token="r2")

    client = MagicMock(spec=LinkedInClient)
    client.refresh.side_effect = slow_refresh
    results, errors = [], []

    def call():
        session = Session()
        try:
            results.append(token_manager.get_valid_token(session, user_id, client=client))
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=call) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert client.refresh.call_count == 1
    assert [r.access_token for r in results] == ["new", "new"]
    assert sorted(r.refreshed for r in results) == [False, True]

    check = Session()
    stored = crud_accounts.get_account(check, user_id, Platform.LINKEDIN)
    assert token_crypto.decrypt_token(stored.access_token_encrypted) == "new"
    assert token_crypto.decrypt_token(stored.refresh_token_encrypted) == "r2"
    check.close()
    engine.dispose()
