import pytest

from conftest import connect_bluesky, connect_linkedin
from multipost.db import crud_accounts, token_crypto
from multipost.db.models import ConnectedAccount, Platform
from multipost.errors import ValidationError


def test_connecting_twice_replaces_instead_of_duplicating(db, user):
    connect_linkedin(db, user.id, access="first", member_id="m-1")
    connect_linkedin(db, user.id, access="second", refresh=None, member_id="m-2")

    rows = db.query(ConnectedAccount).filter(ConnectedAccount.user_id == user.id).all()
    assert len(rows) == 1
    row = rows[0]
    assert token_crypto.decrypt_token(row.access_token_encrypted) == "second"
    assert row.refresh_token_encrypted is None
    assert row.platform_user_id == "m-2"


def test_upsert_does_not_merge_unsupplied_fields(db, user):
    crud_accounts.upsert_account(db, user.id, "bluesky", handle="old.bsky.social", platform_user_id="did:old")
    row = crud_accounts.upsert_account(db, user.id, "bluesky", platform_user_id="did:new")
    assert row.handle is None
    assert row.platform_user_id == "did:new"


def test_upsert_rejects_unknown_fields(db, user):
    with pytest.raises(TypeError):
        crud_accounts.upsert_account(db, user.id, "bluesky", password="nope")


def test_get_account_missing_returns_none(db, user):
    assert crud_accounts.get_account(db, user.id, Platform.LINKEDIN) is None


def test_list_accounts_never_exposes_secrets(db, user):
    connect_linkedin(db, user.id, access="li-secret", refresh="li-refresh")
    connect_bluesky(db, user.id, app_password="bsky-secret")

    accounts = crud_accounts.list_accounts(db, user.id)

    assert {a["platform"] for a in accounts} == {"linkedin", "bluesky"}
    for a in accounts:
        assert set(a) == {"id", "platform", "platform_user_id", "handle", "created_at"}
        flat = " ".join(str(v) for v in a.values())
        for secret in ("li-secret", "li-refresh", "bsky-secret"):
            assert secret not in flat


def test_list_accounts_is_scoped_to_user(db, user):
    from multipost.db import crud_users

    other = crud_users.create_user(db, "grace@example.com")
    connect_bluesky(db, other.id)
    assert crud_accounts.list_accounts(db, user.id) == []


def test_delete_is_idempotent(db, user):
    connect_bluesky(db, user.id)
    assert crud_accounts.delete_account(db, user.id, "bluesky") is True
    assert crud_accounts.delete_account(db, user.id, "bluesky") is False
    assert crud_accounts.get_account(db, user.id, "bluesky") is None


def test_unknown_platform_is_a_validation_error(db, user):
    with pytest.raises(ValidationError):
        crud_accounts.get_account(db, user.id, "myspace")
    with pytest.raises(ValidationError):
        crud_accounts.delete_account(db, user.id, "myspace")


def test_rotate_tokens_is_compare_and_set(db, user):
    row = connect_linkedin(db, user.id, access="a1")
    stale = token_crypto.encrypt_token("someone-else")

    assert crud_accounts.rotate_tokens(
        db, user.id, "linkedin", stale, token_crypto.encrypt_token("a2"), None, None
    ) is False
    current = crud_accounts.get_account(db, user.id, "linkedin", fresh=True)
    assert token_crypto.decrypt_token(current.access_token_encrypted) == "a1"

    assert crud_accounts.rotate_tokens(
        db, user.id, "linkedin", row.access_token_encrypted, token_crypto.encrypt_token("a2"), None, None
    ) is True
    current = crud_accounts.get_account(db, user.id, "linkedin", fresh=True)
    assert token_crypto.decrypt_token(current.access_token_encrypted) == "a2"
