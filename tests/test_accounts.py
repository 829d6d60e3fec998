"""Tests for accounts: registration, password reset, addresses and favorites."""

from datetime import datetime, timedelta, timezone

import pytest

import accounts
from accounts import AddressIn, ProfileUpdate, UserCreate
from database import to_oid
from errors import AuthError, NotFoundError, ValidationError


def fetch(db, uid):
    return db["user"].find_one({"_id": to_oid(uid)})


class TestRegistration:
    def test_register_and_authenticate(self, db):
        user = accounts.register(db, UserCreate(name="Ada", email="Ada@Example.com", password="secret123"))
        assert user["email"] == "ada@example.com"
        assert user["password_hash"] != "secret123"
        assert accounts.authenticate(db, "ADA@example.com", "secret123")["_id"] == user["_id"]

    def test_duplicate_email(self, db):
        accounts.register(db, UserCreate(name="Ada", email="ada@example.com", password="secret123"))
        with pytest.raises(ValidationError):
            accounts.register(db, UserCreate(name="Other", email="ADA@example.com", password="secret456"))

    def test_wrong_password(self, db):
        accounts.register(db, UserCreate(name="Ada", email="ada@example.com", password="secret123"))
        with pytest.raises(AuthError):
            accounts.authenticate(db, "ada@example.com", "wrong-pass")

    def test_unknown_email(self, db):
        with pytest.raises(AuthError):
            accounts.authenticate(db, "nobody@example.com", "secret123")

    def test_user_out_hides_hash(self, db, make_user):
        uid, _ = make_user()
        out = accounts.user_out(fetch(db, uid))
        assert out["id"] == uid
        assert "password_hash" not in out


class TestPasswordReset:
    def test_reset_flow(self, db, mailer, make_user):
        uid, _ = make_user(email="reset@example.com")
        accounts.request_password_reset(db, mailer, "reset@example.com")
        code = fetch(db, uid)["reset_code"]
        assert len(code) == 6
        assert code in mailer.sent[0]["html"]

        accounts.reset_password(db, "reset@example.com", code, "brand-new-pass")
        assert accounts.authenticate(db, "reset@example.com", "brand-new-pass")["_id"] == to_oid(uid)
        assert fetch(db, uid)["reset_code"] is None

    def test_wrong_code(self, db, mailer, make_user):
        make_user(email="reset@example.com")
        accounts.request_password_reset(db, mailer, "reset@example.com")
        with pytest.raises(ValidationError):
            accounts.reset_password(db, "reset@example.com", "000000x", "brand-new-pass")

    def test_expired_code(self, db, mailer, make_user):
        uid, _ = make_user(email="reset@example.com")
        issued = datetime.now(timezone.utc) - timedelta(hours=1)
        accounts.request_password_reset(db, mailer, "reset@example.com", now=issued)
        code = fetch(db, uid)["reset_code"]
        with pytest.raises(ValidationError):
            accounts.reset_password(db, "reset@example.com", code, "brand-new-pass")

    def test_unknown_email_is_silent(self, db, mailer):
        accounts.request_password_reset(db, mailer, "ghost@example.com")
        assert mailer.sent == []


class TestProfile:
    def test_update_profile(self, db, make_user):
        uid, _ = make_user()
        updated = accounts.update_profile(db, fetch(db, uid), ProfileUpdate(phone="555-0100", currency="eur"))
        assert updated["phone"] == "555-0100"
        assert updated["currency"] == "EUR"


class TestAddresses:
    def test_single_default(self, db, make_user):
        uid, _ = make_user()
        accounts.add_address(db, fetch(db, uid), AddressIn(full_name="Home", city="Lagos", is_default=True))
        addresses = accounts.add_address(db, fetch(db, uid), AddressIn(full_name="Office", city="Abuja", is_default=True))
        assert [a["is_default"] for a in addresses] == [False, True]

    def test_update_address(self, db, make_user):
        uid, _ = make_user()
        addresses = accounts.add_address(db, fetch(db, uid), AddressIn(full_name="Home", city="Lagos"))
        address_id = addresses[0]["id"]
        updated = accounts.update_address(db, fetch(db, uid), address_id, AddressIn(city="Ibadan"))
        assert updated[0]["city"] == "Ibadan"
        assert updated[0]["full_name"] == "Home"

    def test_update_missing_address(self, db, make_user):
        uid, _ = make_user()
        with pytest.raises(NotFoundError):
            accounts.update_address(db, fetch(db, uid), "missing", AddressIn(city="Ibadan"))

    def test_delete_address(self, db, make_user):
        uid, _ = make_user()
        addresses = accounts.add_address(db, fetch(db, uid), AddressIn(full_name="Home"))
        assert accounts.delete_address(db, fetch(db, uid), addresses[0]["id"]) == []


class TestFavorites:
    def test_add_list_remove(self, db, make_user, make_product):
        uid, _ = make_user()
        ring = make_product()
        accounts.add_favorite(db, fetch(db, uid), ring.id)
        assert [p["id"] for p in accounts.list_favorites(db, fetch(db, uid))] == [ring.id]
        assert accounts.remove_favorite(db, fetch(db, uid), ring.id) == []
        assert accounts.list_favorites(db, fetch(db, uid)) == []

    def test_duplicate_favorite(self, db, make_user, make_product):
        uid, _ = make_user()
        ring = make_product()
        accounts.add_favorite(db, fetch(db, uid), ring.id)
        with pytest.raises(ValidationError):
            accounts.add_favorite(db, fetch(db, uid), ring.id)

    def test_unknown_product(self, db, make_user):
        uid, _ = make_user()
        with pytest.raises(NotFoundError):
            accounts.add_favorite(db, fetch(db, uid), "64b0000000000000000000ff")

    def test_inactive_favorites_are_hidden(self, db, make_user, make_product):
        uid, _ = make_user()
        ring = make_product(is_active=False)
        accounts.add_favorite(db, fetch(db, uid), ring.id)
        assert accounts.list_favorites(db, fetch(db, uid)) == []
