"""
Tests for the SQLAlchemy user directory
"""
import pytest

from phone_mfa.core.errors import DuplicateEntryError

PHONE = "+15550000000"


def test_find_by_phone_and_id(users, make_user):
    user = make_user(phone_number=PHONE)

    assert users.find_by_phone(PHONE).id == user.id
    assert users.find_by_id(user.id).phone_number == PHONE
    assert users.find_by_phone("+15550000001") is None
    assert users.find_by_id("nobody") is None


def test_is_phone_owned_by_other(users, make_user):
    owner = make_user(phone_number=PHONE)
    other = make_user()

    assert users.is_phone_owned_by_other(PHONE, other.id) is True
    assert users.is_phone_owned_by_other(PHONE, owner.id) is False
    assert users.is_phone_owned_by_other("+15550000001", other.id) is False


def test_update_phone_verification(users, make_user):
    user = make_user()
    updated = users.update_phone_verification(user.id, PHONE, verified=True, mfa_enabled=True)

    assert updated.phone_number == PHONE
    assert updated.phone_verified is True
    assert updated.mfa_enabled is True
    assert updated.phone_verified_at is not None


def test_unique_violation_is_duplicate_entry(users, make_user):
    make_user(phone_number=PHONE)
    user = make_user()

    with pytest.raises(DuplicateEntryError):
        users.update_phone_verification(user.id, PHONE, verified=True, mfa_enabled=True)


def test_update_unknown_user(users):
    with pytest.raises(LookupError):
        users.update_phone_verification("nobody", PHONE, verified=True, mfa_enabled=True)


def test_set_mfa_enabled(users, make_user):
    user = make_user(phone_number=PHONE, phone_verified=True, mfa_enabled=True)

    updated = users.set_mfa_enabled(user.id, False)
    assert updated.mfa_enabled is False
    assert updated.phone_number == PHONE
    assert users.set_mfa_enabled("nobody", False) is None
