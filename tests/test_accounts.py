import pytest

from accounts import Accounts, hash_password
from errors import AuthError, ConflictError, FormValidationError
from session import AUTH_FLAG_KEY, CURRENT_USER_KEY, Session


@pytest.fixture
def accounts(store):
    return Accounts(store)


@pytest.fixture
def session(store):
    return Session(store)


def test_register_then_login_is_case_insensitive(accounts, session):
    accounts.register("Alice", "alice@example.com", "secret1")
    accounts.logout(session)

    user = accounts.login(session, "ALICE@example.com", "secret1")

    assert user.email == "alice@example.com"
    assert session.is_authenticated
    assert session.user.id == user.id


def test_wrong_password_fails(accounts, session):
    accounts.register("Alice", "alice@example.com", "secret1")
    with pytest.raises(AuthError) as exc:
        accounts.login(session, "alice@example.com", "wrong")
    assert exc.value.message == "Invalid email or password"
    assert not session.is_authenticated


def test_unknown_email_fails_with_same_message(accounts):
    with pytest.raises(AuthError, match="Invalid email or password"):
        accounts.authenticate("nobody@example.com", "secret1")


def test_duplicate_email_rejected(accounts):
    accounts.register("Alice", "alice@example.com", "secret1")
    with pytest.raises(ConflictError, match="Email already registered"):
        accounts.register("Other", "  Alice@Example.com ", "x")


def test_register_requires_fields(accounts):
    with pytest.raises(FormValidationError) as exc:
        accounts.register("", "", "")
    assert set(exc.value.errors) == {"name", "email", "password"}


def test_password_is_stored_hashed(accounts, store):
    accounts.register("Alice", "alice@example.com", "secret1")
    stored = store.load("rc_users")[0]
    assert stored["password_hash"] == hash_password("secret1")
    assert "secret1" not in str(stored)


def test_register_with_session_signs_in(accounts, session):
    user = accounts.register("Bob", "bob@example.com", "hunter22", location=" Pune ", session=session)
    assert session.user == user
    assert user.location == "Pune"


def test_auth_changes_are_broadcast(accounts, session, store):
    keys = []
    session.on_change(lambda event: keys.append(event.key))

    accounts.register("Alice", "alice@example.com", "secret1", session=session)
    accounts.logout(session)

    assert keys.count(AUTH_FLAG_KEY) == 2
    assert keys.count(CURRENT_USER_KEY) == 2
    assert session.user is None
    assert not session.is_authenticated


def test_sessions_are_independent(accounts, store):
    a, b = Session(store, "tab-a"), Session(store, "tab-b")
    user = accounts.register("Alice", "alice@example.com", "secret1", session=a)
    assert a.is_authenticated
    assert not b.is_authenticated
    assert a.scope == user.id
    assert b.scope == "tab-b"


def test_update_profile(accounts, session):
    accounts.register("Alice", "alice@example.com", "secret1", session=session)
    updated = accounts.update_profile(session, name="Alice K", location="Mysuru")

    assert updated.name == "Alice K"
    assert session.user.location == "Mysuru"
    assert accounts.find_by_email("alice@example.com").name == "Alice K"


def test_change_password(accounts, session):
    accounts.register("Alice", "alice@example.com", "secret1", session=session)

    with pytest.raises(AuthError, match="Current password is incorrect"):
        accounts.change_password(session, "nope", "newsecret")
    with pytest.raises(FormValidationError):
        accounts.change_password(session, "secret1", "short")

    accounts.change_password(session, "secret1", "newsecret")
    assert accounts.authenticate("alice@example.com", "newsecret")
    with pytest.raises(AuthError):
        accounts.authenticate("alice@example.com", "secret1")


def test_change_password_requires_login(accounts, session):
    with pytest.raises(AuthError, match="Not logged in"):
        accounts.change_password(session, "a", "bbbbbbb")
