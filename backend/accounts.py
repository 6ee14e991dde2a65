"""
Account registry: registration, login and profile changes.
"""
import hashlib
import logging
from typing import Optional

from pydantic import ValidationError

from errors import AuthError, ConflictError, FormValidationError, NotFoundError
from ids import new_id
from schemas import User
from session import Session
from storage import KeyValueStore, RecordCollection

logger = logging.getLogger(__name__)

USERS_KEY = "rc_users"
MIN_PASSWORD_LENGTH = 6


def hash_password(pw: str) -> str:
    return hashlib.sha256(pw.encode()).hexdigest()


class Accounts:
    def __init__(self, store: KeyValueStore):
        self.store = store
        self.users = RecordCollection(store, USERS_KEY, User)

    def find_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        return next((u for u in self.users.all() if u.email.lower() == email), None)

    def register(self, name: str, email: str, password: str, location: Optional[str] = None,
                 session: Optional[Session] = None) -> User:
        errors = {}
        if not name or not name.strip():
            errors["name"] = "Name is required"
        if not email or not email.strip():
            errors["email"] = "Email is required"
        if not password:
            errors["password"] = "Password is required"
        if errors:
            raise FormValidationError(errors)

        try:
            user = User(
                id=new_id(),
                name=name.strip(),
                email=email.strip().lower(),
                password_hash=hash_password(password),
                location=location.strip() if location else None,
            )
        except ValidationError as e:
            raise FormValidationError.from_pydantic(e)

        with self.store.batch():
            if self.find_by_email(email):
                raise ConflictError("Email already registered")
            self.users.append(user)
        logger.info("Registered user %s", user.id)

        if session is not None:
            session.sign_in(user)
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.find_by_email(email or "")
        if not user or user.password_hash != hash_password(password):
            raise AuthError("Invalid email or password")
        return user

    def login(self, session: Session, email: str, password: str) -> User:
        user = self.authenticate(email, password)
        session.sign_in(user)
        return user

    def logout(self, session: Session) -> None:
        session.sign_out()

    def update_profile(self, session: Session, name: Optional[str] = None, location: Optional[str] = None,
                       avatar_url: Optional[str] = None) -> User:
        """Patch the signed-in user's profile. Email and password are not editable here."""
        current = session.user
        if current is None:
            raise AuthError("Not logged in")
        patch = {k: v for k, v in {"name": name, "location": location, "avatar_url": avatar_url}.items() if v is not None}
        with self.store.batch():
            stored = self.users.get(current.id)
            if stored is None:
                raise NotFoundError("User not found")
            updated = stored.model_copy(update=patch)
            self.users.upsert(updated)
        session.refresh(updated)
        return updated

    def change_password(self, session: Session, old_password: str, new_password: str) -> None:
        current = session.user
        if current is None:
            raise AuthError("Not logged in")
        if not old_password:
            raise FormValidationError({"old_password": "Please enter your current password."})
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise FormValidationError({"new_password": f"New password must be at least {MIN_PASSWORD_LENGTH} characters."})
        if new_password == old_password:
            raise FormValidationError({"new_password": "New password must be different from current password."})

        with self.store.batch():
            stored = self.users.get(current.id)
            if stored is None:
                raise NotFoundError("User not found")
            if stored.password_hash != hash_password(old_password):
                raise AuthError("Current password is incorrect")
            updated = stored.model_copy(update={"password_hash": hash_password(new_password)})
            self.users.upsert(updated)
        session.refresh(updated)
