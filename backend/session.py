"""
Per-client session: the signed-in user and the auth flag.

State lives in the key-value store under the client's scope, so every view
subscribed to the store hears about logins and logouts.
"""
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from schemas import User
from storage import ChangeEvent, KeyValueStore, scoped_key

logger = logging.getLogger(__name__)

AUTH_FLAG_KEY = "rc_auth"
CURRENT_USER_KEY = "rc_user"


class Session:
    def __init__(self, store: KeyValueStore, client_id: Optional[str] = None):
        self.store = store
        self.client_id = client_id
        self.user_key = scoped_key(CURRENT_USER_KEY, client_id)
        self.auth_key = scoped_key(AUTH_FLAG_KEY, client_id)

    @property
    def user(self) -> Optional[User]:
        raw = self.store.load_object(self.user_key)
        if raw is None:
            return None
        try:
            return User.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed session user under %r", self.user_key)
            return None

    @property
    def is_authenticated(self) -> bool:
        return self.store.load_value(self.auth_key) is True

    @property
    def scope(self) -> Optional[str]:
        """Scope for per-user collections: the user id once signed in."""
        user = self.user
        return user.id if user else self.client_id

    def sign_in(self, user: User) -> None:
        with self.store.batch():
            self.store.save(self.auth_key, True)
            self.store.save(self.user_key, user.model_dump(mode="json"))
        logger.info("User %s signed in", user.id)

    def refresh(self, user: User) -> None:
        self.store.save(self.user_key, user.model_dump(mode="json"))

    def sign_out(self) -> None:
        with self.store.batch():
            self.store.remove(self.auth_key)
            self.store.remove(self.user_key)

    def on_change(self, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        """Subscribe to login/logout/profile changes; returns an unsubscribe function."""
        unsubscribers = [
            self.store.subscribe(callback, self.auth_key),
            self.store.subscribe(callback, self.user_key),
        ]

        def unsubscribe():
            for fn in unsubscribers:
                fn()

        return unsubscribe
