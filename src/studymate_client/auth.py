"""Identity persisted by the login flow."""

from dataclasses import dataclass
from typing import Dict, Optional

from .repositories.base import KeyValueStore

TOKEN_KEY = "studymate_token"
USERNAME_KEY = "studymate_username"
GUEST_KEY = "studymate_guest"


@dataclass(frozen=True)
class Credentials:
    """Snapshot of the stored bearer token, display name and guest flag."""

    token: Optional[str] = None
    username: str = ""
    guest: bool = False

    @classmethod
    def from_store(cls, store: KeyValueStore) -> "Credentials":
        return cls(
            token=store.get(TOKEN_KEY) or None,
            username=store.get(USERNAME_KEY) or "",
            guest=store.get(GUEST_KEY) == "1",
        )

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def needs_login(self) -> bool:
        """True when the user has neither signed in nor chosen guest mode."""
        return not self.token and not self.guest

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


def save_login(store: KeyValueStore, token: str, username: str = "") -> None:
    store.set(TOKEN_KEY, token)
    store.set(USERNAME_KEY, username)
    store.remove(GUEST_KEY)


def save_guest(store: KeyValueStore) -> None:
    store.remove(TOKEN_KEY)
    store.remove(USERNAME_KEY)
    store.set(GUEST_KEY, "1")


def clear_identity(store: KeyValueStore) -> None:
    for key in (TOKEN_KEY, USERNAME_KEY, GUEST_KEY):
        store.remove(key)
