"""
Anonymous/session/user identity with persistence.

Durable storage holds the anonymous id and the opt-out flag; session storage
holds the session id and the identified user id.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from .storage import MemoryStorage, Storage
from .utils import generate_id

ANON_KEY = "hl_anon"
OPT_OUT_KEY = "hl_opt_out"
SESSION_KEY = "hl_session"
USER_KEY = "hl_user"


class IdentityStore:
    def __init__(self, storage: Optional[Storage] = None, session: Optional[Storage] = None):
        self._storage = storage if storage is not None else MemoryStorage()
        self._session = session if session is not None else MemoryStorage()
        self._anonymous_id: Optional[str] = None
        self._session_id: Optional[str] = None
        self._user_id: Optional[str] = None

    def init(self) -> None:
        """Load ids from storage, generating and persisting missing ones."""
        self._anonymous_id = self._get_or_create(self._storage, ANON_KEY)
        self._session_id = self._get_or_create(self._session, SESSION_KEY)
        self._user_id = self._session.get(USER_KEY) or None
        logger.debug(f"Identity loaded: anon={self._anonymous_id} user={self._user_id}")

    @staticmethod
    def _get_or_create(storage: Storage, key: str) -> str:
        value = storage.get(key)
        if not value:
            value = generate_id()
            storage.set(key, value)
        return value

    @property
    def initialized(self) -> bool:
        return self._anonymous_id is not None

    @property
    def anonymous_id(self) -> str:
        self._require_init()
        return self._anonymous_id  # type: ignore[return-value]

    @property
    def session_id(self) -> str:
        self._require_init()
        return self._session_id  # type: ignore[return-value]

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def get_distinct_id(self) -> str:
        self._require_init()
        return self._user_id or self._anonymous_id  # type: ignore[return-value]

    distinct_id = property(get_distinct_id)

    def identify(self, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id must not be empty")
        self._user_id = user_id
        self._session.set(USER_KEY, user_id)

    def reset(self) -> None:
        """Forget every id. The next init() issues a fresh anonymous id."""
        self._storage.remove(ANON_KEY)
        self._session.remove(USER_KEY)
        self._session.remove(SESSION_KEY)
        self._anonymous_id = None
        self._session_id = None
        self._user_id = None

    # ---------- opt-out ----------

    @property
    def opted_out(self) -> bool:
        return self._storage.get(OPT_OUT_KEY) == "true"

    def opt_out(self) -> None:
        self._storage.set(OPT_OUT_KEY, "true")

    def opt_in(self) -> None:
        self._storage.remove(OPT_OUT_KEY)

    def _require_init(self) -> None:
        if self._anonymous_id is None:
            raise RuntimeError("IdentityStore.init() has not been called")
