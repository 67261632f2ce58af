"""Authenticated identity and bearer credential for the running client."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from campus_market.kv_store import JsonFileStore
from campus_market.models import Session, UserSummary

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "auth.credential"
USER_ID_KEY = "auth.user_id"
PROFILE_KEY = "auth.profile"
AUTH_KEYS = (CREDENTIAL_KEY, USER_ID_KEY, PROFILE_KEY)


class SessionStore:
    """Owns the single Session of an app instance and its persisted form.

    Construct one per process, call :meth:`restore` once at startup, and pass
    the instance to everything that needs the active user or credential.
    """

    def __init__(self, store: JsonFileStore) -> None:
        self._store = store
        self._session = Session()

    @property
    def session(self) -> Session:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def credential(self) -> Optional[str]:
        return self._session.credential

    @property
    def user_id(self) -> Optional[int]:
        return self._session.user_id

    @property
    def profile(self) -> Optional[UserSummary]:
        return self._session.profile

    def restore(self) -> Session:
        credential = self._store.get(CREDENTIAL_KEY)
        user_id = self._store.get(USER_ID_KEY)
        if (
            not isinstance(credential, str)
            or not credential
            or isinstance(user_id, bool)
            or not isinstance(user_id, int)
        ):
            self._session = Session()
            return self._session

        profile: Optional[UserSummary] = None
        raw_profile = self._store.get(PROFILE_KEY)
        if raw_profile is not None:
            try:
                profile = UserSummary.from_json(raw_profile)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Discarding stored profile snapshot: %s", exc)
        if profile is not None and profile.id != user_id:
            logger.warning("Stored profile belongs to user %s, not %s; ignoring it", profile.id, user_id)
            profile = None

        self._session = Session(credential=credential, user_id=user_id, profile=profile)
        logger.info("Restored session for user %s", user_id)
        return self._session

    def sign_in(self, credential: str, profile: UserSummary) -> Session:
        if not credential:
            raise ValueError("credential must be non-empty")
        self._session = Session(credential=credential, user_id=profile.id, profile=profile)
        self._store.update(
            {
                CREDENTIAL_KEY: credential,
                USER_ID_KEY: profile.id,
                PROFILE_KEY: profile.to_json(),
            }
        )
        logger.info("Signed in as user %s", profile.id)
        return self._session

    def update_profile(self, profile: UserSummary) -> Session:
        if not self.is_authenticated:
            raise ValueError("cannot update the profile of a signed-out session")
        if profile.id != self._session.user_id:
            raise ValueError("profile does not belong to the signed-in user")
        self._session = Session(
            credential=self._session.credential,
            user_id=self._session.user_id,
            profile=profile,
        )
        self._store.set(PROFILE_KEY, profile.to_json())
        return self._session

    def sign_out(self) -> None:
        previous = self._session.user_id
        self._session = Session()
        self._store.delete(*AUTH_KEYS)
        logger.info("Signed out user %s", previous)

    def authorization_header(self) -> Dict[str, str]:
        if not self._session.is_authenticated:
            return {}
        return {"Authorization": f"Bearer {self._session.credential}"}
