"""
auth/identity.py -- Credential verification against the ILS.

AuthManager is the identity collaborator of the auth endpoint. It owns the
administrative login switch and turns every way a login can fail (blank
fields, wrong password, ILS down) into InvalidCredentials, so the caller has
exactly one failure branch to handle.

Recording the login in the patron store happens after the ILS has accepted
the credentials and is best-effort: a store failure is logged, the login
still succeeds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from cache.keys import PROFILE_GROUP_CODE, profile_cache_key
from core.errors import InvalidCredentials
from core.models import Patron

if TYPE_CHECKING:
    from auth.store import PatronStore
    from ils.alma import AlmaClient

logger = logging.getLogger("patronauth.identity")


class AuthManager:
    def __init__(
        self,
        ils: AlmaClient,
        patron_store: Optional[PatronStore] = None,
        cache=None,
        enabled: bool = True,
    ) -> None:
        self.ils = ils
        self.patron_store = patron_store
        self.cache = cache
        self.enabled = enabled

    def login_enabled(self) -> bool:
        return self.enabled

    def login(self, username: Optional[str], password: Optional[str]) -> Patron:
        """Authenticate against the ILS. Raises InvalidCredentials on any failure."""
        if not username or not password:
            raise InvalidCredentials("Blank username or password")
        try:
            patron = self.ils.patron_login(username, password)
        except InvalidCredentials:
            logger.info("Login rejected by ILS")
            raise
        except Exception as e:
            logger.warning("Login failed, ILS error: %s", e)
            raise InvalidCredentials(str(e)) from e

        self._record_login(username)
        return patron

    def _record_login(self, username: str) -> None:
        """Remember the login locally. Never fails the login: the ILS already accepted it."""
        if self.patron_store is None:
            return
        try:
            group_code = self.cache.get(profile_cache_key(username, PROFILE_GROUP_CODE)) if self.cache else None
            self.patron_store.record_login(username, group_code=group_code)
        except Exception as e:
            logger.warning("Could not record login in patron store: %s", e)
