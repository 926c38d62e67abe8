"""
evaluator.py -- Patron authentication decision logic.

Flow for one request (no retries, each collaborator is called at most once):

  method check -> login switch -> credential check
      success -> profile from cache -> block check -> expiry check -> decide
      failure -> invalid login

The credential check fails closed: any exception from the identity layer is
an invalid login. The block and expiry checks fail open: if either cannot be
performed the account is treated as not blocked / not expired. Both are kept
as separate methods so each policy can be tested on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

from cache.keys import PROFILE_EXPIRY_DATE, PROFILE_GROUP_CODE, PROFILE_GROUP_DESC, profile_cache_key
from core.errors import AuthDisabled, BlockCheckUnavailable, ExpiryCheckUnavailable, MethodNotAllowed
from core.i18n import translate
from core.models import AccountStatus, AuthMode, AuthOutcome, AuthRequest, BlockReason, ExpiryInfo, TriState

logger = logging.getLogger("patronauth.evaluator")

HTTP_OK = 200
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403

# ---------------------------------------------------------------------------
# HTTP status remapping per auth mode
#
# Compatibility shim: legacy APA clients read the outcome from the response
# body only and treat any non-200 status as a transport error. Remove the apa
# entry once those clients are retired.
# ---------------------------------------------------------------------------


def _keep_status(code: int) -> int:
    return code


def _apa_always_ok(code: int) -> int:
    return HTTP_OK if code in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN) else code


HTTP_STATUS_REMAP: dict[AuthMode, Callable[[int], int]] = {
    AuthMode.default: _keep_status,
    AuthMode.apa: _apa_always_ok,
}


def map_http_status(mode: AuthMode, code: int) -> int:
    return HTTP_STATUS_REMAP[mode](code)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PatronAuthEvaluator:
    """Evaluate one AuthRequest against the identity layer, the ILS and the object cache.

    Collaborators:
        auth_manager  login_enabled() and login(username, password)
        ils           get_account_blocks(patron_id) -> list[str]
        cache         get(key) -> value | None
    """

    def __init__(
        self,
        auth_manager: Any,
        ils: Any,
        cache: Any,
        display_date_format: str = "%Y-%m-%d",
        language: str = "en",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.auth_manager = auth_manager
        self.ils = ils
        self.cache = cache
        self.display_date_format = display_date_format
        self.language = language
        self.clock = clock

    def evaluate(self, request: AuthRequest) -> AuthOutcome:
        if request.method.upper() != "POST":
            raise MethodNotAllowed()
        if not self.auth_manager.login_enabled():
            raise AuthDisabled()

        status = AccountStatus()
        try:
            self.auth_manager.login(request.username, request.password)
        except Exception as e:
            logger.info("Invalid login for mode=%s: %s", request.mode.value, e)
            status.exists = TriState.no
            status.valid = TriState.no
            status.has_error = True
            status.error_message = translate("Invalid Patron Login", self.language)
            return AuthOutcome(status, map_http_status(request.mode, HTTP_UNAUTHORIZED), ok=False)

        status.exists = TriState.yes
        status.group_code = self.cache.get(profile_cache_key(request.username, PROFILE_GROUP_CODE))
        status.group_description = self.cache.get(profile_cache_key(request.username, PROFILE_GROUP_DESC))
        expiry_formatted = self.cache.get(profile_cache_key(request.username, PROFILE_EXPIRY_DATE))

        self.check_blocks(request.username, status)
        self.check_expiry(expiry_formatted, status)

        if status.blocked is TriState.yes or status.expired is TriState.yes:
            status.valid = TriState.no
            return AuthOutcome(status, map_http_status(request.mode, HTTP_FORBIDDEN), ok=False)
        status.valid = TriState.yes
        return AuthOutcome(status, HTTP_OK, ok=True)

    # ------------------------------------------------------------------
    # Block check (fail-open)
    # ------------------------------------------------------------------

    def _fetch_blocks(self, username: Optional[str]) -> list[str]:
        try:
            return list(self.ils.get_account_blocks(username) or [])
        except Exception as e:
            raise BlockCheckUnavailable(str(e)) from e

    def check_blocks(self, username: Optional[str], status: AccountStatus) -> None:
        """Resolve status.blocked. An unavailable block check counts as not blocked."""
        try:
            notes = self._fetch_blocks(username)
        except BlockCheckUnavailable as e:
            logger.warning("Block check unavailable, assuming no blocks: %s", e)
            status.blocked = TriState.no
            return
        if notes:
            status.blocked = TriState.yes
            status.block_reasons = [BlockReason(note=str(note)) for note in notes]
        else:
            status.blocked = TriState.no

    # ------------------------------------------------------------------
    # Expiry check (fail-open)
    # ------------------------------------------------------------------

    def _expiry_end_of_day(self, formatted: Any) -> datetime:
        if not formatted:
            raise ExpiryCheckUnavailable("No expiry date cached")
        try:
            parsed = datetime.strptime(str(formatted), self.display_date_format)
        except (TypeError, ValueError) as e:
            raise ExpiryCheckUnavailable(str(e)) from e
        return parsed.replace(hour=23, minute=59, second=59, microsecond=0, tzinfo=timezone.utc)

    def check_expiry(self, formatted: Any, status: AccountStatus) -> None:
        """Resolve status.expired. An unparseable or missing expiry date counts as not expired."""
        try:
            expires_at = self._expiry_end_of_day(formatted)
            expired = expires_at < self.clock()
        except (ExpiryCheckUnavailable, TypeError) as e:
            logger.warning("Expiry check unavailable, assuming not expired: %s", e)
            status.expired = TriState.no
            return
        if expired:
            status.expired = TriState.yes
            status.expiry = ExpiryInfo(timestamp=int(expires_at.timestamp()), formatted=str(formatted))
        else:
            status.expired = TriState.no
