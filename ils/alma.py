"""
ils/alma.py -- Alma REST API client for patron login, profile and blocks.

Only the three calls the auth endpoint needs are implemented:

  patron_login(username, password)  POST /users/{id}?op=auth, then profile
  get_my_profile(username)          GET  /users/{id}, caches group + expiry
  get_account_blocks(username)      GET  /users/{id}, active block texts

Every transport or HTTP failure is raised as IlsError. Callers decide whether
that is fatal (login) or recoverable (blocks).

The profile fields written to the object cache are the contract with the auth
endpoint, which reads them back by the same keys (cache.keys).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import requests

from cache.keys import PROFILE_EXPIRY_DATE, PROFILE_GROUP_CODE, PROFILE_GROUP_DESC, profile_cache_key
from core.errors import InvalidCredentials
from core.models import Patron

logger = logging.getLogger("patronauth.ils")

# Alma returns dates as "2099-01-01Z".
_ALMA_DATE_FORMAT = "%Y-%m-%d"


class IlsError(Exception):
    """The ILS could not be reached or answered with an unexpected status."""


def _parse_alma_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value.rstrip("Z"), _ALMA_DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        logger.warning("Unparseable Alma date %r", value)
        return None


class AlmaClient:
    """Thin wrapper around a requests.Session bound to one Alma instance.

    Usage:
        client = AlmaClient(base_url, api_key, cache=ObjectCache())
        patron = client.patron_login("jdoe", "secret")   # raises InvalidCredentials
        blocks = client.get_account_blocks("jdoe")       # ["Overdue items", ...]
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        cache: Any = None,
        timeout: int = 10,
        display_date_format: str = "%Y-%m-%d",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.timeout = timeout
        self.display_date_format = display_date_format
        self._session = session or requests.Session()
        # Alma is a known endpoint; more than 3 redirects means something is wrong.
        self._session.max_redirects = 3
        self._session.headers.update(
            {
                "Authorization": f"apikey {api_key}",
                "Accept": "application/json",
            }
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self._session.request(method, url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Alma %s %s failed: %s", method, path, e)
            raise IlsError(str(e)) from e

    def _get_user(self, username: str) -> dict[str, Any]:
        resp = self._request(
            "GET",
            f"/users/{quote(username, safe='')}",
            params={"view": "full", "expand": "none"},
        )
        if resp.status_code != 200:
            raise IlsError(f"Alma user lookup returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise IlsError("Alma user lookup returned invalid JSON") from e

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def patron_login(self, username: str, password: str) -> Patron:
        """Verify credentials and return the patron. Raises InvalidCredentials on rejection.

        Alma answers 204 for a correct password and 400/401/403 for a wrong
        one. Anything else (5xx, timeouts) is an IlsError; the identity layer
        treats both as a failed login.
        """
        resp = self._request(
            "POST",
            f"/users/{quote(username, safe='')}",
            params={"op": "auth"},
            headers={"Exl-User-Pw": password},
        )
        if resp.status_code in (400, 401, 403, 404):
            raise InvalidCredentials()
        if resp.status_code != 204:
            raise IlsError(f"Alma login returned HTTP {resp.status_code}")
        return self.get_my_profile(username)

    def get_my_profile(self, username: str) -> Patron:
        """Fetch the patron record and cache group and expiry date for the auth endpoint."""
        user = self._get_user(username)
        group = user.get("user_group") or {}
        expiry = _parse_alma_date(user.get("expiry_date"))

        if self.cache is not None:
            self.cache.set(profile_cache_key(username, PROFILE_GROUP_CODE), group.get("value"))
            self.cache.set(profile_cache_key(username, PROFILE_GROUP_DESC), group.get("desc"))
            self.cache.set(
                profile_cache_key(username, PROFILE_EXPIRY_DATE),
                expiry.strftime(self.display_date_format) if expiry else None,
            )

        emails = (user.get("contact_info") or {}).get("email") or []
        preferred = next((e for e in emails if e.get("preferred")), emails[0] if emails else {})
        return Patron(
            username=username,
            first_name=user.get("first_name", ""),
            last_name=user.get("last_name", ""),
            email=preferred.get("email_address"),
        )

    def get_account_blocks(self, username: str) -> list[str]:
        """Return the descriptions of all active, unexpired blocks on the account."""
        user = self._get_user(username)
        now = datetime.now(timezone.utc)
        blocks: list[str] = []
        for block in user.get("user_block") or []:
            if block.get("block_status") != "ACTIVE":
                continue
            block_expiry = _parse_alma_date(block.get("expiry_date"))
            if block_expiry is not None and block_expiry < now:
                continue
            description = (block.get("block_description") or {}).get("desc")
            if description:
                blocks.append(description)
        return blocks

    def close(self) -> None:
        self._session.close()
