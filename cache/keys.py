"""
cache/keys.py -- Cache key construction for patron profile data.

The ILS client writes profile fields on login and the auth endpoint reads
them back, so both sides must build the key the same way. Only letters,
digits, underscore, plus and minus are allowed in keys; every run of other
characters becomes a double underscore. Usernames such as "$svc1" therefore
map to "__svc1".
"""

import re

_DISALLOWED = re.compile(r"[^a-zA-Z0-9_+\-]+")

PROFILE_GROUP_CODE = "GroupCode"
PROFILE_GROUP_DESC = "GroupDesc"
PROFILE_EXPIRY_DATE = "ExpiryDate"


def clean_cache_key(key: str | None) -> str:
    """Return key with every run of disallowed characters replaced by '__'."""
    return _DISALLOWED.sub("__", key or "")


def profile_cache_key(username: str | None, field: str) -> str:
    """Key under which the ILS client stores one profile field for a patron."""
    return f"Alma_User_{clean_cache_key(username)}_{field}"
