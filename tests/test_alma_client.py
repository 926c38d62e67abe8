"""Unit tests for ils/alma.py -- all HTTP is mocked.

The requests.Session is replaced by a MagicMock whose request() returns
canned responses, so tests assert on the URL/params/headers we send and on
how responses are mapped (Patron, cache entries, block list, errors).
"""

from unittest.mock import MagicMock

import pytest
import requests

from cache.keys import PROFILE_EXPIRY_DATE, PROFILE_GROUP_CODE, PROFILE_GROUP_DESC, profile_cache_key
from core.errors import InvalidCredentials
from ils.alma import AlmaClient, IlsError

_BASE = "https://alma.example.org/almaws/v1"

_USER = {
    "primary_id": "$svc1",
    "first_name": "Service",
    "last_name": "Account",
    "user_group": {"value": "STAFF", "desc": "Staff"},
    "expiry_date": "2099-01-01Z",
    "contact_info": {
        "email": [
            {"email_address": "other@example.org", "preferred": False},
            {"email_address": "svc1@example.org", "preferred": True},
        ]
    },
    "user_block": [
        {"block_status": "ACTIVE", "block_description": {"value": "01", "desc": "Overdue items"}},
        {"block_status": "INACTIVE", "block_description": {"desc": "Old block"}},
        {
            "block_status": "ACTIVE",
            "expiry_date": "2001-01-01Z",
            "block_description": {"desc": "Expired block"},
        },
        {"block_status": "ACTIVE", "expiry_date": "2099-01-01Z", "block_description": {"desc": "Unpaid fees"}},
    ],
}


def _response(status_code: int, payload=None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


def _client(*responses, cache=None, date_format="%Y-%m-%d"):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    client = AlmaClient(_BASE, "KEY", cache=cache, timeout=5, display_date_format=date_format, session=session)
    return client, session


class TestSession:
    def test_api_key_and_accept_headers(self):
        _client_, session = _client()
        assert session.headers["Authorization"] == "apikey KEY"
        assert session.headers["Accept"] == "application/json"
        assert session.max_redirects == 3


class TestPatronLogin:
    def test_success_fetches_profile_and_caches_it(self, cache):
        client, session = _client(_response(204), _response(200, _USER), cache=cache)
        patron = client.patron_login("$svc1", "pw")

        assert patron.username == "$svc1"
        assert patron.email == "svc1@example.org"
        auth_call = session.request.call_args_list[0]
        assert auth_call.args == ("POST", f"{_BASE}/users/%24svc1")
        assert auth_call.kwargs["params"] == {"op": "auth"}
        assert auth_call.kwargs["headers"] == {"Exl-User-Pw": "pw"}
        assert auth_call.kwargs["timeout"] == 5

        assert cache.get(profile_cache_key("$svc1", PROFILE_GROUP_CODE)) == "STAFF"
        assert cache.get(profile_cache_key("$svc1", PROFILE_GROUP_DESC)) == "Staff"
        assert cache.get(profile_cache_key("$svc1", PROFILE_EXPIRY_DATE)) == "2099-01-01"

    def test_expiry_cached_in_display_format(self, cache):
        client, _session = _client(_response(204), _response(200, _USER), cache=cache, date_format="%d.%m.%Y")
        client.patron_login("$svc1", "pw")
        assert cache.get(profile_cache_key("$svc1", PROFILE_EXPIRY_DATE)) == "01.01.2099"

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_rejected_password(self, status):
        client, session = _client(_response(status))
        with pytest.raises(InvalidCredentials):
            client.patron_login("jdoe", "bad")
        assert session.request.call_count == 1

    def test_server_error_is_ils_error(self):
        client, _session = _client(_response(500))
        with pytest.raises(IlsError):
            client.patron_login("jdoe", "pw")

    def test_transport_error_is_ils_error(self):
        client, _session = _client(requests.ConnectionError("refused"))
        with pytest.raises(IlsError):
            client.patron_login("jdoe", "pw")


class TestAccountBlocks:
    def test_only_active_unexpired_blocks(self):
        client, _session = _client(_response(200, _USER))
        assert client.get_account_blocks("$svc1") == ["Overdue items", "Unpaid fees"]

    def test_no_blocks(self):
        client, _session = _client(_response(200, {"primary_id": "jdoe"}))
        assert client.get_account_blocks("jdoe") == []

    def test_lookup_failure(self):
        client, _session = _client(_response(404))
        with pytest.raises(IlsError):
            client.get_account_blocks("jdoe")

    def test_invalid_json(self):
        client, _session = _client(_response(200, ValueError("no json")))
        with pytest.raises(IlsError):
            client.get_account_blocks("jdoe")
