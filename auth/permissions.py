"""
auth/permissions.py -- Permission checks for API actions.

A permission is granted when it is listed in GRANTED_PERMISSIONS and, if
API_ALLOWED_NETWORKS is non-empty, the client address falls inside one of
those networks. require_permission() is the FastAPI-facing wrapper: it raises
PermissionDenied, which the app renders as a 403 envelope.
"""

from __future__ import annotations

import ipaddress
import logging

from fastapi import Request

from core.config import Settings, get_settings
from core.errors import PermissionDenied

logger = logging.getLogger("patronauth.permissions")


def _client_in_networks(host: str | None, networks: list[str]) -> bool:
    if not networks:
        return True
    if not host:
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    for network in networks:
        try:
            if address in ipaddress.ip_network(network, strict=False):
                return True
        except ValueError:
            logger.warning("Ignoring invalid network %r in API_ALLOWED_NETWORKS", network)
    return False


def is_access_denied(permission: str, client_host: str | None, settings: Settings | None = None) -> bool:
    """Return True if the client may not use the given permission."""
    settings = settings or get_settings()
    if permission not in settings.granted_permissions:
        return True
    return not _client_in_networks(client_host, settings.api_allowed_networks)


def require_permission(request: Request, permission: str) -> None:
    """Raise PermissionDenied when is_access_denied() says so."""
    host = request.client.host if request.client else None
    if is_access_denied(permission, host):
        logger.info("Permission %s denied for %s", permission, host or "unknown")
        raise PermissionDenied()
