"""
renderer.py -- Turns an AccountStatus into a response body, and bodies into Responses.

render() decides WHAT goes in the body for an auth mode:
  default -> sparse dict (JSON / JSONP)
  apa     -> <response><status/><userid/></response> (always XML)

output() decides HOW the body goes on the wire: it adds the status envelope,
serialises for the chosen OutputMode and sets the content type.
"""

from __future__ import annotations

import json
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Optional, Union

from fastapi import Response

from core.errors import InvalidCallback, UnsupportedOutputFormat
from core.models import AccountStatus, AuthMode, OutputMode, TriState

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

_CALLBACK_RE = re.compile(r"^[A-Za-z_$][\w$.]*$")

# APA status codes. Literal values of the legacy APA contract.
APA_ALLOWED = 3
APA_BLOCKED = 1
APA_INVALID = -1


@dataclass
class RenderedBody:
    content: Union[dict[str, Any], ET.Element]
    output_mode: OutputMode


# ---------------------------------------------------------------------------
# Output mode negotiation
# ---------------------------------------------------------------------------


def resolve_output_mode(mode: AuthMode, callback: Optional[str] = None) -> OutputMode:
    """APA always answers in XML. Otherwise a callback parameter selects JSONP."""
    if mode is AuthMode.apa:
        return OutputMode.xml
    if callback:
        if not _CALLBACK_RE.match(callback):
            raise InvalidCallback()
        return OutputMode.jsonp
    return OutputMode.json


# ---------------------------------------------------------------------------
# Body construction
# ---------------------------------------------------------------------------


def _sparse(values: dict[str, Any]) -> dict[str, Any]:
    """Drop None, empty containers and unknown tri-states."""
    return {k: v for k, v in values.items() if v not in (None, "", [], {}, TriState.unknown.value)}


def _tri(value: TriState) -> str:
    return value.value


def _json_body(status: AccountStatus) -> dict[str, Any]:
    group = _sparse({"desc": status.group_description, "code": status.group_code})
    date = (
        {"timestamp": status.expiry.timestamp, "formatted": status.expiry.formatted}
        if status.expiry is not None
        else None
    )
    reasons = [{"code": r.code, "note": r.note} for r in status.block_reasons]
    body = {
        "user": _sparse({"isValid": _tri(status.valid), "exists": _tri(status.exists), "group": group}),
        "expired": _sparse({"isExpired": _tri(status.expired), "date": date}),
        "blocks": _sparse({"isBlocked": _tri(status.blocked), "reasons": reasons}),
        "request": _sparse(
            {"hasError": "Y" if status.has_error else None, "errorMsg": status.error_message}
        ),
    }
    return _sparse(body)


def apa_status_code(status: AccountStatus) -> int:
    if status.valid is TriState.yes:
        return APA_ALLOWED
    if status.blocked is TriState.yes or status.expired is TriState.yes:
        return APA_BLOCKED
    return APA_INVALID


def _apa_body(status: AccountStatus, username: Optional[str]) -> ET.Element:
    root = ET.Element("response")
    ET.SubElement(root, "status").text = str(apa_status_code(status))
    ET.SubElement(root, "userid").text = username or ""
    return root


def render(
    status: AccountStatus,
    mode: AuthMode,
    username: Optional[str] = None,
    output_mode: Optional[OutputMode] = None,
) -> RenderedBody:
    """Build the body for mode. apa forces XML regardless of output_mode."""
    if mode is AuthMode.apa:
        return RenderedBody(_apa_body(status, username), OutputMode.xml)
    if mode is AuthMode.default:
        return RenderedBody(_json_body(status), output_mode or OutputMode.json)
    raise UnsupportedOutputFormat(f"No renderer for auth mode {mode!r}")


# ---------------------------------------------------------------------------
# Wire serialisation
# ---------------------------------------------------------------------------


def _dump_json(payload: dict[str, Any], pretty: bool) -> str:
    if pretty:
        return json.dumps(payload, indent=4)
    return json.dumps(payload, separators=(",", ":"))


def output(
    data: Any,
    status: str,
    http_status: Optional[int] = None,
    message: str = "",
    output_mode: OutputMode = OutputMode.json,
    callback: Optional[str] = None,
    pretty: bool = False,
) -> Response:
    """Serialise data for output_mode and wrap it in a Response.

    data=None produces an empty body (OPTIONS answers). For JSON and JSONP the
    envelope keys "status" and "statusMessage" are added unless data already
    carries them. XML bodies must be an Element and are sent without envelope.
    """
    code = http_status if http_status is not None else 200
    if data is None:
        return Response(status_code=code)

    if output_mode is OutputMode.xml:
        if not isinstance(data, ET.Element):
            raise UnsupportedOutputFormat("XML output requires an xml.etree.ElementTree.Element")
        body = XML_DECLARATION + ET.tostring(data, encoding="unicode")
        return Response(content=body, status_code=code, media_type="application/xml")

    if output_mode not in (OutputMode.json, OutputMode.jsonp):
        raise UnsupportedOutputFormat(f"Invalid output mode {output_mode!r}")

    payload = dict(data)
    payload.setdefault("status", status)
    if message:
        payload.setdefault("statusMessage", message)
    text = _dump_json(payload, pretty)

    if output_mode is OutputMode.jsonp:
        if not callback:
            raise UnsupportedOutputFormat("JSONP output requires a callback name")
        return Response(content=f"{callback}({text});", status_code=code, media_type="application/javascript")
    return Response(content=text, status_code=code, media_type="application/json")
