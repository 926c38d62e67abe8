"""
api/routes/v1/user.py -- Patron authentication endpoint.

Routes:
  POST    /api/v1/user/Auth   -- evaluate patron credentials against the ILS
  POST    /Api/User/Auth      -- legacy alias, same handler
  OPTIONS (both paths)        -- 204 with CORS preflight headers, no body
  GET     (both paths)        -- 405 envelope

Query parameters:
  mode         default | apa (case-insensitive, anything else is default)
  callback     JSONP callback name (default mode only)
  prettyPrint  indent JSON output

Order of checks: OPTIONS short-circuit -> permission -> output mode
negotiation -> evaluator (method, login switch, credentials, blocks, expiry).

Errors raised here or in the evaluator (PatronAuthError family) are rendered
by the exception handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from starlette.concurrency import run_in_threadpool

from api.limiter import auth_rate_limit, limiter
from api.models import AuthCredentials
from auth.permissions import require_permission
from core.config import get_settings
from core.evaluator import PatronAuthEvaluator
from core.models import AuthMode, AuthRequest
from core.renderer import output, render, resolve_output_mode

AUTH_PERMISSION = "access.api.User.Auth"

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Max-Age": "86400",
}

router = APIRouter()


@router.api_route("/api/v1/user/Auth", methods=["GET", "POST", "OPTIONS"], include_in_schema=False)
@router.api_route("/Api/User/Auth", methods=["GET", "POST", "OPTIONS"], include_in_schema=False)
@limiter.limit(auth_rate_limit)  # must be BELOW @router so the registered endpoint is the limited one
async def user_auth(request: Request) -> Response:
    """Authenticate a patron and report validity, blocks and expiry.

    The evaluator makes blocking calls (ILS over HTTP, SQLite cache), so it
    runs in the thread pool rather than on the event loop.
    """
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=PREFLIGHT_HEADERS)

    require_permission(request, AUTH_PERMISSION)

    settings = get_settings()
    mode = AuthMode.parse(request.query_params.get("mode"))
    callback = request.query_params.get("callback")
    output_mode = resolve_output_mode(mode, callback)
    pretty = "prettyPrint" in request.query_params or settings.json_pretty_print

    credentials = AuthCredentials.from_body(await request.body()) if request.method == "POST" else AuthCredentials()
    evaluator: PatronAuthEvaluator = request.app.state.evaluator
    outcome = await run_in_threadpool(
        evaluator.evaluate,
        AuthRequest(
            username=credentials.username,
            password=credentials.password,
            mode=mode,
            method=request.method,
        ),
    )

    rendered = render(outcome.status, mode, username=credentials.username, output_mode=output_mode)
    return output(
        rendered.content,
        outcome.envelope_status,
        outcome.http_status,
        output_mode=rendered.output_mode,
        callback=callback,
        pretty=pretty,
    )
