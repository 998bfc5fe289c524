# Broker router: authorize, callback, token, revoke.
# Created: 2026-10-19
#
# Thin HTTP adapter over BrokerServer: parameters in, redirects/JSON out.
# Flow errors become 400 text, upstream errors a redirect to the failure
# page, anything else a generic 500.

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Cookie, Form, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import ValidationError

from oauthbroker.api.schemas import APIResult, RevokeRequest, TokenResponse
from oauthbroker.broker.errors import ClientInputError, UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2 broker"])

SESSION_COOKIE = "s"

_INTERNAL_ERROR = "Internal server error"


def _bad_request(exc: ClientInputError) -> PlainTextResponse:
    return PlainTextResponse(exc.message, status_code=400)


def _internal_error() -> PlainTextResponse:
    return PlainTextResponse(_INTERNAL_ERROR, status_code=500)


@router.get("/")
def authorize(
    client_id: str = Query(""),
    state: str = Query(""),
    redirect_uri: str = Query(""),
):
    """Validate the client's request, open a session and send the browser upstream."""
    from oauthbroker.broker.server import get_broker_server
    from oauthbroker.config import get_settings

    server = get_broker_server()
    try:
        result = server.authorize(client_id=client_id, state=state, redirect_uri=redirect_uri)
    except ClientInputError as exc:
        return _bad_request(exc)
    except Exception:
        logger.exception("authorize failed")
        return _internal_error()

    resp = RedirectResponse(result.redirect_url, status_code=302)
    resp.set_cookie(
        SESSION_COOKIE,
        result.session_id,
        path="/",
        secure=get_settings().cookie_secure,
        httponly=True,
        samesite="lax",
    )
    return resp


@router.get("/callback")
async def callback(
    state: str = Query(""),
    code: str = Query(""),
    s: str = Cookie(""),
):
    """Upstream return endpoint: verify state, exchange the code, redirect to the client."""
    from oauthbroker.broker.server import get_broker_server
    from oauthbroker.config import get_settings

    server = get_broker_server()
    try:
        target = await server.callback(session_id=s, state=state, code=code)
    except ClientInputError as exc:
        return _bad_request(exc)
    except UpstreamError as exc:
        logger.warning("Upstream exchange failed: %s", exc.message)
        return RedirectResponse(get_settings().failure_url, status_code=302)
    except Exception:
        logger.exception("callback failed")
        return _internal_error()
    return RedirectResponse(target, status_code=302)


@router.post("/token")
def token_exchange(
    client_id: str = Form(""),
    client_secret: str = Form(""),
    code: str = Form(""),
):
    """Exchange a broker-issued code for a bearer token."""
    from oauthbroker.broker.server import get_broker_server

    server = get_broker_server()
    try:
        grant = server.exchange(client_id=client_id, client_secret=client_secret, code=code)
    except ClientInputError as exc:
        return _bad_request(exc)
    except Exception:
        logger.exception("token exchange failed")
        return _internal_error()
    return TokenResponse(refresh_token=grant.refresh_token, token_type=grant.token_type)


@router.get("/revoke")
def revoke_redirect(
    token: str = Query(""),
    callback: str = Query(""),
):
    """Browser logout: revoke *token* and go back to *callback* either way."""
    from oauthbroker.broker.server import get_broker_server
    from oauthbroker.config import get_settings

    target = callback or get_settings().revoke_landing_url
    try:
        get_broker_server().revoke(token)
    except Exception:
        logger.exception("revoke failed")
        return _internal_error()
    return RedirectResponse(target, status_code=302)


@router.post("/revoke")
async def revoke_token(request: Request):
    """Revoke a token given as JSON ``{"token": ...}`` or a form field."""
    from oauthbroker.broker.server import get_broker_server

    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith(
            ("application/x-www-form-urlencoded", "multipart/form-data")
        ):
            form = await request.form()
            body = RevokeRequest(token=str(form.get("token", "")))
        else:
            body = RevokeRequest.model_validate(await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        return JSONResponse(status_code=400, content=APIResult.failure("invalid request body"))

    try:
        await asyncio.to_thread(get_broker_server().revoke, body.token)
    except Exception:
        logger.exception("revoke failed")
        return JSONResponse(status_code=500, content=APIResult.failure("internal server error"))
    return APIResult.success()
