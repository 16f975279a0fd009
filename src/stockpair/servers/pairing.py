"""Device pairing REST endpoints.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters.
2. Delegate business logic to ``PairingCoordinator`` (in a worker thread –
   stores and bcrypt may block).
3. Map :class:`~stockpair.device_auth.errors.PairingError` to a JSON response
   with the error's ``http_status``.

Routes (``base_path`` defaults to ``/pairing``)::

    POST /pairing                         create a code (TV)
    GET  /pairing/{code}/status           poll (TV); token returned once
    POST /pairing/{code}/verify           can this code still be approved? (phone)
    POST /pairing/{code}/approve          approve with e-mail + password (phone)
    POST /pairing/{code}/approve-signup   create account, then approve (phone)
    POST /auth/login                      direct sign-in on the device
    POST /auth/signup                     create an account and sign in
    GET  /auth/verify                     check a bearer token

SECURITY NOTE
-------------
• Tokens, passwords and full pairing codes are never logged.
• Correlation IDs, if present in ``request.state.correlation_id``, are included
  in INFO logs to aid troubleshooting.

This module is HTTP-only and MUST remain free from protocol logic.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from stockpair.device_auth.errors import InvalidRequestError, InvalidTokenError, PairingError
from stockpair.device_auth.log_utils import mask_code
from stockpair.device_auth.service import PairingCoordinator

_LOG = logging.getLogger("stockpair.pairing.routes")


def _error_response(exc: PairingError) -> JSONResponse:
    return JSONResponse(exc.to_payload(), status_code=exc.http_status)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


async def _json_body(request: Request) -> dict[str, Any]:
    """Return the JSON object body; an empty body counts as ``{}``."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        raise InvalidRequestError("Request body must be JSON.") from None
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object.")
    return payload


def _credentials(payload: dict[str, Any]) -> tuple[str, str]:
    """Accept credentials top-level or nested under ``identityCredentials``."""
    creds = payload.get("identityCredentials")
    source = creds if isinstance(creds, dict) else payload
    email, password = source.get("email"), source.get("password")
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        raise InvalidRequestError("Email and password are required.")
    return email, password


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization") or ""
    if not header.startswith("Bearer "):
        raise InvalidTokenError("No token provided.")
    token = header[7:].strip()
    if not token:
        raise InvalidTokenError("Empty Bearer token.")
    return token


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def pairing_routes(coordinator: PairingCoordinator, *, base_path: str = "/pairing") -> list[Route]:
    """Return the pairing endpoints bound to *coordinator* under *base_path*."""
    base_path = base_path.rstrip("/")

    # ----- POST /pairing -------------------------------------------------- #
    async def _create(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            auth_type = request.query_params.get("authType") or payload.get("authType") or "signin"
            ticket = await run_in_threadpool(coordinator.create_pairing, auth_type=auth_type)
        except PairingError as exc:
            _LOG.warning(
                "Create pairing failed reason=%s correlation_id=%s",
                exc.reason,
                _correlation_id(request),
            )
            return _error_response(exc)
        _LOG.info(
            "Created pairing code=%s auth_type=%s correlation_id=%s",
            mask_code(ticket.code),
            ticket.auth_type,
            _correlation_id(request),
        )
        return JSONResponse(ticket.to_payload())

    # ----- GET /pairing/{code}/status ------------------------------------- #
    async def _status(request: Request) -> Response:
        raw_code = request.path_params["code"]
        try:
            report = await run_in_threadpool(coordinator.check_status, raw_code)
        except PairingError as exc:
            return _error_response(exc)
        if report.token is not None:
            _LOG.info(
                "Delivered token for code=%s correlation_id=%s",
                mask_code(raw_code),
                _correlation_id(request),
            )
        return JSONResponse(report.to_payload())

    # ----- POST /pairing/{code}/verify ------------------------------------ #
    async def _verify(request: Request) -> Response:
        try:
            record = await run_in_threadpool(coordinator.verify_code, request.path_params["code"])
        except PairingError as exc:
            return _error_response(exc)
        return JSONResponse({"success": True, "authType": record.auth_type})

    # ----- POST /pairing/{code}/approve ----------------------------------- #
    async def _approve(request: Request) -> Response:
        raw_code = request.path_params["code"]
        try:
            email, password = _credentials(await _json_body(request))
            result = await run_in_threadpool(
                coordinator.approve, raw_code, email=email, password=password
            )
        except PairingError as exc:
            _LOG.info(
                "Approval failed code=%s reason=%s correlation_id=%s",
                mask_code(raw_code),
                exc.reason,
                _correlation_id(request),
            )
            return _error_response(exc)
        _LOG.info(
            "Approved code=%s correlation_id=%s", mask_code(raw_code), _correlation_id(request)
        )
        return JSONResponse(result.to_payload())

    # ----- POST /pairing/{code}/approve-signup ---------------------------- #
    async def _approve_signup(request: Request) -> Response:
        raw_code = request.path_params["code"]
        try:
            payload = await _json_body(request)
            email, password = _credentials(payload)
            display_name = payload.get("displayName")
            result = await run_in_threadpool(
                coordinator.approve_with_signup,
                raw_code,
                email=email,
                password=password,
                display_name=display_name if isinstance(display_name, str) else None,
            )
        except PairingError as exc:
            _LOG.info(
                "Sign-up approval failed code=%s reason=%s correlation_id=%s",
                mask_code(raw_code),
                exc.reason,
                _correlation_id(request),
            )
            return _error_response(exc)
        return JSONResponse(result.to_payload())

    # ----- POST /auth/login, POST /auth/signup ---------------------------- #
    async def _login(request: Request) -> Response:
        try:
            email, password = _credentials(await _json_body(request))
            grant = await run_in_threadpool(coordinator.login, email=email, password=password)
        except PairingError as exc:
            _LOG.info(
                "Direct sign-in failed reason=%s correlation_id=%s",
                exc.reason,
                _correlation_id(request),
            )
            return _error_response(exc)
        return JSONResponse(grant.to_payload())

    async def _signup(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            email, password = _credentials(payload)
            display_name = payload.get("displayName")
            grant = await run_in_threadpool(
                coordinator.signup,
                email=email,
                password=password,
                display_name=display_name if isinstance(display_name, str) else None,
            )
        except PairingError as exc:
            _LOG.info(
                "Direct sign-up failed reason=%s correlation_id=%s",
                exc.reason,
                _correlation_id(request),
            )
            return _error_response(exc)
        return JSONResponse(grant.to_payload(), status_code=201)

    # ----- GET /auth/verify ----------------------------------------------- #
    async def _verify_token(request: Request) -> Response:
        try:
            identity = coordinator.authenticate(_bearer_token(request))
        except PairingError as exc:
            return _error_response(exc)
        return JSONResponse({"success": True, "identity": identity.to_payload()})

    return [
        Route(base_path, _create, methods=["POST"]),
        Route(f"{base_path}/{{code}}/status", _status, methods=["GET"]),
        Route(f"{base_path}/{{code}}/verify", _verify, methods=["POST"]),
        Route(f"{base_path}/{{code}}/approve", _approve, methods=["POST"]),
        Route(f"{base_path}/{{code}}/approve-signup", _approve_signup, methods=["POST"]),
        Route("/auth/verify", _verify_token, methods=["GET"]),
        Route("/auth/login", _login, methods=["POST"]),
        Route("/auth/signup", _signup, methods=["POST"]),
    ]
