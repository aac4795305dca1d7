from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from . import config
from .errors import AuthenticationError, ForbiddenError

logger = logging.getLogger(__name__)

ROLES = ("student", "mentor", "admin")

TokenVerifier = Callable[[str], Awaitable[dict[str, Any]]]


def _normalize_user(payload: Any) -> dict[str, str]:
    if isinstance(payload, dict) and "user" in payload and isinstance(payload["user"], dict):
        payload = payload["user"]

    if not isinstance(payload, dict):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing sub")

    role = str(payload.get("role") or "student").strip().lower()
    if role not in ROLES:
        role = "student"

    return {"sub": str(sub), "email": str(payload.get("email") or ""), "role": role}


async def verify_token(token: str) -> dict[str, str]:
    """
    Verify token via auth-service and normalize returned payload.
    REQUIRED: sub. Optional: email, role (defaults to "student").
    """
    try:
        async with httpx.AsyncClient(timeout=config.AUTH_TIMEOUT_SECONDS) as client:
            r = await client.post(
                f"{config.AUTH_SERVICE_URL}/auth/verify",
                json={"token": token},
            )
    except httpx.RequestError as e:
        logger.error("Auth service error: %s", e)
        raise HTTPException(status_code=503, detail="Authentication service unavailable")

    try:
        data: Any = r.json()
    except ValueError:
        data = r.text

    if r.status_code != 200:
        detail = "Invalid or expired token"
        if isinstance(data, dict):
            detail = data.get("detail") or data.get("message") or detail
        raise HTTPException(status_code=401, detail=detail)

    return _normalize_user(data)


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.lower().startswith("bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


async def auth_middleware(request: Request, call_next):
    # Anonymous requests pass through; routes that need a caller ask for one.
    request.state.user = None

    if request.method == "OPTIONS":
        return await call_next(request)

    token = _bearer_token(request)
    if token is None:
        return await call_next(request)

    verifier: TokenVerifier = getattr(request.app.state, "verify_token", None) or verify_token
    try:
        request.state.user = await verifier(token)
    except HTTPException as e:
        logger.warning("Rejected token on %s %s: %s", request.method, request.url.path, e.detail)
        code = "UNAUTHENTICATED" if e.status_code == status.HTTP_401_UNAUTHORIZED else "SERVICE_UNAVAILABLE"
        return JSONResponse(status_code=e.status_code, content={"detail": e.detail, "code": code})

    return await call_next(request)


def current_user(request: Request) -> dict[str, str]:
    user = getattr(request.state, "user", None)
    if not user:
        raise AuthenticationError()
    return user


def require_roles(*roles: str):
    def dependency(request: Request) -> dict[str, str]:
        user = current_user(request)
        if user.get("role") not in roles:
            raise ForbiddenError(f"This action requires one of the following roles: {', '.join(roles)}")
        return user

    return dependency


def check_owner_or_admin(user: dict[str, str], owner_id: str) -> None:
    if user["sub"] != owner_id and user.get("role") != "admin":
        raise ForbiddenError("You do not have permission to access this resource")
