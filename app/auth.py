"""Password hashing, HS256 bearer tokens and the auth middleware."""

from __future__ import annotations

import logging
import os
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


logger = logging.getLogger("nodecms.auth")

ALGORITHM = "HS256"
PROTECTED_PREFIXES = ("/node-types", "/node-options", "/block-types", "/auth/me")
_LOCAL_ORIGIN_RE = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_DEV_ADMIN = {"id": None, "username": "dev", "email": None, "role": "admin", "isAdmin": True}


class AuthError(Exception):
    """Raised when a token cannot be verified."""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def public_user(user: dict | None) -> dict | None:
    if user is None:
        return None
    out = {key: value for key, value in user.items() if key != "password_hash"}
    out["isAdmin"] = out.get("role") == "admin"
    return out


def issue_token(user: dict, secret: str, expires_hours: float = 24) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user["id"]),
        "username": user.get("username"),
        "role": user.get("role"),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=expires_hours)).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> dict:
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise AuthError(str(exc)) from exc
    if not claims.get("sub"):
        raise AuthError("token has no subject")
    return claims


def auth_disabled() -> bool:
    return os.getenv("NODECMS_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def _attach_local_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and _LOCAL_ORIGIN_RE.match(origin):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Vary", "Origin")
    return response


def _is_protected(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in PROTECTED_PREFIXES)


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolve the bearer token into ``request.state.user``.

    Protected prefixes reject missing or invalid tokens with 401. Elsewhere a
    valid token is still attached so handlers can see who is calling.
    """

    def __init__(self, app, secret: str) -> None:
        super().__init__(app)
        self._secret = secret

    def _reject(self, request: Request, message: str) -> JSONResponse:
        return _attach_local_cors(
            request,
            JSONResponse({"success": False, "message": message}, status_code=401),
        )

    def _load_user(self, request: Request, claims: dict) -> dict | None:
        store = getattr(request.app.state, "user_store", None)
        if store is None:
            return None
        try:
            user_id = int(claims["sub"])
        except (TypeError, ValueError):
            return None
        user = store.get(user_id)
        if not user or not user.get("is_active", True):
            return None
        return public_user(user)

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request.state.user = None
        if request.method == "OPTIONS":
            return await call_next(request)
        if auth_disabled():
            request.state.user = dict(_DEV_ADMIN)
            return await call_next(request)

        protected = _is_protected(request.url.path)
        token = _get_bearer_token(request)
        if not token:
            if protected:
                logger.warning("auth_missing_token path=%s", request.url.path)
                return self._reject(request, "Access denied. No token provided.")
            return await call_next(request)

        try:
            claims = verify_token(token, self._secret)
        except AuthError as exc:
            if protected:
                logger.warning("auth_invalid_token path=%s error=%s", request.url.path, exc)
                return self._reject(request, "Invalid token.")
            return await call_next(request)

        user = self._load_user(request, claims)
        if user is None and protected:
            logger.warning("auth_unknown_user path=%s sub=%s", request.url.path, claims.get("sub"))
            return self._reject(request, "Invalid token.")
        request.state.user = user
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)
