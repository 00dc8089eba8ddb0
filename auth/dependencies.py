"""
auth/dependencies.py -- FastAPI Depends() helpers and cookie handling for the auth core.

Tokens are read in priority order:
  1. "access_token" cookie -- written by the login route.
  2. Authorization: Bearer <token> header -- API clients.

Cookies are secure (SECURE_COOKIES), samesite=strict, and NOT httponly: the
salon front end reads them from JS. Remember-me logins get a persistent
cookie (max_age = access lifetime); otherwise a session cookie.

try_get_current_identity() is the soft variant (None on failure).
get_current_identity() raises 401, require_role() adds a 403 check, and
require_csrf rejects mutating requests without a valid X-CSRF-Token header.

auth/dependencies.py may import from fastapi because it is part of the
dependency injection seam; the rest of auth/ does not.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, Response

from auth.models import AuthResult, Identity, Role
from auth.service import AuthSessionService

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
CSRF_HEADER = "X-CSRF-Token"
_SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def get_auth_service(request: Request) -> AuthSessionService:
    return request.app.state.auth_service


def _presented_token(request: Request) -> str | None:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


async def try_get_current_identity(request: Request) -> Identity | None:
    """Return the identity behind the presented access token, or None. Never raises."""
    token = _presented_token(request)
    if token is None:
        return None
    check = await get_auth_service(request).verify_session(token)
    return check.identity if check.is_valid else None


async def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    identity = await try_get_current_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return identity


def require_role(role: Role) -> Callable:
    """Build a dependency that requires at least role (admin > manager > employee).

    Use as:
        @router.get("/reports")
        async def reports(user: Identity = Depends(require_role(Role.manager))): ...
    """

    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not Role(identity.role).at_least(role):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{role.value.capitalize()} access required."},
            )
        return identity

    return dependency


def require_csrf(request: Request) -> None:
    """Reject state-changing requests whose X-CSRF-Token does not match the current token."""
    if request.method in _SAFE_METHODS:
        return
    if not get_auth_service(request).validate_csrf_token(request.headers.get(CSRF_HEADER)):
        raise HTTPException(
            status_code=403,
            detail={"code": "csrf_failed", "message": "Missing or invalid CSRF token."},
        )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response: Response, result: AuthResult, service: AuthSessionService, remember_me: bool) -> None:
    """Write the access and refresh tokens as cookies on the response.

    secure:   only sent over HTTPS when SECURE_COOKIES=true (the default).
    samesite: "strict" -- never sent on cross-site requests.
    httponly: False -- the front end reads the tokens.
    max_age:  only with remember-me; otherwise the cookies end with the
              browser session and the token expiry still bounds them.
    """
    options = {
        "secure": service.settings.secure_cookies,
        "samesite": "strict",
        "httponly": False,
    }
    if remember_me:
        options["max_age"] = int(service.tokens.access_lifetime(True).total_seconds())
    response.set_cookie(ACCESS_COOKIE, value=result.access_token, **options)
    response.set_cookie(REFRESH_COOKIE, value=result.refresh_token, **options)


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
