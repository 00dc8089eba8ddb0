"""
api/routes/v1/auth.py -- HTTP surface of the auth core.

Routes:
  POST  /api/v1/auth/login                -- password login; sets token cookies
  POST  /api/v1/auth/logout               -- revokes refresh token, rotates CSRF, clears cookies
  GET   /api/v1/auth/session              -- {is_valid, user} for the presented access token
  POST  /api/v1/auth/refresh              -- new token pair from the refresh token
  POST  /api/v1/auth/register             -- create an identity (CSRF required)
  GET   /api/v1/auth/csrf                 -- current CSRF token
  GET   /api/v1/auth/me                   -- current identity (requires auth)
  PATCH /api/v1/auth/users/{id}/active    -- activate/deactivate (admin, CSRF required)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT) on top of the
       per-identifier lockout inside the service.
  [M5] Cache-Control: no-store on every response that carries tokens.
  AuthError subclasses raised here are rendered by the handler in api/main.py;
  routes never choose error wording themselves.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ActivePatch,
    AuthResponse,
    CsrfResponse,
    IdentityResponse,
    LoginRequest,
    LogoutResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
)
from auth.dependencies import (
    REFRESH_COOKIE,
    clear_auth_cookies,
    get_auth_service,
    get_current_identity,
    require_csrf,
    require_role,
    set_auth_cookies,
    try_get_current_identity,
)
from auth.models import Identity, Registration, Role
from auth.service import AuthSessionService

# Auth policy:
# - POST  /auth/login, /auth/logout, /auth/refresh: public
# - GET   /auth/session, /auth/csrf:                public
# - POST  /auth/register:                           public (self-service) or staff; CSRF
# - GET   /auth/me:                                 requires auth
# - PATCH /auth/users/{id}/active:                  requires admin; CSRF
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_rate_limit)  # [H2]
async def login(
    request: Request,
    body: LoginRequest,
    service: AuthSessionService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email or username and password; set token cookies.

    Wrong password and unknown account produce the same 401 body.
    """
    origin = request.client.host if request.client else None
    result = await service.login(body.identifier, body.password, body.remember_me, origin)
    resp = JSONResponse(content=AuthResponse.from_result(result).model_dump(mode="json"))
    set_auth_cookies(resp, result, service, body.remember_me)
    return _no_store(resp)


@router.post("/auth/logout", response_model=LogoutResponse)
async def logout(request: Request, service: AuthSessionService = Depends(get_auth_service)) -> JSONResponse:
    """End the session. Always 200, even with no or invalid cookies."""
    await service.logout(request.cookies.get(REFRESH_COOKIE))
    resp = JSONResponse(content=LogoutResponse(csrf_token=service.get_csrf_token()).model_dump())
    clear_auth_cookies(resp)
    return _no_store(resp)


@router.get("/auth/session", response_model=SessionResponse)
async def session(identity: Identity | None = Depends(try_get_current_identity)) -> SessionResponse:
    if identity is None:
        return SessionResponse(is_valid=False)
    return SessionResponse(is_valid=True, user=IdentityResponse.from_identity(identity))


@router.post("/auth/refresh", response_model=AuthResponse)
async def refresh(
    request: Request,
    body: RefreshRequest | None = None,
    service: AuthSessionService = Depends(get_auth_service),
) -> JSONResponse:
    """Rotate the token pair. The refresh token comes from the body or the refresh_token cookie."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    result = await service.refresh(token)
    resp = JSONResponse(content=AuthResponse.from_result(result).model_dump(mode="json"))
    set_auth_cookies(resp, result, service, remember_me=False)
    return _no_store(resp)


@router.get("/auth/csrf", response_model=CsrfResponse)
async def csrf(service: AuthSessionService = Depends(get_auth_service)) -> CsrfResponse:
    return CsrfResponse(csrf_token=service.get_csrf_token())


# ---------------------------------------------------------------------------
# Identity endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201, dependencies=[Depends(require_csrf)])
async def register(
    body: RegisterRequest,
    service: AuthSessionService = Depends(get_auth_service),
    current: Identity | None = Depends(try_get_current_identity),
) -> AuthResponse:
    """Create an identity. Anonymous callers get self-service rules; staff may grant roles up to their own."""
    registration = Registration(
        email=body.email,
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
    )
    result = await service.register(registration, created_by=current)
    return AuthResponse.from_result(result)


@router.get("/auth/me", response_model=IdentityResponse)
async def me(identity: Identity = Depends(get_current_identity)) -> IdentityResponse:
    return IdentityResponse.from_identity(identity)


@router.patch("/auth/users/{identity_id}/active", response_model=IdentityResponse, dependencies=[Depends(require_csrf)])
async def set_active(
    identity_id: str,
    body: ActivePatch,
    admin: Identity = Depends(require_role(Role.admin)),
    service: AuthSessionService = Depends(get_auth_service),
) -> IdentityResponse:
    """Activate or deactivate an account. Deactivation invalidates its live tokens immediately."""
    updated = await service.set_active(identity_id, body.is_active, changed_by=admin)
    return IdentityResponse.from_identity(updated)
