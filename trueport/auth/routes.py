# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   POST /auth/register     - Create account, start a session
#   POST /auth/login        - Start a session
#   POST /auth/validate     - Is the cookie/bearer session still good?
#   POST /auth/logout       - Revoke the session, clear cookies
#   GET  /auth/me           - Get current user
#
# OAuth:
#   GET  /auth/providers                  - List available OAuth providers
#   GET  /auth/{provider}/authorize       - Get OAuth redirect URL
#   GET  /api/auth/{provider}/callback    - Provider redirect target
#   POST /api/auth/{provider}/callback    - Exchange a code for a session
#
# =============================================================================

import json
import logging
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr

from trueport.api.deps import get_oauth_manager, get_storage, get_users
from trueport.auth.context import AuthContext
from trueport.auth.jwt import create_session_token, revoke_session_token
from trueport.auth.policies import get_auth_context, require_auth
from trueport.auth.users import SELF_SERVICE_ROLES, UserCreate, UserDirectory, UserExistsError, UserInDB
from trueport.config import get_settings
from trueport.core.errors import ErrorCode
from trueport.core.models import Identity
from trueport.integrations.oauth import OAuthError, OAuthManager
from trueport.storage import StorageProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])
oauth_router = APIRouter(prefix="/api/auth", tags=["auth"])


# =============================================================================
# Request/Response Models
# =============================================================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    """Token-in-body delivery: the client persists `token` itself."""
    token: str | None = None
    user: Identity | None = None


class ValidateResponse(BaseModel):
    valid: bool
    user: Identity | None = None


class OAuthCallbackRequest(BaseModel):
    code: str
    state: str | None = None


# =============================================================================
# Helpers
# =============================================================================

def _set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


def _clear_session_cookies(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(settings.session_cookie_name, path="/")
    response.delete_cookie(settings.auth_token_cookie_name, path="/")


def _start_session(response: Response, user: UserInDB) -> AuthResponse:
    identity = user.to_identity()
    token = create_session_token(identity)
    _set_session_cookie(response, token)
    return AuthResponse(token=token, user=identity)


def _exchange_http_error(e: OAuthError) -> HTTPException:
    if e.rejected:
        return HTTPException(
            status_code=400,
            detail={"code": ErrorCode.EXCHANGE_ERROR.value, "message": str(e)},
        )
    return HTTPException(
        status_code=502,
        detail={"code": ErrorCode.EXCHANGE_ERROR.value, "message": str(e)},
    )


async def _complete_oauth(
    provider: str,
    code: str,
    state: str | None,
    oauth: OAuthManager,
    users: UserDirectory,
) -> UserInDB:
    """Consume the state, exchange the code, find or create the user."""
    # Every authorize URL carries a state; a callback without one is forged
    if not state:
        raise OAuthError("Missing state parameter")
    if await oauth.validate_state(state) != provider:
        raise OAuthError("Invalid state parameter")

    oauth_user = await oauth.authenticate(provider, code)
    return await users.find_or_create_oauth_user(
        provider=oauth_user.provider,
        provider_user_id=oauth_user.provider_user_id,
        email=oauth_user.email,
        name=oauth_user.name,
        email_verified=oauth_user.email_verified,
    )


# =============================================================================
# Public Endpoints
# =============================================================================

@router.post("/register", response_model=AuthResponse)
async def register(
    data: UserCreate,
    response: Response,
    users: UserDirectory = Depends(get_users),
):
    """Create a new account and start a session."""
    if data.role not in SELF_SERVICE_ROLES:
        raise HTTPException(status_code=400, detail="Role cannot be self-assigned")

    try:
        user = await users.create_user(data)
    except UserExistsError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _start_session(response, user)


@router.post("/login", response_model=AuthResponse)
async def login(
    data: LoginRequest,
    response: Response,
    users: UserDirectory = Depends(get_users),
):
    """Authenticate with a password and start a session."""
    user = await users.authenticate(data.email, data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return _start_session(response, user)


@router.post("/validate", response_model=ValidateResponse)
async def validate(ctx: AuthContext = Depends(get_auth_context)):
    """
    Report whether the caller's cookie (or bearer) session is usable.

    Always answers 200: an invalid session is a normal outcome here.
    """
    if ctx.is_anonymous:
        return ValidateResponse(valid=False)
    return ValidateResponse(valid=True, user=ctx.identity)


@router.post("/logout")
async def logout(
    response: Response,
    ctx: AuthContext = Depends(get_auth_context),
    storage: StorageProvider = Depends(get_storage),
):
    """Revoke the current session and clear both cookies."""
    if ctx.token:
        await revoke_session_token(ctx.token, storage.cache)
    _clear_session_cookies(response)
    return {"message": "Logged out successfully"}


# =============================================================================
# Protected Endpoints
# =============================================================================

@router.get("/me", response_model=Identity)
async def get_current_user(ctx: AuthContext = Depends(require_auth())):
    """Get the current authenticated user."""
    return ctx.identity


# =============================================================================
# OAuth Endpoints
# =============================================================================

@router.get("/providers")
async def list_oauth_providers(oauth: OAuthManager = Depends(get_oauth_manager)):
    """List configured OAuth providers."""
    return {"providers": oauth.get_available_providers()}


@router.get("/{provider}/authorize")
async def oauth_authorize(
    provider: str,
    oauth: OAuthManager = Depends(get_oauth_manager),
):
    """
    Get the OAuth authorization URL.

    Redirect the user (or a popup) to this URL to start the OAuth flow.
    """
    if provider not in oauth.get_available_providers():
        raise HTTPException(
            status_code=400,
            detail=f"Provider '{provider}' not available. Configured: {oauth.get_available_providers()}"
        )

    try:
        return {"authorize_url": await oauth.get_authorize_url(provider)}
    except OAuthError as e:
        raise HTTPException(status_code=500, detail=str(e))


@oauth_router.post("/{provider}/callback", response_model=AuthResponse)
async def oauth_exchange(
    provider: str,
    data: OAuthCallbackRequest,
    response: Response,
    oauth: OAuthManager = Depends(get_oauth_manager),
    users: UserDirectory = Depends(get_users),
):
    """
    Exchange an authorization code for a session.

    Returns the token in the body and also sets the HTTP-only cookie, so
    either delivery works for the caller.
    """
    try:
        user = await _complete_oauth(provider, data.code, data.state, oauth, users)
    except OAuthError as e:
        logger.warning(f"Code exchange for {provider} refused: {e}")
        raise _exchange_http_error(e)

    return _start_session(response, user)


@oauth_router.get("/{provider}/callback")
async def oauth_redirect_callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    oauth: OAuthManager = Depends(get_oauth_manager),
    users: UserDirectory = Depends(get_users),
):
    """
    Provider redirect target.

    Finishes the exchange server-side, then sends the browser to the
    frontend callback page with the result as a URL fragment
    (`#auth=<json>`) or, in cookie mode, as `?success=true`.
    """
    settings = get_settings()
    callback_url = f"{settings.frontend_origin}/oauth-callback"

    if error or not code:
        reason = error or "missing_code"
        return RedirectResponse(f"{callback_url}?{urlencode({'error': reason})}", status_code=302)

    try:
        user = await _complete_oauth(provider, code, state, oauth, users)
    except OAuthError as e:
        logger.warning(f"OAuth redirect callback for {provider} failed: {e}")
        reason = "auth_failed" if e.rejected else "provider_error"
        return RedirectResponse(f"{callback_url}?{urlencode({'error': reason})}", status_code=302)

    identity = user.to_identity()
    token = create_session_token(identity)

    if settings.oauth_redirect_mode == "cookie":
        target = f"{callback_url}?success=true"
    else:
        payload = json.dumps({"token": token, "user": identity.model_dump(mode="json")})
        target = f"{callback_url}#auth={quote(payload, safe='')}"

    redirect = RedirectResponse(target, status_code=302)
    _set_session_cookie(redirect, token)
    return redirect
