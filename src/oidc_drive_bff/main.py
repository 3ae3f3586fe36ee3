# src/oidc_drive_bff/main.py

import asyncio
import logging
import os
import typing

import httpx
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from . import auth_utils
from .config import PACKAGE_DIR, settings
from .errors import (
    IDTokenValidationError,
    MissingRefreshTokenError,
    OIDCClientError,
    ProviderUnavailableError,
    ResourceAccessError,
    StateMismatchError,
    TokenEndpointError,
)
from .profile import resolve_profile
from .resource_proxy import list_files
from .session_data import SessionData
from .sessions import SessionMiddlewareCustom, get_session, get_session_lock
from .token_client import TokenExchangeClient

logger = logging.getLogger(__name__)

app = FastAPI(
    title="OIDC Drive BFF",
    description="Backend-For-Frontend running the OpenID Connect authorization code flow and proxying the Drive API.",
    version="0.1.0",
)

app.add_middleware(SessionMiddlewareCustom)

# --- Static Files and Templates ---
app.mount("/static", StaticFiles(directory=PACKAGE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=PACKAGE_DIR / "templates")


# --- Dependencies ---
async def get_http_client() -> typing.AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        yield client


def get_token_client(http_client: httpx.AsyncClient = Depends(get_http_client)) -> TokenExchangeClient:
    return TokenExchangeClient(http_client, settings)


def render_index(
    request: Request,
    session: SessionData,
    error: typing.Optional[OIDCClientError] = None,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "authorized": session.authorized and bool(session.access_token),
            "emailAddress": session.email_address,
            "photoLink": session.photo_link,
            "displayName": session.display_name,
            "error": error.to_dict() if error else None,
        },
        status_code=status_code,
    )


# --- Favicon Route ---
@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    favicon_path = PACKAGE_DIR / "static" / "favicon.ico"
    if os.path.exists(favicon_path) and os.path.isfile(favicon_path):
        return FileResponse(favicon_path, media_type="image/x-icon")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/", response_class=HTMLResponse)
async def read_root(request: Request, session: SessionData = Depends(get_session)):
    logger.debug(f"read_root - Flow state: {session.flow_state.value}")
    return render_index(request, session)


# --- Authentication Routes ---
@app.get("/start-flow")
async def start_flow(session: SessionData = Depends(get_session)):
    auth_url = auth_utils.build_auth_url(session)
    logger.info("start_flow - Redirecting to authorization endpoint.")
    return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)


@app.get(settings.CALLBACK_PATH)
async def auth_callback(
    request: Request,
    session: SessionData = Depends(get_session),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    token_client: TokenExchangeClient = Depends(get_token_client),
):
    # 1. State check, before anything with side effects
    try:
        auth_utils.validate_callback_state(session, request.query_params.get("state"))
    except StateMismatchError:
        return RedirectResponse(url="/start-flow", status_code=status.HTTP_302_FOUND)

    code = request.query_params.get("code")
    if not code:
        provider_error = OIDCClientError(
            error=request.query_params.get("error") or "invalid_request",
            error_description=request.query_params.get("error_description")
            or "Authorization response did not include a code.",
        )
        logger.warning(f"auth_callback - Provider returned no code: {provider_error.error}")
        return render_index(request, session, provider_error, status.HTTP_400_BAD_REQUEST)

    # 2. Code exchange
    try:
        tokens = await token_client.exchange_code(code)
    except (TokenEndpointError, ProviderUnavailableError) as e:
        logger.error(f"auth_callback - Code exchange failed: {e.error} - {e.error_description}")
        return render_index(request, session, e, status.HTTP_502_BAD_GATEWAY)
    session.apply_code_exchange(tokens)

    # 3. ID token nonce
    try:
        # JWKS retrieval uses a blocking client
        await run_in_threadpool(auth_utils.validate_id_token, session)
    except IDTokenValidationError as e:
        session.discard_tokens()
        return render_index(request, session, e, status.HTTP_400_BAD_REQUEST)

    # 4. Profile; absence is tolerated
    await resolve_profile(http_client, session)

    logger.info(f"auth_callback - Flow complete. State: {session.flow_state.value}")
    return render_index(request, session)


# --- Resource API ---
@app.get("/get-files")
async def get_files(
    session: SessionData = Depends(get_session),
    session_lock: asyncio.Lock = Depends(get_session_lock),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    token_client: TokenExchangeClient = Depends(get_token_client),
):
    try:
        files = await list_files(http_client, token_client, session, session_lock)
    except MissingRefreshTokenError as e:
        return JSONResponse(e.to_dict(), status_code=status.HTTP_401_UNAUTHORIZED)
    except (ResourceAccessError, TokenEndpointError, ProviderUnavailableError) as e:
        logger.error(f"get_files - Resource call failed: {e.error} - {e.error_description}")
        return JSONResponse(e.to_dict(), status_code=status.HTTP_502_BAD_GATEWAY)
    return JSONResponse(files)


@app.on_event("startup")
async def startup_event():
    logger.info("--- OIDC Drive BFF Starting Up ---")
    logger.info(f"Client ID: {settings.CLIENT_ID}")
    logger.info(f"Token endpoint: {settings.TOKEN_URI}")
    logger.info(f"Resource API: {settings.RESOURCE_API_URL}")
    logger.info(f"Session secret configured: {'Yes' if settings.SESSION_SECRET_KEY else 'No (generated for this process)'}")
    logger.info(f"ID token signature verification: {'Yes' if settings.ID_TOKEN_JWKS_URI else 'No'}")
