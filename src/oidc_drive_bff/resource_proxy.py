# src/oidc_drive_bff/resource_proxy.py

import asyncio
import logging
import typing

import httpx

from .config import Settings, settings as default_settings
from .errors import MissingRefreshTokenError, ResourceAccessError
from .session_data import SessionData
from .token_client import TokenExchangeClient

logger = logging.getLogger(__name__)


def _error_from_payload(payload: typing.Any) -> typing.Optional[typing.Tuple[str, typing.Optional[str]]]:
    """
    Returns (error, description) when the resource API body signals an error.
    Google APIs nest the details in an object: {"error": {"code": 401, "message": ..., "status": ...}}.
    """
    if not isinstance(payload, dict) or not payload.get("error"):
        return None
    error = payload["error"]
    if isinstance(error, dict):
        return str(error.get("status") or error.get("code") or "invalid_credentials"), error.get("message")
    return str(error), payload.get("error_description")


async def refresh_session_tokens(
    token_client: TokenExchangeClient,
    session: SessionData,
    session_lock: asyncio.Lock,
    stale_access_token: typing.Optional[str],
) -> None:
    """
    Refreshes the session's access token, at most once across concurrent requests:
    if another request already replaced `stale_access_token` while this one waited
    on the lock, its result is used as-is.
    """
    async with session_lock:
        if session.access_token and session.access_token != stale_access_token:
            logger.info("refresh_session_tokens - Token already refreshed by a concurrent request.")
            return
        if not session.refresh_token:
            raise MissingRefreshTokenError("No refresh token in session. A new authorization flow is required.")
        tokens = await token_client.refresh(session.refresh_token)
        session.apply_refresh(tokens)


async def _send(
    http_client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: typing.Dict[str, str],
    access_token: str,
    timeout: float,
) -> typing.Tuple[int, typing.Any]:
    request_headers = dict(headers)
    request_headers["Authorization"] = f"Bearer {access_token}"
    request_headers.setdefault("Accept", "application/json")
    try:
        response = await http_client.request(method, url, headers=request_headers, timeout=timeout)
    except httpx.RequestError as e:
        logger.error(f"Request error calling resource API {url}: {e!r}")
        raise ResourceAccessError(
            f"Could not connect to the resource API: {e}", error="temporarily_unavailable"
        ) from e
    try:
        return response.status_code, response.json()
    except ValueError as e:
        if response.status_code == 401:
            # Plain-text 401 from a gateway still means the token is stale
            return response.status_code, None
        raise ResourceAccessError(
            f"Resource API returned a non-JSON body (HTTP {response.status_code}).",
            error="invalid_response",
            status_code=response.status_code,
        ) from e


async def fetch_resource(
    http_client: httpx.AsyncClient,
    token_client: TokenExchangeClient,
    session: SessionData,
    session_lock: asyncio.Lock,
    method: str = "GET",
    url: typing.Optional[str] = None,
    headers: typing.Optional[typing.Dict[str, str]] = None,
    settings: Settings = default_settings,
) -> typing.Any:
    """
    Calls the resource API with the session's access token.

    An error body (or HTTP 401) is taken to mean the access token is stale: the token is
    refreshed and the request retried exactly once. A token that is already past its
    local lifetime is refreshed before the first attempt, and that refresh is the only
    one this call makes.
    """
    url = url or str(settings.RESOURCE_API_URL)
    headers = headers or {}

    if not session.access_token and not session.refresh_token:
        raise MissingRefreshTokenError("No access token in session. A new authorization flow is required.")

    refreshed = False
    if session.is_access_token_expired(settings.TOKEN_EXPIRY_SKEW_SECONDS) and session.refresh_token:
        logger.info("fetch_resource - Access token past its lifetime; refreshing before the call.")
        await refresh_session_tokens(token_client, session, session_lock, session.access_token)
        refreshed = True

    used_token = session.access_token
    status_code, payload = await _send(http_client, method, url, headers, used_token, settings.HTTP_TIMEOUT_SECONDS)
    error = _error_from_payload(payload)
    if error is None and status_code != 401:
        return payload

    error_code, error_description = error or ("invalid_credentials", None)
    logger.warning(f"fetch_resource - Resource API reported an error: {error_code}")
    if refreshed:
        raise ResourceAccessError(
            error_description or "Resource API rejected the request after refreshing the access token.",
            error=error_code,
            status_code=status_code,
        )
    if not session.refresh_token:
        raise MissingRefreshTokenError(error_description or "Access token rejected and no refresh token is available.")

    await refresh_session_tokens(token_client, session, session_lock, used_token)

    status_code, payload = await _send(
        http_client, method, url, headers, session.access_token, settings.HTTP_TIMEOUT_SECONDS
    )
    error = _error_from_payload(payload)
    if error is None and status_code != 401:
        return payload

    error_code, error_description = error or ("invalid_credentials", None)
    logger.warning(f"fetch_resource - Resource API still reports an error after refresh: {error_code}")
    raise ResourceAccessError(
        error_description or "Resource API rejected the request after refreshing the access token.",
        error=error_code,
        status_code=status_code,
    )


async def list_files(
    http_client: httpx.AsyncClient,
    token_client: TokenExchangeClient,
    session: SessionData,
    session_lock: asyncio.Lock,
    settings: Settings = default_settings,
) -> typing.List[typing.Any]:
    payload = await fetch_resource(
        http_client, token_client, session, session_lock, settings=settings
    )
    files = payload.get(settings.RESOURCE_LIST_FIELD) if isinstance(payload, dict) else None
    return files if isinstance(files, list) else []
