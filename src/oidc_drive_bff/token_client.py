# src/oidc_drive_bff/token_client.py

import logging
import typing

import httpx
from pydantic import ValidationError

from .config import Settings, settings as default_settings
from .errors import ProviderUnavailableError, TokenEndpointError
from .models import TokenResponse

logger = logging.getLogger(__name__)

TOKEN_REQUEST_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded;charset=UTF-8",
    "Accept": "application/json",
}


class TokenExchangeClient:
    """
    Performs the two token endpoint grants this client supports:
    `authorization_code` and `refresh_token`.

    Failures are raised to the caller; no retries happen here.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings = default_settings):
        self.http_client = http_client
        self.settings = settings

    async def exchange_code(self, code: str) -> TokenResponse:
        form = {
            "code": code,
            "client_id": self.settings.CLIENT_ID,
            "client_secret": self.settings.CLIENT_SECRET,
            "redirect_uri": str(self.settings.REDIRECT_URI),
            "grant_type": "authorization_code",
        }
        tokens = await self._post_token_request(form)
        logger.info(
            f"exchange_code - Tokens acquired. Scope: {tokens.scope}, expires_in: {tokens.expires_in}, "
            f"refresh token issued: {'Yes' if tokens.refresh_token else 'No'}"
        )
        return tokens

    async def refresh(self, refresh_token: str) -> TokenResponse:
        form = {
            "client_id": self.settings.CLIENT_ID,
            "client_secret": self.settings.CLIENT_SECRET,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        tokens = await self._post_token_request(form)
        logger.info(f"refresh - Access token refreshed. expires_in: {tokens.expires_in}")
        return tokens

    async def _post_token_request(self, form: typing.Dict[str, str]) -> TokenResponse:
        grant_type = form["grant_type"]
        token_uri = str(self.settings.TOKEN_URI)
        try:
            response = await self.http_client.post(
                token_uri,
                data=form,
                headers=TOKEN_REQUEST_HEADERS,
                timeout=self.settings.HTTP_TIMEOUT_SECONDS,
            )
        except httpx.RequestError as e:
            logger.error(f"Token endpoint request failed ({grant_type}): {e!r}")
            raise ProviderUnavailableError(f"Could not reach the token endpoint: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Token endpoint returned a non-JSON body ({grant_type}), status {response.status_code}")
            raise ProviderUnavailableError(
                f"Token endpoint returned an unreadable response (HTTP {response.status_code})."
            ) from e

        if not isinstance(data, dict):
            raise ProviderUnavailableError("Token endpoint returned an unexpected JSON document.")

        if "error" in data or response.is_error:
            error = data.get("error") or "invalid_grant"
            error_description = data.get("error_description") or f"Token endpoint returned HTTP {response.status_code}."
            logger.warning(f"Token endpoint error ({grant_type}): {error} - {error_description}")
            raise TokenEndpointError(
                error_description=error_description, error=error, status_code=response.status_code
            )

        try:
            return TokenResponse.model_validate(data)
        except ValidationError as e:
            logger.error(f"Token endpoint response could not be parsed ({grant_type}): {e}")
            raise TokenEndpointError(
                error_description="Token endpoint response did not contain an access token.",
                status_code=response.status_code,
            ) from e
