# src/oidc_drive_bff/profile.py

import logging
import typing

import httpx
from pydantic import ValidationError

from .config import Settings, settings as default_settings
from .models import DriveUser
from .session_data import SessionData

logger = logging.getLogger(__name__)


async def resolve_profile(
    http_client: httpx.AsyncClient,
    session: SessionData,
    settings: Settings = default_settings,
) -> typing.Optional[DriveUser]:
    """
    Fetches the `user` object from the profile endpoint and copies the display fields
    onto the session. Any failure leaves the session without profile fields; the flow
    is still considered complete.
    """
    headers = {
        "Authorization": f"Bearer {session.access_token}",
        "Accept": "application/json",
    }
    try:
        response = await http_client.get(
            str(settings.PROFILE_API_URL), headers=headers, timeout=settings.HTTP_TIMEOUT_SECONDS
        )
        data = response.json()
    except httpx.RequestError as e:
        logger.warning(f"resolve_profile - Request error calling profile endpoint: {e!r}")
        return None
    except ValueError:
        logger.warning(f"resolve_profile - Non-JSON profile response (HTTP {response.status_code}).")
        return None

    raw_user = data.get("user") if isinstance(data, dict) else None
    if not isinstance(raw_user, dict):
        logger.info(f"resolve_profile - No user object in profile response (HTTP {response.status_code}).")
        return None

    try:
        user = DriveUser.model_validate(raw_user)
    except ValidationError as e:
        logger.warning(f"resolve_profile - Unexpected user object: {e}")
        return None

    session.apply_profile(user, raw_user)
    logger.info(f"resolve_profile - Profile resolved for {user.display_name or 'N/A'}.")
    return user
