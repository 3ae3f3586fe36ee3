# src/oidc_drive_bff/config.py

import logging
import os
from pathlib import Path
from typing import Any, List, Optional, Union
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(name)s - [%(levelname)s] - %(message)s",
    )

# .env is at the project root, two levels up from src/oidc_drive_bff/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"
PACKAGE_DIR = CONFIG_FILE_DIR

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=False)
    logger.info(f"Loaded .env file from: {ENV_FILE_PATH}")
else:
    logger.warning(f".env file not found at {ENV_FILE_PATH}. Relying on environment variables.")

DEFAULT_SCOPES = [
    "openid profile",
    "https://www.googleapis.com/auth/drive.metadata.readonly",
]


class Settings(BaseSettings):
    # === Client registration at the identity provider ===
    CLIENT_ID: str
    CLIENT_SECRET: str
    REDIRECT_URI: AnyHttpUrl

    # === Provider endpoints ===
    AUTH_URI: AnyHttpUrl = "https://accounts.google.com/o/oauth2/auth"
    TOKEN_URI: AnyHttpUrl = "https://oauth2.googleapis.com/token"
    # Comma-separated in the environment, List[str] after validation
    SCOPES: Union[str, List[str]] = DEFAULT_SCOPES
    ACCESS_TYPE: str = "offline"

    # === Resource API ===
    RESOURCE_API_URL: AnyHttpUrl = "https://www.googleapis.com/drive/v3/files"
    PROFILE_API_URL: AnyHttpUrl = "https://www.googleapis.com/drive/v3/about?fields=user"
    RESOURCE_LIST_FIELD: str = "files"

    # === Session Management ===
    SESSION_SECRET_KEY: Optional[str] = None
    SESSION_COOKIE_NAME: str = "session_id"
    SESSION_COOKIE_MAX_AGE: int = 60 * 60 * 4  # 4 hours
    SESSION_COOKIE_SECURE: bool = False

    # === Outbound calls ===
    HTTP_TIMEOUT_SECONDS: float = 10.0
    TOKEN_EXPIRY_SKEW_SECONDS: int = 30

    # === ID token checks ===
    ID_TOKEN_VALIDATE_NONCE: bool = True
    ID_TOKEN_JWKS_URI: Optional[AnyHttpUrl] = None
    ID_TOKEN_ALGORITHMS: Union[str, List[str]] = ["RS256"]
    ID_TOKEN_ISSUERS: Union[str, List[str]] = ["https://accounts.google.com", "accounts.google.com"]

    # === Server ===
    HOST: str = "127.0.0.1"
    PORT: int = 8080

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def CALLBACK_PATH(self) -> str:
        return urlparse(str(self.REDIRECT_URI)).path or "/"

    @field_validator("SCOPES", "ID_TOKEN_ALGORITHMS", "ID_TOKEN_ISSUERS", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        if isinstance(v, (list, tuple)):
            return [str(item).strip() for item in v if str(item).strip()]
        raise TypeError("Expected a comma-separated string or a list.")

    @model_validator(mode="after")
    def check_lists_not_empty(self) -> "Settings":
        if not self.SCOPES:
            raise ValueError("SCOPES must contain at least one scope.")
        if self.ID_TOKEN_JWKS_URI and not self.ID_TOKEN_ALGORITHMS:
            raise ValueError("ID_TOKEN_ALGORITHMS is required when ID_TOKEN_JWKS_URI is set.")
        return self


try:
    settings = Settings()
    logging.getLogger().setLevel(settings.LOG_LEVEL.upper())
    logger.info(f"Authorization endpoint: {settings.AUTH_URI}")
    logger.info(f"Redirect URI: {settings.REDIRECT_URI} (callback path: {settings.CALLBACK_PATH})")
    logger.info(f"Scopes: {settings.SCOPES}")
except Exception as e:
    logger.error(f"Error instantiating Settings: {e}", exc_info=True)
    raise
