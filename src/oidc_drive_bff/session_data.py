# src/oidc_drive_bff/session_data.py

import enum
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import DriveUser, TokenResponse


class FlowState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING = "pending"
    AUTHORIZED = "authorized"
    TOKENS_ACQUIRED = "tokens_acquired"
    PROFILE_RESOLVED = "profile_resolved"


class SessionData(BaseModel):
    """
    Represents the data stored server-side for a user session.
    Only a signed session ID is stored in the browser cookie.
    """

    model_config = ConfigDict(validate_assignment=True)

    # Authorization request in flight
    state: Optional[str] = None
    nonce: Optional[str] = None
    authorized: bool = False

    # Tokens
    id_token: Optional[str] = None
    id_token_claims: Optional[Dict[str, Any]] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    expires_in: Optional[int] = None
    token_acquired_at: Optional[float] = None  # Epoch seconds

    # Profile
    user: Optional[Dict[str, Any]] = None
    email_address: Optional[str] = None
    photo_link: Optional[str] = None
    display_name: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def start_flow(self, state: str, nonce: str) -> None:
        self.state = state
        self.nonce = nonce

    def consume_state(self) -> Optional[str]:
        """Returns the stored state and clears it so it can only be matched once."""
        state, self.state = self.state, None
        return state

    def apply_code_exchange(self, tokens: TokenResponse) -> None:
        self.id_token = tokens.id_token
        self.id_token_claims = None
        self.access_token = tokens.access_token
        self.refresh_token = tokens.refresh_token
        self.scope = tokens.scope
        self.expires_in = tokens.expires_in
        self.token_acquired_at = time.time()

    def apply_refresh(self, tokens: TokenResponse) -> None:
        self.access_token = tokens.access_token
        if tokens.scope is not None:
            self.scope = tokens.scope
        if tokens.expires_in is not None:
            self.expires_in = tokens.expires_in
        if tokens.id_token:
            self.id_token = tokens.id_token
        # Providers may omit refresh_token on refresh; keep the stored one
        if tokens.refresh_token:
            self.refresh_token = tokens.refresh_token
        self.token_acquired_at = time.time()

    def discard_tokens(self) -> None:
        self.id_token = None
        self.id_token_claims = None
        self.access_token = None
        self.refresh_token = None
        self.scope = None
        self.expires_in = None
        self.token_acquired_at = None

    def apply_profile(self, user: DriveUser, raw_user: Dict[str, Any]) -> None:
        self.user = raw_user
        self.email_address = user.email_address
        self.photo_link = user.photo_link
        self.display_name = user.display_name

    def is_access_token_expired(self, skew_seconds: int = 0, now: Optional[float] = None) -> bool:
        if not self.access_token:
            return True
        if self.expires_in is None or self.token_acquired_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.token_acquired_at + self.expires_in - skew_seconds

    @property
    def flow_state(self) -> FlowState:
        if self.access_token and self.user is not None:
            return FlowState.PROFILE_RESOLVED
        if self.access_token:
            return FlowState.TOKENS_ACQUIRED
        if self.authorized:
            return FlowState.AUTHORIZED
        if self.state:
            return FlowState.PENDING
        return FlowState.UNAUTHENTICATED
