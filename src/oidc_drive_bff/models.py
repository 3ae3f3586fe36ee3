# src/oidc_drive_bff/models.py

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class TokenResponse(BaseModel):
    """Token endpoint response for the authorization_code and refresh_token grants."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None  # Only guaranteed on the code exchange


class DriveUser(BaseModel):
    """The `user` object of the Drive `about` resource."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    email_address: Optional[str] = Field(default=None, alias="emailAddress")
    photo_link: Optional[str] = Field(default=None, alias="photoLink")
    display_name: Optional[str] = Field(default=None, alias="displayName")
    permission_id: Optional[str] = Field(default=None, alias="permissionId")
