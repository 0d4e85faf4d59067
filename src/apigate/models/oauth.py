from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .common import utc_now


class OAuthClient(BaseModel):
    id: str
    tenant_id: str
    client_id: str
    client_secret: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    redirect_uris: List[str] = Field(default_factory=list)
    allowed_scopes: List[str] = Field(default_factory=list)
    active: bool = True
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)

    def public_dict(self) -> dict:
        return self.model_dump(mode="json", exclude={"client_secret"})


class AuthorizationCode(BaseModel):
    code: str
    client_id: str
    tenant_id: str
    user_id: str
    scopes: List[str] = Field(default_factory=list)
    redirect_uri: str
    expires_at: datetime
    used: bool = False


class AccessToken(BaseModel):
    token: str
    client_id: str
    tenant_id: str
    user_id: str
    scopes: List[str] = Field(default_factory=list)
    expires_at: datetime
    refresh_token: Optional[str] = None

    def to_token_response(self, now: datetime) -> dict:
        return {
            "access_token": self.token,
            "token_type": "Bearer",
            "expires_in": max(0, int((self.expires_at - now).total_seconds())),
            "refresh_token": self.refresh_token,
            "scope": " ".join(self.scopes),
        }


class RefreshToken(BaseModel):
    token: str
    client_id: str
    tenant_id: str
    user_id: str
    scopes: List[str] = Field(default_factory=list)
    expires_at: datetime
    revoked: bool = False
