from datetime import datetime, timezone
from typing import List
from pydantic import BaseModel, ConfigDict, Field, model_validator

API_KEY_ISSUER = "apigate:api-key"
OAUTH_ISSUER = "apigate:oauth"


class TokenPayload(BaseModel):
    key_id: str = Field(..., alias="keyId")
    tenant_id: str = Field(..., alias="tenantId")
    permissions: List[str] = Field(default_factory=list)
    iat: int
    exp: int

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _check_window(self):
        if self.exp <= self.iat:
            raise ValueError("exp must be after iat")
        return self

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    def is_valid_at(self, now: datetime) -> bool:
        return now.timestamp() < self.exp

    def claims(self) -> dict:
        return self.model_dump(by_alias=True)


class IssuedToken(BaseModel):
    token: str
    expires_at: datetime
