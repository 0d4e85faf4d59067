from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .common import utc_now


class ApiKeyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    REVOKED = "revoked"


class ApiKey(BaseModel):
    id: str = Field(..., description="Key identifier (ULID)")
    tenant_id: str
    name: str = Field(..., min_length=1, max_length=100)
    key: str = Field(..., description="Public part of the credential")
    secret_hash: str = Field(..., description="SHA-256 hash of the API secret")
    permissions: List[str] = Field(default_factory=list)
    status: ApiKeyStatus = ApiKeyStatus.ACTIVE
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_used_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def public_dict(self) -> dict:
        return self.model_dump(mode="json", exclude={"secret_hash"})


class ApiKeyCreated(BaseModel):
    """Returned once, at creation. The only place the raw secret appears."""

    api_key: ApiKey
    secret: str

    def public_dict(self) -> dict:
        data = self.api_key.public_dict()
        data["secret"] = self.secret
        return data
