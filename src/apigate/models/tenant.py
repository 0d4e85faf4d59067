from datetime import datetime
from enum import Enum
from typing import List
from pydantic import BaseModel, ConfigDict, Field

from .common import utc_now


class TenantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class Tenant(BaseModel):
    tenant_id: str = Field(..., description="Unique tenant identifier")
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., description="Tenant contact email")
    allowed_origins: List[str] = Field(
        default_factory=list,
        description="CORS allow-list; entries may be exact origins or *.domain patterns",
    )
    created_at: datetime = Field(default_factory=utc_now)
    status: TenantStatus = TenantStatus.ACTIVE

    model_config = ConfigDict(from_attributes=True)
