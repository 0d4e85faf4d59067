from datetime import datetime
from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict, Field

from .common import utc_now


class AuditEntry(BaseModel):
    tenant_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    action: str = Field(..., description="e.g., GENERATE_KEY, REVOKE_KEY")
    resource: str = Field(..., description="e.g., api_key_id, client_id, webhook_id")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
