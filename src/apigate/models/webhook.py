from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .common import utc_now


class Webhook(BaseModel):
    id: str
    tenant_id: str
    api_key_id: str
    url: str = Field(..., description="HTTPS endpoint receiving deliveries")
    secret: str = Field(..., description="HMAC-SHA256 signing secret")
    events: List[str] = Field(default_factory=list)
    active: bool = True
    failure_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_triggered_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WebhookEventStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class WebhookEvent(BaseModel):
    id: str
    webhook_id: str
    tenant_id: str
    event: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: WebhookEventStatus = WebhookEventStatus.PENDING
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    def delivery_body(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "payload": self.payload,
            "timestamp": self.created_at.isoformat(),
        }
