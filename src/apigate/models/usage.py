from datetime import datetime
from pydantic import BaseModel, Field

from .common import utc_now


class RateLimits(BaseModel):
    per_minute: int = 60
    per_hour: int = 1000
    per_day: int = 10000


class UsageRecord(BaseModel):
    api_key_id: str
    tenant_id: str
    endpoint: str
    method: str
    status_code: int
    response_time_ms: int = 0
    timestamp: datetime = Field(default_factory=utc_now)
