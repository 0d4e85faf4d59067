from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Permission(str, Enum):
    CONTENT_READ = "content:read"
    CONTENT_WRITE = "content:write"
    ASSESSMENT_READ = "assessment:read"
    ASSESSMENT_WRITE = "assessment:write"
    USER_READ = "user:read"
    USER_WRITE = "user:write"
    ANALYTICS_READ = "analytics:read"
    KEYS_MANAGE = "keys:manage"
    OAUTH_MANAGE = "oauth:manage"
    WEBHOOKS_MANAGE = "webhooks:manage"


def normalize_permissions(values: Iterable[str]) -> List[str]:
    """De-duplicate while keeping order; raises ValueError on unknown names."""
    seen: List[str] = []
    for value in values:
        name = Permission(value).value
        if name not in seen:
            seen.append(name)
    return seen
