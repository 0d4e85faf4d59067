"""
In-process stores for local development and tests. Every store guards its dict
with a lock so the compare-and-set operations hold under threads.
"""

import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from apigate.errors import ConditionFailed
from apigate.models import (
    AccessToken,
    ApiKey,
    ApiKeyStatus,
    AuditEntry,
    AuthorizationCode,
    OAuthClient,
    RateLimits,
    RefreshToken,
    Tenant,
    UsageRecord,
    Webhook,
    WebhookEvent,
)
from apigate.stores.base import (
    ApiKeyStore,
    AuditStore,
    AuthorizationCodeStore,
    OAuthClientStore,
    OAuthTokenStore,
    RateLimitStore,
    TenantStore,
    UsageStore,
    WebhookEventStore,
    WebhookStore,
)


class _Locked:
    def __init__(self):
        self._lock = threading.RLock()


class MemoryApiKeyStore(_Locked, ApiKeyStore):
    def __init__(self):
        super().__init__()
        self._items: Dict[Tuple[str, str], ApiKey] = {}

    def put(self, api_key: ApiKey) -> None:
        with self._lock:
            self._items[(api_key.tenant_id, api_key.id)] = api_key.model_copy(deep=True)

    def get(self, tenant_id: str, key_id: str) -> Optional[ApiKey]:
        with self._lock:
            item = self._items.get((tenant_id, key_id))
            return item.model_copy(deep=True) if item else None

    def find_by_key(self, key: str, tenant_id: str) -> Optional[ApiKey]:
        with self._lock:
            for item in self._items.values():
                if item.key == key and item.tenant_id == tenant_id:
                    return item.model_copy(deep=True)
        return None

    def list_by_tenant(self, tenant_id: str) -> List[ApiKey]:
        with self._lock:
            return [i.model_copy(deep=True) for (t, _), i in self._items.items() if t == tenant_id]

    def set_status(self, tenant_id: str, key_id: str, status: ApiKeyStatus, updated_at: datetime) -> None:
        with self._lock:
            item = self._items[(tenant_id, key_id)]
            item.status = status
            item.updated_at = updated_at

    def touch(self, tenant_id: str, key_id: str, last_used_at: datetime) -> None:
        with self._lock:
            item = self._items.get((tenant_id, key_id))
            if item:
                item.last_used_at = last_used_at


class MemoryOAuthClientStore(_Locked, OAuthClientStore):
    def __init__(self):
        super().__init__()
        self._items: Dict[Tuple[str, str], OAuthClient] = {}

    def put(self, client: OAuthClient) -> None:
        with self._lock:
            self._items[(client.tenant_id, client.client_id)] = client.model_copy(deep=True)

    def get(self, tenant_id: str, client_id: str) -> Optional[OAuthClient]:
        with self._lock:
            item = self._items.get((tenant_id, client_id))
            return item.model_copy(deep=True) if item else None

    def list_by_tenant(self, tenant_id: str) -> List[OAuthClient]:
        with self._lock:
            return [i.model_copy(deep=True) for (t, _), i in self._items.items() if t == tenant_id]

    def delete(self, tenant_id: str, client_id: str) -> None:
        with self._lock:
            self._items.pop((tenant_id, client_id), None)


class MemoryAuthorizationCodeStore(_Locked, AuthorizationCodeStore):
    def __init__(self):
        super().__init__()
        self._items: Dict[str, AuthorizationCode] = {}

    def put(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._items[code.code] = code.model_copy(deep=True)

    def get(self, code: str) -> Optional[AuthorizationCode]:
        with self._lock:
            item = self._items.get(code)
            return item.model_copy(deep=True) if item else None

    def mark_used(self, code: str) -> None:
        with self._lock:
            item = self._items.get(code)
            if item is None or item.used:
                raise ConditionFailed(code)
            item.used = True


class MemoryOAuthTokenStore(_Locked, OAuthTokenStore):
    def __init__(self):
        super().__init__()
        self._access: Dict[str, AccessToken] = {}
        self._refresh: Dict[str, RefreshToken] = {}

    def put_access_token(self, token: AccessToken) -> None:
        with self._lock:
            self._access[token.token] = token.model_copy(deep=True)

    def put_refresh_token(self, token: RefreshToken) -> None:
        with self._lock:
            self._refresh[token.token] = token.model_copy(deep=True)

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._lock:
            item = self._refresh.get(token)
            return item.model_copy(deep=True) if item else None

    def revoke_refresh_token(self, token: str) -> None:
        with self._lock:
            item = self._refresh.get(token)
            if item is None or item.revoked:
                raise ConditionFailed(token)
            item.revoked = True


class MemoryWebhookStore(_Locked, WebhookStore):
    def __init__(self):
        super().__init__()
        self._items: Dict[Tuple[str, str], Webhook] = {}

    def put(self, webhook: Webhook) -> None:
        with self._lock:
            self._items[(webhook.tenant_id, webhook.id)] = webhook.model_copy(deep=True)

    def get(self, tenant_id: str, webhook_id: str) -> Optional[Webhook]:
        with self._lock:
            item = self._items.get((tenant_id, webhook_id))
            return item.model_copy(deep=True) if item else None

    def list_by_tenant(self, tenant_id: str) -> List[Webhook]:
        with self._lock:
            return [i.model_copy(deep=True) for (t, _), i in self._items.items() if t == tenant_id]

    def delete(self, tenant_id: str, webhook_id: str) -> None:
        with self._lock:
            self._items.pop((tenant_id, webhook_id), None)

    def update_fields(self, tenant_id: str, webhook_id: str, fields: Dict[str, Any]) -> Optional[Webhook]:
        with self._lock:
            item = self._items.get((tenant_id, webhook_id))
            if item is None:
                return None
            for name, value in fields.items():
                setattr(item, name, value)
            return item.model_copy(deep=True)

    def record_success(self, tenant_id: str, webhook_id: str, at: datetime) -> Optional[Webhook]:
        return self.update_fields(tenant_id, webhook_id, {"failure_count": 0, "last_triggered_at": at, "updated_at": at})

    def record_failure(self, tenant_id: str, webhook_id: str, at: datetime, max_failures: int) -> Optional[Webhook]:
        with self._lock:
            item = self._items.get((tenant_id, webhook_id))
            if item is None:
                return None
            item.failure_count += 1
            item.last_triggered_at = at
            item.updated_at = at
            if item.failure_count >= max_failures:
                item.active = False
            return item.model_copy(deep=True)


class MemoryWebhookEventStore(_Locked, WebhookEventStore):
    def __init__(self):
        super().__init__()
        self._items: Dict[str, WebhookEvent] = {}

    def put(self, event: WebhookEvent) -> None:
        with self._lock:
            self._items[event.id] = event.model_copy(deep=True)

    def get(self, event_id: str) -> Optional[WebhookEvent]:
        with self._lock:
            item = self._items.get(event_id)
            return item.model_copy(deep=True) if item else None

    def list_by_webhook(self, webhook_id: str) -> List[WebhookEvent]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._items.values() if i.webhook_id == webhook_id]


class MemoryRateLimitStore(_Locked, RateLimitStore):
    """
    Bucket keys look like "<window>#<period>". On each increment, any bucket of the
    same window whose period differs from the one being counted is dropped, so a key
    holds at most one live counter per window.
    """

    def __init__(self):
        super().__init__()
        self._counts: Dict[str, Dict[str, int]] = defaultdict(dict)
        self._limits: Dict[str, RateLimits] = {}

    def increment(self, api_key_id: str, buckets: Dict[str, int]) -> None:
        with self._lock:
            counts = self._counts[api_key_id]
            current = set(buckets)
            windows = {bucket.partition("#")[0] for bucket in buckets}
            for stale in [b for b in counts if b not in current and b.partition("#")[0] in windows]:
                del counts[stale]
            for bucket in buckets:
                counts[bucket] = counts.get(bucket, 0) + 1

    def get_counts(self, api_key_id: str, buckets: List[str]) -> Dict[str, int]:
        with self._lock:
            counts = self._counts.get(api_key_id, {})
            return {bucket: counts.get(bucket, 0) for bucket in buckets}

    def get_limits(self, api_key_id: str) -> Optional[RateLimits]:
        with self._lock:
            limits = self._limits.get(api_key_id)
            return limits.model_copy() if limits else None

    def put_limits(self, api_key_id: str, tenant_id: str, limits: RateLimits) -> None:
        with self._lock:
            self._limits[api_key_id] = limits.model_copy()


class MemoryUsageStore(_Locked, UsageStore):
    def __init__(self):
        super().__init__()
        self._records: List[UsageRecord] = []

    def append(self, record: UsageRecord) -> None:
        with self._lock:
            self._records.append(record.model_copy())

    def list_for_key(self, api_key_id: str, limit: int = 100) -> List[UsageRecord]:
        with self._lock:
            records = [r for r in self._records if r.api_key_id == api_key_id]
        return list(reversed(records))[:limit]


class MemoryTenantStore(_Locked, TenantStore):
    def __init__(self):
        super().__init__()
        self._items: Dict[str, Tenant] = {}

    def put(self, tenant: Tenant) -> None:
        with self._lock:
            self._items[tenant.tenant_id] = tenant.model_copy(deep=True)

    def get(self, tenant_id: str) -> Optional[Tenant]:
        with self._lock:
            item = self._items.get(tenant_id)
            return item.model_copy(deep=True) if item else None


class MemoryAuditStore(_Locked, AuditStore):
    def __init__(self):
        super().__init__()
        self._entries: List[AuditEntry] = []

    def put(self, entry: AuditEntry, expires_at: int) -> None:
        with self._lock:
            self._entries.append(entry.model_copy(deep=True))

    def list_by_tenant(self, tenant_id: str, limit: int = 50) -> List[AuditEntry]:
        with self._lock:
            entries = [e for e in self._entries if e.tenant_id == tenant_id]
        return list(reversed(entries))[:limit]
