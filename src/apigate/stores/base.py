"""
Repository interfaces for every persisted entity.

Implementations must honour two atomic operations: AuthorizationCodeStore.mark_used
and OAuthTokenStore.revoke_refresh_token are compare-and-set, and the rate limit
counters are atomic increments.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

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


class ApiKeyStore(ABC):
    @abstractmethod
    def put(self, api_key: ApiKey) -> None: ...

    @abstractmethod
    def get(self, tenant_id: str, key_id: str) -> Optional[ApiKey]: ...

    @abstractmethod
    def find_by_key(self, key: str, tenant_id: str) -> Optional[ApiKey]: ...

    @abstractmethod
    def list_by_tenant(self, tenant_id: str) -> List[ApiKey]: ...

    @abstractmethod
    def set_status(self, tenant_id: str, key_id: str, status: ApiKeyStatus, updated_at: datetime) -> None: ...

    @abstractmethod
    def touch(self, tenant_id: str, key_id: str, last_used_at: datetime) -> None: ...


class OAuthClientStore(ABC):
    @abstractmethod
    def put(self, client: OAuthClient) -> None: ...

    @abstractmethod
    def get(self, tenant_id: str, client_id: str) -> Optional[OAuthClient]: ...

    @abstractmethod
    def list_by_tenant(self, tenant_id: str) -> List[OAuthClient]: ...

    @abstractmethod
    def delete(self, tenant_id: str, client_id: str) -> None: ...


class AuthorizationCodeStore(ABC):
    @abstractmethod
    def put(self, code: AuthorizationCode) -> None: ...

    @abstractmethod
    def get(self, code: str) -> Optional[AuthorizationCode]: ...

    @abstractmethod
    def mark_used(self, code: str) -> None:
        """Flip used False -> True. Raises ConditionFailed if it was already used."""


class OAuthTokenStore(ABC):
    @abstractmethod
    def put_access_token(self, token: AccessToken) -> None: ...

    @abstractmethod
    def put_refresh_token(self, token: RefreshToken) -> None: ...

    @abstractmethod
    def get_refresh_token(self, token: str) -> Optional[RefreshToken]: ...

    @abstractmethod
    def revoke_refresh_token(self, token: str) -> None:
        """Flip revoked False -> True. Raises ConditionFailed if it was already revoked."""


class WebhookStore(ABC):
    @abstractmethod
    def put(self, webhook: Webhook) -> None: ...

    @abstractmethod
    def get(self, tenant_id: str, webhook_id: str) -> Optional[Webhook]: ...

    @abstractmethod
    def list_by_tenant(self, tenant_id: str) -> List[Webhook]: ...

    @abstractmethod
    def delete(self, tenant_id: str, webhook_id: str) -> None: ...

    @abstractmethod
    def update_fields(self, tenant_id: str, webhook_id: str, fields: Dict[str, Any]) -> Optional[Webhook]:
        """Set only the given attributes. Returns the updated webhook, or None if it no longer exists."""

    @abstractmethod
    def record_success(self, tenant_id: str, webhook_id: str, at: datetime) -> Optional[Webhook]:
        """Reset failure_count. Returns None if the webhook no longer exists."""

    @abstractmethod
    def record_failure(self, tenant_id: str, webhook_id: str, at: datetime, max_failures: int) -> Optional[Webhook]:
        """
        Increment failure_count; deactivate once it reaches max_failures.
        Returns the updated webhook, or None if it was deleted meanwhile.
        """


class WebhookEventStore(ABC):
    @abstractmethod
    def put(self, event: WebhookEvent) -> None: ...

    @abstractmethod
    def get(self, event_id: str) -> Optional[WebhookEvent]: ...

    @abstractmethod
    def list_by_webhook(self, webhook_id: str) -> List[WebhookEvent]: ...


class RateLimitStore(ABC):
    @abstractmethod
    def increment(self, api_key_id: str, buckets: Dict[str, int]) -> None:
        """Atomically add one to each bucket. Values are TTLs in seconds."""

    @abstractmethod
    def get_counts(self, api_key_id: str, buckets: List[str]) -> Dict[str, int]: ...

    @abstractmethod
    def get_limits(self, api_key_id: str) -> Optional[RateLimits]: ...

    @abstractmethod
    def put_limits(self, api_key_id: str, tenant_id: str, limits: RateLimits) -> None: ...


class UsageStore(ABC):
    @abstractmethod
    def append(self, record: UsageRecord) -> None: ...

    @abstractmethod
    def list_for_key(self, api_key_id: str, limit: int = 100) -> List[UsageRecord]: ...


class TenantStore(ABC):
    @abstractmethod
    def put(self, tenant: Tenant) -> None: ...

    @abstractmethod
    def get(self, tenant_id: str) -> Optional[Tenant]: ...


class AuditStore(ABC):
    @abstractmethod
    def put(self, entry: AuditEntry, expires_at: int) -> None: ...

    @abstractmethod
    def list_by_tenant(self, tenant_id: str, limit: int = 50) -> List[AuditEntry]: ...
