from .base import (
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

__all__ = [
    "ApiKeyStore", "AuditStore", "AuthorizationCodeStore", "OAuthClientStore",
    "OAuthTokenStore", "RateLimitStore", "TenantStore", "UsageStore",
    "WebhookEventStore", "WebhookStore",
]
