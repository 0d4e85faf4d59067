from .common import Permission, normalize_permissions, utc_now
from .tenant import Tenant, TenantStatus
from .audit import AuditEntry
from .api_key import ApiKey, ApiKeyCreated, ApiKeyStatus
from .token import TokenPayload, IssuedToken, API_KEY_ISSUER, OAUTH_ISSUER
from .oauth import OAuthClient, AuthorizationCode, AccessToken, RefreshToken
from .webhook import Webhook, WebhookEvent, WebhookEventStatus
from .usage import RateLimits, UsageRecord
from .version import VersionedEndpoint

__all__ = [
    "Permission", "normalize_permissions", "utc_now",
    "Tenant", "TenantStatus", "AuditEntry",
    "ApiKey", "ApiKeyCreated", "ApiKeyStatus",
    "TokenPayload", "IssuedToken", "API_KEY_ISSUER", "OAUTH_ISSUER",
    "OAuthClient", "AuthorizationCode", "AccessToken", "RefreshToken",
    "Webhook", "WebhookEvent", "WebhookEventStatus",
    "RateLimits", "UsageRecord",
    "VersionedEndpoint",
]
