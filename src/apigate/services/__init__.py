from .audit import AuditService
from .tokens import TokenCodec
from .auth import ApiAuthService
from .oauth import OAuthService
from .security import SecurityValidator, ValidationResult
from .rate_limit import RateLimitService
from .webhooks import WebhookService, sign_payload, verify_signature
from .versions import ApiVersionService
from .openapi import OpenApiGenerator

__all__ = [
    "AuditService", "TokenCodec", "ApiAuthService", "OAuthService",
    "SecurityValidator", "ValidationResult", "RateLimitService",
    "WebhookService", "sign_payload", "verify_signature",
    "ApiVersionService", "OpenApiGenerator",
]
