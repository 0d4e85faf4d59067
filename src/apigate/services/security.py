"""
Single gate in front of business logic: bearer extraction, token verification,
tenant isolation, permission and CORS checks.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional
from urllib.parse import urlparse

from loguru import logger

from apigate.errors import ApiError, InvalidToken
from apigate.models import API_KEY_ISSUER, OAUTH_ISSUER, TokenPayload
from apigate.services.auth import ApiAuthService
from apigate.services.oauth import OAuthService
from apigate.services.tokens import peek_issuer
from apigate.stores import TenantStore

BEARER_PREFIX = "Bearer "


@dataclass
class ValidationResult:
    is_valid: bool
    token_payload: Optional[TokenPayload] = None
    error: Optional[str] = None
    status_code: int = 200


def origin_matches(origin: str, allowed: str) -> bool:
    """Exact origin match, or a *.domain pattern (optionally with a scheme) matching the origin host."""
    if origin == allowed:
        return True
    if "*." not in allowed:
        return False

    scheme, _, pattern = allowed.rpartition("://")
    if not pattern.startswith("*."):
        return False
    domain = pattern[2:].lower()

    parsed = urlparse(origin)
    host = (parsed.hostname or "").lower()
    if not host or (scheme and parsed.scheme != scheme):
        return False
    return host.endswith("." + domain)


class SecurityValidator:
    def __init__(self, auth: ApiAuthService, oauth: OAuthService, tenants: TenantStore):
        self.tenants = tenants
        self._verifiers: Dict[str, Callable[[str], TokenPayload]] = {
            API_KEY_ISSUER: auth.verify_token,
            OAUTH_ISSUER: oauth.verify_access_token,
        }

    def verify(self, token: str) -> TokenPayload:
        """Verify with the codec named by the token's issuer claim."""
        issuer = peek_issuer(token)
        verifier = self._verifiers.get(issuer)
        if verifier is None:
            raise InvalidToken("Unknown token issuer")
        return verifier(token)

    def validate_auth_header(self, header: Optional[str]) -> Optional[TokenPayload]:
        """Returns None for any authentication failure; callers answer 401."""
        if not header or not header.startswith(BEARER_PREFIX):
            return None
        token = header[len(BEARER_PREFIX):]
        if not token:
            return None
        try:
            return self.verify(token)
        except ApiError as e:
            logger.debug(f"Bearer token rejected: {e.message}")
            return None

    def validate_tenant_isolation(self, payload: TokenPayload, tenant_id: str) -> bool:
        return payload.tenant_id == tenant_id

    def validate_permissions(self, payload: TokenPayload, required: Iterable[str]) -> bool:
        granted = set(payload.permissions)
        return all(permission in granted for permission in required)

    def validate_request(self, header: Optional[str], tenant_id: str, required: Iterable[str] = ()) -> ValidationResult:
        payload = self.validate_auth_header(header)
        if payload is None:
            return ValidationResult(False, error="unauthorized", status_code=401)
        if not self.validate_tenant_isolation(payload, tenant_id):
            logger.warning(f"Token for tenant {payload.tenant_id} presented to tenant {tenant_id}")
            return ValidationResult(False, error="unauthorized", status_code=401)
        if not self.validate_permissions(payload, required):
            return ValidationResult(False, token_payload=payload, error="forbidden", status_code=403)
        return ValidationResult(True, token_payload=payload)

    def validate_cors_origin(self, origin: Optional[str], tenant_id: str) -> bool:
        if not origin or origin == "null":
            return False
        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            return False
        return any(origin_matches(origin, allowed) for allowed in tenant.allowed_origins)
