"""
OAuth 2.0 authorization server: authorization-code grant with refresh token rotation.

Flow per client: code issued -> exchanged for access+refresh pair -> refreshed
any number of times (each refresh revokes the consumed refresh token) -> revoked.
"""

import hmac
import secrets
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional
from urllib.parse import urlparse

import ulid
from loguru import logger

from apigate.errors import (
    ClientIdMismatch,
    ClientInactive,
    ClientNotFound,
    CodeAlreadyUsed,
    CodeExpired,
    ConditionFailed,
    InvalidClientSecret,
    InvalidCode,
    InvalidPermissions,
    InvalidRedirectUri,
    InvalidRefreshToken,
    OAuthClientNotFound,
    RedirectUriMismatch,
    RefreshTokenExpired,
    RefreshTokenRevoked,
    ScopeNotAllowed,
    ValidationError,
)
from apigate.models import (
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
    TokenPayload,
    normalize_permissions,
    utc_now,
)
from apigate.services.audit import AuditService
from apigate.services.tokens import TokenCodec
from apigate.stores import AuthorizationCodeStore, OAuthClientStore, OAuthTokenStore

CODE_TTL = timedelta(minutes=10)
REFRESH_TOKEN_TTL = timedelta(days=30)
CLIENT_ID_PREFIX = "apigate_"


def is_valid_redirect_uri(uri: str) -> bool:
    try:
        parsed = urlparse(uri)
    except ValueError:
        return False
    if not parsed.netloc:
        return False
    if parsed.scheme == "https":
        return True
    return parsed.scheme == "http" and parsed.hostname == "localhost"


def parse_scope(scope: Optional[str]) -> List[str]:
    """Split an OAuth space-separated scope string."""
    return [s for s in (scope or "").split(" ") if s]


class OAuthService:
    def __init__(
        self,
        clients: OAuthClientStore,
        codes: AuthorizationCodeStore,
        tokens: OAuthTokenStore,
        codec: TokenCodec,
        audit: AuditService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.clients = clients
        self.codes = codes
        self.tokens = tokens
        self.codec = codec
        self.audit = audit
        self.clock = clock

    # Clients

    def register_client(
        self,
        tenant_id: str,
        name: str,
        redirect_uris: Iterable[str],
        allowed_scopes: Iterable[str],
        created_by: str,
        description: Optional[str] = None,
    ) -> OAuthClient:
        redirect_uris = self._validate_redirect_uris(redirect_uris)
        allowed_scopes = self._validate_scopes(allowed_scopes)
        if not name or not name.strip():
            raise ValidationError("Client name is required")

        now = self.clock()
        client = OAuthClient(
            id=str(ulid.new()),
            tenant_id=tenant_id,
            client_id=f"{CLIENT_ID_PREFIX}{secrets.token_hex(24)}",
            client_secret=secrets.token_hex(64),
            name=name.strip(),
            description=description,
            redirect_uris=redirect_uris,
            allowed_scopes=allowed_scopes,
            active=True,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.clients.put(client)
        self.audit.log_action(tenant_id, "REGISTER_OAUTH_CLIENT", client.client_id, metadata={"name": client.name})
        logger.info(f"Registered OAuth client {client.client_id} for tenant {tenant_id}")
        return client

    def get_client(self, client_id: str, tenant_id: str) -> OAuthClient:
        client = self.clients.get(tenant_id, client_id)
        if client is None:
            raise OAuthClientNotFound()
        return client

    def list_clients(self, tenant_id: str) -> List[OAuthClient]:
        return sorted(self.clients.list_by_tenant(tenant_id), key=lambda c: c.created_at)

    def update_client(
        self,
        client_id: str,
        tenant_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        redirect_uris: Optional[Iterable[str]] = None,
        allowed_scopes: Optional[Iterable[str]] = None,
        active: Optional[bool] = None,
    ) -> OAuthClient:
        client = self.get_client(client_id, tenant_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Client name is required")
            client.name = name.strip()
        if description is not None:
            client.description = description
        if redirect_uris is not None:
            client.redirect_uris = self._validate_redirect_uris(redirect_uris)
        if allowed_scopes is not None:
            client.allowed_scopes = self._validate_scopes(allowed_scopes)
        if active is not None:
            client.active = active
        client.updated_at = self.clock()

        self.clients.put(client)
        self.audit.log_action(tenant_id, "UPDATE_OAUTH_CLIENT", client_id)
        return client

    def delete_client(self, client_id: str, tenant_id: str) -> None:
        self.get_client(client_id, tenant_id)
        self.clients.delete(tenant_id, client_id)
        self.audit.log_action(tenant_id, "DELETE_OAUTH_CLIENT", client_id)

    # Authorization code grant

    def generate_authorization_code(
        self,
        client_id: str,
        tenant_id: str,
        user_id: str,
        scopes: Iterable[str],
        redirect_uri: str,
    ) -> AuthorizationCode:
        client = self.validate_authorization_request(client_id, tenant_id, scopes, redirect_uri)

        auth_code = AuthorizationCode(
            code=secrets.token_hex(32),
            client_id=client.client_id,
            tenant_id=tenant_id,
            user_id=user_id,
            scopes=list(scopes),
            redirect_uri=redirect_uri,
            expires_at=self.clock() + CODE_TTL,
            used=False,
        )
        self.codes.put(auth_code)
        return auth_code

    def validate_authorization_request(
        self,
        client_id: str,
        tenant_id: str,
        scopes: Iterable[str],
        redirect_uri: str,
    ) -> OAuthClient:
        """Checks an /authorize request without issuing anything."""
        client = self.clients.get(tenant_id, client_id)
        if client is None:
            raise ClientNotFound()
        if not client.active:
            raise ClientInactive()
        if redirect_uri not in client.redirect_uris:
            raise RedirectUriMismatch()

        scopes = list(scopes)
        for scope in scopes:
            if scope not in client.allowed_scopes:
                raise ScopeNotAllowed(f"Scope not allowed: {scope}")
        if not scopes:
            raise ValidationError("At least one scope is required")
        return client

    def exchange_authorization_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> AccessToken:
        auth_code = self.codes.get(code)
        if auth_code is None:
            raise InvalidCode()
        if auth_code.used:
            raise CodeAlreadyUsed()
        if self.clock() >= auth_code.expires_at:
            raise CodeExpired()
        if auth_code.client_id != client_id:
            raise ClientIdMismatch()
        if auth_code.redirect_uri != redirect_uri:
            raise RedirectUriMismatch()
        self._authenticate_client(client_id, auth_code.tenant_id, client_secret)

        try:
            self.codes.mark_used(code)
        except ConditionFailed as e:
            logger.warning(f"Authorization code for client {client_id} lost a concurrent exchange")
            raise CodeAlreadyUsed() from e

        return self._issue_tokens(client_id, auth_code.tenant_id, auth_code.user_id, auth_code.scopes)

    def refresh_access_token(self, refresh_token: str, client_id: str, client_secret: str) -> AccessToken:
        record = self.tokens.get_refresh_token(refresh_token)
        if record is None:
            raise InvalidRefreshToken()
        if record.revoked:
            raise RefreshTokenRevoked()
        if self.clock() >= record.expires_at:
            raise RefreshTokenExpired()
        if record.client_id != client_id:
            raise ClientIdMismatch()
        self._authenticate_client(client_id, record.tenant_id, client_secret)

        # Rotation: the consumed token is revoked before its successor exists
        try:
            self.tokens.revoke_refresh_token(refresh_token)
        except ConditionFailed as e:
            raise RefreshTokenRevoked() from e

        return self._issue_tokens(client_id, record.tenant_id, record.user_id, record.scopes)

    def revoke_refresh_token(self, token: str) -> bool:
        """Idempotent. Returns True if the token exists (revoked now or before)."""
        record = self.tokens.get_refresh_token(token)
        if record is None:
            return False
        if not record.revoked:
            try:
                self.tokens.revoke_refresh_token(token)
            except ConditionFailed:
                pass  # revoked concurrently
            self.audit.log_action(record.tenant_id, "REVOKE_REFRESH_TOKEN", record.client_id)
        return True

    def verify_access_token(self, token: str) -> TokenPayload:
        return self.codec.decode(token)

    # Helpers

    def _authenticate_client(self, client_id: str, tenant_id: str, client_secret: str) -> OAuthClient:
        client = self.clients.get(tenant_id, client_id)
        if client is None:
            raise ClientNotFound()
        if not client.active:
            raise ClientInactive()
        if not hmac.compare_digest(client.client_secret.encode(), (client_secret or "").encode()):
            raise InvalidClientSecret()
        return client

    def _issue_tokens(self, client_id: str, tenant_id: str, user_id: str, scopes: List[str]) -> AccessToken:
        now = self.clock()
        issued = self.codec.encode(client_id, tenant_id, scopes)

        refresh = RefreshToken(
            token=secrets.token_hex(64),
            client_id=client_id,
            tenant_id=tenant_id,
            user_id=user_id,
            scopes=scopes,
            expires_at=now + REFRESH_TOKEN_TTL,
            revoked=False,
        )
        access = AccessToken(
            token=issued.token,
            client_id=client_id,
            tenant_id=tenant_id,
            user_id=user_id,
            scopes=scopes,
            expires_at=issued.expires_at,
            refresh_token=refresh.token,
        )
        self.tokens.put_access_token(access)
        self.tokens.put_refresh_token(refresh)
        return access

    def _validate_redirect_uris(self, redirect_uris: Iterable[str]) -> List[str]:
        redirect_uris = list(redirect_uris)
        if not redirect_uris:
            raise InvalidRedirectUri("At least one redirect URI is required")
        for uri in redirect_uris:
            if not is_valid_redirect_uri(uri):
                raise InvalidRedirectUri(f"Invalid redirect URI: {uri}")
        return redirect_uris

    def _validate_scopes(self, scopes: Iterable[str]) -> List[str]:
        try:
            scopes = normalize_permissions(scopes)
        except ValueError as e:
            raise InvalidPermissions(str(e)) from e
        if not scopes:
            raise ValidationError("At least one allowed scope is required")
        return scopes
