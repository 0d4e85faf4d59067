import hashlib
import hmac
import secrets
from datetime import datetime
from typing import Callable, Iterable, List

import ulid
from loguru import logger

from apigate.errors import ApiKeyNotFound, InvalidKey, InvalidPermissions, KeyNotActive, ValidationError
from apigate.models import (
    ApiKey,
    ApiKeyCreated,
    ApiKeyStatus,
    IssuedToken,
    TokenPayload,
    normalize_permissions,
    utc_now,
)
from apigate.services.audit import AuditService
from apigate.services.tokens import TokenCodec
from apigate.stores import ApiKeyStore

KEY_PREFIX = "ak_"
SECRET_PREFIX = "sk_"


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()


class ApiAuthService:
    """API key issuance and key+secret authentication."""

    def __init__(
        self,
        store: ApiKeyStore,
        codec: TokenCodec,
        audit: AuditService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.codec = codec
        self.audit = audit
        self.clock = clock

    def generate_api_key(self, tenant_id: str, name: str, permissions: Iterable[str], created_by: str) -> ApiKeyCreated:
        if not name or not name.strip():
            raise ValidationError("API key name is required")
        try:
            permissions = normalize_permissions(permissions)
        except ValueError as e:
            raise InvalidPermissions(str(e)) from e

        raw_secret = f"{SECRET_PREFIX}{secrets.token_hex(64)}"
        now = self.clock()
        api_key = ApiKey(
            id=str(ulid.new()),
            tenant_id=tenant_id,
            name=name.strip(),
            key=f"{KEY_PREFIX}{secrets.token_hex(32)}",
            secret_hash=hash_secret(raw_secret),
            permissions=permissions,
            status=ApiKeyStatus.ACTIVE,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.store.put(api_key)
        self.audit.log_action(tenant_id, "GENERATE_KEY", api_key.id, metadata={"name": api_key.name})
        logger.info(f"Generated API key {api_key.id} for tenant {tenant_id}")
        return ApiKeyCreated(api_key=api_key, secret=raw_secret)

    def authenticate(self, api_key: str, api_secret: str, tenant_id: str) -> IssuedToken:
        record = self.store.find_by_key(api_key, tenant_id)
        if record is None:
            raise InvalidKey()
        if record.status != ApiKeyStatus.ACTIVE:
            raise KeyNotActive()
        if not hmac.compare_digest(hash_secret(api_secret), record.secret_hash):
            raise InvalidKey()

        issued = self.codec.encode(record.id, record.tenant_id, record.permissions)
        self.store.touch(record.tenant_id, record.id, self.clock())
        return issued

    def verify_token(self, token: str) -> TokenPayload:
        return self.codec.decode(token)

    def revoke_api_key(self, key_id: str, tenant_id: str) -> ApiKey:
        record = self.store.get(tenant_id, key_id)
        if record is None:
            raise ApiKeyNotFound()
        if record.status == ApiKeyStatus.REVOKED:
            return record

        now = self.clock()
        self.store.set_status(tenant_id, key_id, ApiKeyStatus.REVOKED, now)
        self.audit.log_action(tenant_id, "REVOKE_KEY", key_id)
        record.status = ApiKeyStatus.REVOKED
        record.updated_at = now
        return record

    def get_api_key(self, key_id: str, tenant_id: str) -> ApiKey:
        record = self.store.get(tenant_id, key_id)
        if record is None:
            raise ApiKeyNotFound()
        return record

    def list_api_keys(self, tenant_id: str) -> List[ApiKey]:
        return sorted(self.store.list_by_tenant(tenant_id), key=lambda k: k.created_at)
