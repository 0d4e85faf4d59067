"""
Composition root. Builds every store and service explicitly from Settings;
handlers take an optional Container so tests can inject their own.
"""

import atexit
import secrets
from dataclasses import dataclass
from typing import Optional

import boto3
from loguru import logger

from apigate.config import Settings
from apigate.logging_config import configure_logging
from apigate.models import API_KEY_ISSUER, OAUTH_ISSUER, RateLimits
from apigate.secrets import SecretsManager
from apigate.services import (
    ApiAuthService,
    ApiVersionService,
    AuditService,
    OAuthService,
    OpenApiGenerator,
    RateLimitService,
    SecurityValidator,
    TokenCodec,
    WebhookService,
)
from apigate.stores import TenantStore
from apigate.stores import dynamodb as dynamo_stores
from apigate.stores import memory as memory_stores
from apigate.worker import Dispatcher, SqsDispatcher, ThreadPoolDispatcher, WebhookSender


@dataclass
class Container:
    settings: Settings
    tenants: TenantStore
    audit: AuditService
    auth: ApiAuthService
    oauth: OAuthService
    security: SecurityValidator
    rate_limits: RateLimitService
    webhooks: WebhookService
    versions: ApiVersionService
    openapi: OpenApiGenerator
    dispatcher: Dispatcher

    def close(self) -> None:
        """Let in-process webhook deliveries finish and release the dispatcher."""
        self.dispatcher.close()


def _memory_stores(settings: Settings) -> dict:
    return {
        "api_keys": memory_stores.MemoryApiKeyStore(),
        "oauth_clients": memory_stores.MemoryOAuthClientStore(),
        "oauth_codes": memory_stores.MemoryAuthorizationCodeStore(),
        "oauth_tokens": memory_stores.MemoryOAuthTokenStore(),
        "webhooks": memory_stores.MemoryWebhookStore(),
        "webhook_events": memory_stores.MemoryWebhookEventStore(),
        "rate_limits": memory_stores.MemoryRateLimitStore(),
        "usage": memory_stores.MemoryUsageStore(),
        "tenants": memory_stores.MemoryTenantStore(),
        "audit": memory_stores.MemoryAuditStore(),
    }


def _dynamodb_stores(settings: Settings) -> dict:
    dynamodb = boto3.resource("dynamodb", region_name=settings.region_name)

    def table(cls, name):
        return cls(name, region_name=settings.region_name, dynamodb=dynamodb)

    return {
        "api_keys": table(dynamo_stores.DynamoApiKeyStore, settings.api_keys_table),
        "oauth_clients": table(dynamo_stores.DynamoOAuthClientStore, settings.oauth_clients_table),
        "oauth_codes": table(dynamo_stores.DynamoAuthorizationCodeStore, settings.oauth_codes_table),
        "oauth_tokens": table(dynamo_stores.DynamoOAuthTokenStore, settings.oauth_tokens_table),
        "webhooks": table(dynamo_stores.DynamoWebhookStore, settings.webhooks_table),
        "webhook_events": table(dynamo_stores.DynamoWebhookEventStore, settings.webhook_events_table),
        "rate_limits": table(dynamo_stores.DynamoRateLimitStore, settings.rate_limits_table),
        "usage": table(dynamo_stores.DynamoUsageStore, settings.usage_table),
        "tenants": table(dynamo_stores.DynamoTenantStore, settings.tenants_table),
        "audit": table(dynamo_stores.DynamoAuditStore, settings.audit_table),
    }


def resolve_secret(settings: Settings, name: str, value: str, secret_id: Optional[str],
                   secrets_manager: Optional[SecretsManager] = None) -> str:
    """Secrets Manager id first, then the plain environment value."""
    if secret_id:
        manager = secrets_manager or SecretsManager(region_name=settings.region_name)
        return manager.get_secret(secret_id)
    if value:
        return value
    if settings.is_production:
        raise RuntimeError(f"{name} is not configured")
    logger.warning(f"{name} not configured; using an ephemeral secret, tokens will not survive a restart")
    return secrets.token_hex(32)


def build_container(settings: Optional[Settings] = None,
                    secrets_manager: Optional[SecretsManager] = None,
                    sender: Optional[WebhookSender] = None,
                    dispatcher: Optional[Dispatcher] = None) -> Container:
    settings = settings or Settings()

    if settings.store_backend == "memory":
        stores = _memory_stores(settings)
    elif settings.store_backend == "dynamodb":
        stores = _dynamodb_stores(settings)
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend}")

    api_secret = resolve_secret(settings, "API_JWT_SECRET", settings.api_jwt_secret,
                                settings.api_jwt_secret_id, secrets_manager)
    if settings.oauth_jwt_secret_id or settings.oauth_jwt_secret:
        oauth_secret = resolve_secret(settings, "OAUTH_JWT_SECRET", settings.oauth_jwt_secret,
                                      settings.oauth_jwt_secret_id, secrets_manager)
    else:
        oauth_secret = api_secret

    api_codec = TokenCodec(api_secret, API_KEY_ISSUER, settings.token_ttl_seconds, settings.jwt_algorithm)
    oauth_codec = TokenCodec(oauth_secret, OAUTH_ISSUER, settings.token_ttl_seconds, settings.jwt_algorithm)

    audit = AuditService(stores["audit"], retention_days=settings.audit_retention_days)
    auth = ApiAuthService(stores["api_keys"], api_codec, audit)
    oauth = OAuthService(stores["oauth_clients"], stores["oauth_codes"], stores["oauth_tokens"], oauth_codec, audit)
    security = SecurityValidator(auth, oauth, stores["tenants"])
    rate_limits = RateLimitService(
        stores["rate_limits"],
        stores["usage"],
        default_limits=RateLimits(
            per_minute=settings.rate_limit_per_minute,
            per_hour=settings.rate_limit_per_hour,
            per_day=settings.rate_limit_per_day,
        ),
    )

    if dispatcher is None:
        if settings.webhook_queue_url:
            dispatcher = SqsDispatcher(settings.webhook_queue_url, region_name=settings.region_name)
        else:
            dispatcher = ThreadPoolDispatcher(max_workers=settings.webhook_workers)
    webhooks = WebhookService(
        stores["webhooks"],
        stores["webhook_events"],
        sender or WebhookSender(timeout=settings.webhook_timeout_seconds),
        dispatcher,
        audit,
        max_failures=settings.webhook_max_failures,
    )

    versions = ApiVersionService(settings.current_api_version, settings.deprecation_docs_url)

    return Container(
        settings=settings,
        tenants=stores["tenants"],
        audit=audit,
        auth=auth,
        oauth=oauth,
        security=security,
        rate_limits=rate_limits,
        webhooks=webhooks,
        versions=versions,
        openapi=OpenApiGenerator(versions),
        dispatcher=dispatcher,
    )


_container: Optional[Container] = None


def get_container() -> Container:
    """Lazily built per process and reused across warm Lambda invocations."""
    global _container
    if _container is None:
        settings = Settings()
        configure_logging(settings)
        _container = build_container(settings)
        atexit.register(_container.close)
    return _container


def set_container(container: Optional[Container]) -> None:
    global _container
    _container = container
