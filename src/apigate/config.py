"""
apigate configuration, read from environment variables.
"""

import os
from typing import Optional


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).lower() in ("1", "true", "yes")


class Settings:
    def __init__(self):
        self.region_name = os.environ.get("AWS_REGION", "us-east-1")
        self.environment = os.environ.get("ENVIRONMENT", "development")

        # "dynamodb" or "memory"
        self.store_backend = os.environ.get("APIGATE_STORE", "dynamodb")

        # Tables
        self.api_keys_table = os.environ.get("API_KEYS_TABLE", "apigate-api-keys-prod")
        self.oauth_clients_table = os.environ.get("OAUTH_CLIENTS_TABLE", "apigate-oauth-clients-prod")
        self.oauth_codes_table = os.environ.get("OAUTH_CODES_TABLE", "apigate-oauth-codes-prod")
        self.oauth_tokens_table = os.environ.get("OAUTH_TOKENS_TABLE", "apigate-oauth-tokens-prod")
        self.webhooks_table = os.environ.get("WEBHOOKS_TABLE", "apigate-webhooks-prod")
        self.webhook_events_table = os.environ.get("WEBHOOK_EVENTS_TABLE", "apigate-webhook-events-prod")
        self.rate_limits_table = os.environ.get("RATE_LIMITS_TABLE", "apigate-rate-limits-prod")
        self.usage_table = os.environ.get("USAGE_TABLE", "apigate-usage-prod")
        self.tenants_table = os.environ.get("TENANTS_TABLE", "apigate-tenants-prod")
        self.audit_table = os.environ.get("AUDIT_TABLE", "apigate-audit-prod")
        self.audit_retention_days = _env_int("AUDIT_RETENTION_DAYS", 90)

        # Signing secrets: a Secrets Manager id wins over the plain value
        self.api_jwt_secret = os.environ.get("API_JWT_SECRET", "")
        self.api_jwt_secret_id: Optional[str] = os.environ.get("API_JWT_SECRET_ID")
        self.oauth_jwt_secret = os.environ.get("OAUTH_JWT_SECRET", "") or self.api_jwt_secret
        self.oauth_jwt_secret_id: Optional[str] = os.environ.get("OAUTH_JWT_SECRET_ID")
        self.jwt_algorithm = "HS256"
        self.token_ttl_seconds = _env_int("API_TOKEN_TTL_SECONDS", 3600)

        # OAuth
        self.oauth_consent_url = os.environ.get(
            "OAUTH_CONSENT_URL", "https://developer.example.com/oauth/consent"
        )

        # Rate limits
        self.rate_limit_per_minute = _env_int("RATE_LIMIT_PER_MINUTE", 60)
        self.rate_limit_per_hour = _env_int("RATE_LIMIT_PER_HOUR", 1000)
        self.rate_limit_per_day = _env_int("RATE_LIMIT_PER_DAY", 10000)

        # Webhooks
        self.webhook_queue_url: Optional[str] = os.environ.get("WEBHOOK_QUEUE_URL")
        self.webhook_timeout_seconds = float(os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "10"))
        self.webhook_max_failures = _env_int("WEBHOOK_MAX_FAILURES", 5)
        self.webhook_workers = _env_int("WEBHOOK_WORKERS", 4)

        # Versioning / docs
        self.current_api_version = os.environ.get("API_VERSION", "v1")
        self.deprecation_docs_url = os.environ.get(
            "DEPRECATION_DOCS_URL", "https://developer.example.com/docs/deprecations"
        )

        # Logging
        self.log_level = os.environ.get("LOG_LEVEL", "INFO")
        self.log_json = _env_bool("LOG_JSON")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"
