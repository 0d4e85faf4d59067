from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from loguru import logger

from apigate.models import VersionedEndpoint

DEFAULT_ENDPOINTS = (
    "/api/developer/auth/{tenantId}",
    "/api/developer/keys/{tenantId}",
    "/api/developer/keys/{tenantId}/{keyId}",
    "/api/developer/keys/{tenantId}/{keyId}/limits",
    "/api/developer/keys/{tenantId}/{keyId}/usage",
    "/api/developer/oauth/{tenantId}/clients",
    "/api/developer/oauth/{tenantId}/clients/{clientId}",
    "/api/developer/oauth/{tenantId}/authorize",
    "/api/developer/oauth/{tenantId}/token",
    "/api/developer/webhooks/{tenantId}/{apiKeyId}",
    "/api/developer/webhooks/{tenantId}/{apiKeyId}/{webhookId}",
    "/api/developer/tenants",
    "/api/developer/tenants/{tenantId}",
    "/api/developer/tenants/{tenantId}/audit",
    "/api/developer/docs",
)


def format_http_date(value: datetime) -> str:
    """2025-01-01T00:00:00.000Z; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return f"{value.strftime('%Y-%m-%dT%H:%M:%S')}.{value.microsecond // 1000:03d}Z"


class ApiVersionService:
    """Registry of endpoint versions and deprecations. Deprecation mutates entries in place."""

    def __init__(
        self,
        current_version: str = "v1",
        docs_url: str = "https://developer.example.com/docs/deprecations",
        endpoints: Iterable[str] = DEFAULT_ENDPOINTS,
    ):
        self.current_version = current_version
        self.docs_url = docs_url
        self._endpoints: Dict[str, VersionedEndpoint] = {}
        for path in endpoints:
            self.register_endpoint(path, current_version)

    def register_endpoint(self, path: str, version: Optional[str] = None) -> VersionedEndpoint:
        endpoint = VersionedEndpoint(path=path, version=version or self.current_version)
        self._endpoints[path] = endpoint
        return endpoint

    def get_endpoint(self, path: str) -> Optional[VersionedEndpoint]:
        return self._endpoints.get(path)

    def supported_versions(self) -> List[str]:
        return sorted({e.version for e in self._endpoints.values()} | {self.current_version})

    def is_supported_version(self, version: str) -> bool:
        return version in self.supported_versions()

    def get_endpoints_for_version(self, version: str) -> List[VersionedEndpoint]:
        return [e for e in self._endpoints.values() if e.version == version]

    def deprecate_endpoint(
        self,
        path: str,
        deprecation_date: datetime,
        sunset_date: Optional[datetime] = None,
    ) -> VersionedEndpoint:
        endpoint = self.get_endpoint(path) or self.register_endpoint(path)
        endpoint.deprecated = True
        endpoint.deprecation_date = deprecation_date
        endpoint.sunset_date = sunset_date
        logger.info(f"Endpoint {path} deprecated as of {format_http_date(deprecation_date)}")
        return endpoint

    def get_version_headers(self, path: str) -> Dict[str, str]:
        endpoint = self.get_endpoint(path)
        headers = {"X-API-Version": endpoint.version if endpoint else self.current_version}
        if endpoint is None or not endpoint.deprecated:
            return headers

        headers["Deprecation"] = (
            format_http_date(endpoint.deprecation_date) if endpoint.deprecation_date else "true"
        )
        if endpoint.sunset_date:
            headers["Sunset"] = format_http_date(endpoint.sunset_date)
        headers["Link"] = f'<{self.docs_url}>; rel="deprecation"'
        return headers
