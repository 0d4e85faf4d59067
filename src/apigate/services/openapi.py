"""
OpenAPI 3.0.3 document for the developer API, built from the version registry.
"""

from typing import Any, Dict, List, Optional

from apigate.errors import UnsupportedVersion
from apigate.models import Permission
from apigate.services.versions import ApiVersionService

DEFAULT_INFO = {
    "title": "Developer API",
    "description": "API keys, OAuth 2.0 and webhooks for platform integrations",
    "contact": {"name": "API Support", "url": "https://developer.example.com/support"},
    "license": {"name": "Proprietary"},
}

DEFAULT_SERVERS = [
    {"url": "https://api.example.com", "description": "Production API server"},
    {"url": "https://api.sandbox.example.com", "description": "Sandbox API server"},
]

TAGS = [
    {"name": "Authentication", "description": "API key authentication endpoints"},
    {"name": "API Keys", "description": "API key management endpoints"},
    {"name": "OAuth", "description": "OAuth 2.0 authentication endpoints"},
    {"name": "Webhooks", "description": "Webhook management endpoints"},
    {"name": "Tenants", "description": "Tenant administration endpoints"},
    {"name": "Documentation", "description": "API documentation"},
]


def _ref(name: str) -> Dict[str, str]:
    return {"$ref": f"#/components/schemas/{name}"}


def _json(schema: Dict[str, Any]) -> Dict[str, Any]:
    return {"application/json": {"schema": schema}}


def _path_param(name: str) -> Dict[str, Any]:
    return {"name": name, "in": "path", "required": True, "schema": {"type": "string"}}


def _query_param(name: str, required: bool = True, description: str = "", **schema) -> Dict[str, Any]:
    return {
        "name": name,
        "in": "query",
        "required": required,
        "schema": {"type": "string", **schema},
        "description": description,
    }


def _response(description: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    response: Dict[str, Any] = {"description": description}
    if schema is not None:
        response["content"] = _json(schema)
    return response


def _errors(*codes: str, oauth: bool = False) -> Dict[str, Any]:
    names = {"400": "Bad request", "401": "Unauthorized", "403": "Forbidden",
             "404": "Not found", "429": "Rate limit exceeded"}
    schema = _ref("OAuthErrorResponse" if oauth else "ApiErrorResponse")
    return {code: _response(names[code], schema) for code in codes}


def _operation(tag: str, summary: str, operation_id: str, params: List[Dict[str, Any]],
               responses: Dict[str, Any], body: Optional[Dict[str, Any]] = None,
               secured: bool = True) -> Dict[str, Any]:
    operation: Dict[str, Any] = {
        "tags": [tag],
        "summary": summary,
        "operationId": operation_id,
        "parameters": params,
        "responses": responses,
        "security": [{"bearerAuth": []}] if secured else [],
    }
    if body is not None:
        operation["requestBody"] = {"required": True, "content": body}
    return operation


def _path_items() -> Dict[str, Dict[str, Any]]:
    tenant = _path_param("tenantId")
    list_of = lambda key, item: {"type": "object", "properties": {key: {"type": "array", "items": _ref(item)}}}

    return {
        "/api/developer/auth/{tenantId}": {
            "post": _operation(
                "Authentication", "Authenticate API credentials", "authenticateApiCredentials", [tenant],
                {"200": _response("Successful authentication", _ref("ApiAuthResponse")), **_errors("400", "401")},
                body=_json(_ref("ApiAuthRequest")), secured=False,
            ),
        },
        "/api/developer/keys/{tenantId}": {
            "get": _operation(
                "API Keys", "List API keys", "listApiKeys", [tenant],
                {"200": _response("Successful operation", list_of("keys", "ApiKey")), **_errors("401", "403")},
            ),
            "post": _operation(
                "API Keys", "Create API key", "createApiKey", [tenant],
                {"201": _response("API key created", _ref("ApiKey")), **_errors("400", "401", "403")},
                body=_json(_ref("ApiKeyCreateRequest")),
            ),
        },
        "/api/developer/keys/{tenantId}/{keyId}": {
            "delete": _operation(
                "API Keys", "Revoke API key", "revokeApiKey", [tenant, _path_param("keyId")],
                {"200": _response("API key revoked", _ref("ApiKey")), **_errors("401", "403", "404")},
            ),
        },
        "/api/developer/keys/{tenantId}/{keyId}/limits": {
            "put": _operation(
                "API Keys", "Update API key rate limits", "updateApiKeyLimits", [tenant, _path_param("keyId")],
                {"200": _response("Limits updated", _ref("RateLimits")), **_errors("400", "401", "403", "404")},
                body=_json(_ref("RateLimits")),
            ),
        },
        "/api/developer/keys/{tenantId}/{keyId}/usage": {
            "get": _operation(
                "API Keys", "Recent usage for an API key", "getApiKeyUsage",
                [tenant, _path_param("keyId"), _query_param("limit", required=False, description="Maximum records")],
                {"200": _response("Successful operation", list_of("usage", "UsageRecord")),
                 **_errors("401", "403", "404")},
            ),
        },
        "/api/developer/oauth/{tenantId}/clients": {
            "get": _operation(
                "OAuth", "List OAuth clients", "listOAuthClients", [tenant],
                {"200": _response("Successful operation", list_of("clients", "OAuthClient")), **_errors("401", "403")},
            ),
            "post": _operation(
                "OAuth", "Register OAuth client", "registerOAuthClient", [tenant],
                {"201": _response("Client registered", _ref("OAuthClient")), **_errors("400", "401", "403")},
                body=_json(_ref("OAuthClientCreateRequest")),
            ),
        },
        "/api/developer/oauth/{tenantId}/clients/{clientId}": {
            "patch": _operation(
                "OAuth", "Update OAuth client", "updateOAuthClient", [tenant, _path_param("clientId")],
                {"200": _response("Client updated", _ref("OAuthClient")), **_errors("400", "401", "403", "404")},
                body=_json(_ref("OAuthClientCreateRequest")),
            ),
            "delete": _operation(
                "OAuth", "Delete OAuth client", "deleteOAuthClient", [tenant, _path_param("clientId")],
                {"204": _response("Client deleted"), **_errors("401", "403", "404")},
            ),
        },
        "/api/developer/oauth/{tenantId}/authorize": {
            "get": _operation(
                "OAuth", "OAuth 2.0 authorization endpoint", "oauthAuthorize",
                [
                    tenant,
                    _query_param("client_id", description="The client ID"),
                    _query_param("redirect_uri", description="The redirect URI"),
                    _query_param("response_type", description="The response type", enum=["code"]),
                    _query_param("scope", description="Space-separated list of scopes"),
                    _query_param("state", required=False, description="State parameter for CSRF protection"),
                ],
                {
                    "302": {
                        "description": "Redirect to consent page or client callback",
                        "headers": {"Location": {"schema": {"type": "string"}, "description": "Redirect URL"}},
                    },
                    **_errors("400", oauth=True),
                },
                secured=False,
            ),
        },
        "/api/developer/oauth/{tenantId}/token": {
            "post": _operation(
                "OAuth", "OAuth 2.0 token endpoint", "oauthToken", [tenant],
                {"200": _response("Successful operation", _ref("OAuthTokenResponse")), **_errors("400", "401", oauth=True)},
                body={"application/x-www-form-urlencoded": {"schema": _ref("OAuthTokenRequest")}},
                secured=False,
            ),
        },
        "/api/developer/webhooks/{tenantId}/{apiKeyId}": {
            "get": _operation(
                "Webhooks", "List webhooks", "listWebhooks", [tenant, _path_param("apiKeyId")],
                {"200": _response("Successful operation", list_of("webhooks", "Webhook")), **_errors("401", "403")},
            ),
            "post": _operation(
                "Webhooks", "Create webhook", "createWebhook", [tenant, _path_param("apiKeyId")],
                {"201": _response("Webhook created", _ref("Webhook")), **_errors("400", "401", "403")},
                body=_json(_ref("WebhookCreateRequest")),
            ),
        },
        "/api/developer/webhooks/{tenantId}/{apiKeyId}/{webhookId}": {
            "patch": _operation(
                "Webhooks", "Update or re-enable webhook", "updateWebhook",
                [tenant, _path_param("apiKeyId"), _path_param("webhookId")],
                {"200": _response("Webhook updated", _ref("Webhook")), **_errors("400", "401", "403", "404")},
                body=_json(_ref("WebhookUpdateRequest")),
            ),
            "delete": _operation(
                "Webhooks", "Delete webhook", "deleteWebhook",
                [tenant, _path_param("apiKeyId"), _path_param("webhookId")],
                {"204": _response("Webhook deleted"), **_errors("401", "403", "404")},
            ),
        },
        "/api/developer/tenants": {
            "post": _operation(
                "Tenants", "Create tenant", "createTenant", [],
                {"201": _response("Tenant created", _ref("Tenant")), **_errors("400")},
                body=_json(_ref("Tenant")), secured=False,
            ),
        },
        "/api/developer/tenants/{tenantId}": {
            "get": _operation(
                "Tenants", "Get tenant", "getTenant", [tenant],
                {"200": _response("Successful operation", _ref("Tenant")), **_errors("404")},
                secured=False,
            ),
        },
        "/api/developer/tenants/{tenantId}/audit": {
            "get": _operation(
                "Tenants", "Tenant audit log", "getTenantAudit",
                [tenant, _query_param("limit", required=False, description="Maximum entries")],
                {"200": _response("Successful operation", list_of("entries", "AuditEntry")), **_errors("404")},
                secured=False,
            ),
        },
        "/api/developer/docs": {
            "get": _operation(
                "Documentation", "OpenAPI document", "getOpenApiSpec",
                [_query_param("version", required=False, description="API version")],
                {"200": _response("OpenAPI document", {"type": "object"}), **_errors("400")},
                secured=False,
            ),
        },
    }


def _components() -> Dict[str, Any]:
    permission = {"type": "string", "enum": [p.value for p in Permission]}
    date_time = {"type": "string", "format": "date-time"}
    string = {"type": "string"}

    return {
        "schemas": {
            "ApiKey": {
                "type": "object",
                "properties": {
                    "id": string, "tenant_id": string, "name": string, "key": string,
                    "secret": {"type": "string", "description": "Only returned when key is created"},
                    "permissions": {"type": "array", "items": permission},
                    "status": {"type": "string", "enum": ["active", "inactive", "revoked"]},
                    "created_by": string, "created_at": date_time, "updated_at": date_time,
                    "last_used_at": date_time,
                },
            },
            "ApiKeyCreateRequest": {
                "type": "object",
                "required": ["name", "permissions"],
                "properties": {"name": string, "permissions": {"type": "array", "items": permission}},
            },
            "ApiAuthRequest": {
                "type": "object",
                "required": ["apiKey", "apiSecret"],
                "properties": {"apiKey": string, "apiSecret": string},
            },
            "ApiAuthResponse": {
                "type": "object",
                "properties": {"token": string, "expiresAt": date_time},
            },
            "RateLimits": {
                "type": "object",
                "properties": {
                    "per_minute": {"type": "integer", "minimum": 1},
                    "per_hour": {"type": "integer", "minimum": 1},
                    "per_day": {"type": "integer", "minimum": 1},
                },
            },
            "OAuthClient": {
                "type": "object",
                "properties": {
                    "id": string, "tenant_id": string, "client_id": string,
                    "client_secret": {"type": "string", "description": "Only returned when client is registered"},
                    "name": string, "description": string,
                    "redirect_uris": {"type": "array", "items": string},
                    "allowed_scopes": {"type": "array", "items": permission},
                    "active": {"type": "boolean"}, "created_at": date_time, "updated_at": date_time,
                },
            },
            "OAuthClientCreateRequest": {
                "type": "object",
                "required": ["name", "redirect_uris", "allowed_scopes"],
                "properties": {
                    "name": string, "description": string,
                    "redirect_uris": {"type": "array", "items": string},
                    "allowed_scopes": {"type": "array", "items": permission},
                    "active": {"type": "boolean"},
                },
            },
            "OAuthTokenRequest": {
                "type": "object",
                "required": ["grant_type", "client_id", "client_secret"],
                "properties": {
                    "grant_type": {"type": "string", "enum": ["authorization_code", "refresh_token"]},
                    "client_id": string,
                    "client_secret": string,
                    "code": {"type": "string", "description": "Required for authorization_code grant type"},
                    "redirect_uri": {"type": "string", "description": "Required for authorization_code grant type"},
                    "refresh_token": {"type": "string", "description": "Required for refresh_token grant type"},
                },
            },
            "OAuthTokenResponse": {
                "type": "object",
                "properties": {
                    "access_token": string,
                    "token_type": {"type": "string", "enum": ["Bearer"]},
                    "expires_in": {"type": "integer"},
                    "refresh_token": string,
                    "scope": string,
                },
            },
            "OAuthErrorResponse": {
                "type": "object",
                "properties": {
                    "error": {
                        "type": "string",
                        "enum": [
                            "invalid_request", "invalid_client", "invalid_grant", "unauthorized_client",
                            "unsupported_grant_type", "invalid_scope", "server_error",
                        ],
                    },
                    "error_description": string,
                },
            },
            "ApiErrorResponse": {
                "type": "object",
                "properties": {
                    "error": {
                        "type": "object",
                        "properties": {"code": string, "message": string, "details": {"type": "object"}},
                    },
                },
            },
            "Webhook": {
                "type": "object",
                "properties": {
                    "id": string, "tenant_id": string, "api_key_id": string, "url": string,
                    "secret": {"type": "string", "description": "HMAC-SHA256 signing secret"},
                    "events": {"type": "array", "items": string},
                    "active": {"type": "boolean"}, "failure_count": {"type": "integer"},
                    "created_at": date_time, "updated_at": date_time, "last_triggered_at": date_time,
                },
            },
            "WebhookCreateRequest": {
                "type": "object",
                "required": ["url", "events"],
                "properties": {"url": string, "events": {"type": "array", "items": string}},
            },
            "WebhookUpdateRequest": {
                "type": "object",
                "properties": {
                    "url": string, "events": {"type": "array", "items": string}, "active": {"type": "boolean"},
                },
            },
            "Tenant": {
                "type": "object",
                "properties": {
                    "tenant_id": string, "name": string, "email": string,
                    "allowed_origins": {"type": "array", "items": string},
                    "status": {"type": "string", "enum": ["active", "suspended", "deleted"]},
                    "created_at": date_time,
                },
            },
            "UsageRecord": {
                "type": "object",
                "properties": {
                    "api_key_id": string, "tenant_id": string, "endpoint": string, "method": string,
                    "status_code": {"type": "integer"}, "response_time_ms": {"type": "integer"},
                    "timestamp": date_time,
                },
            },
            "AuditEntry": {
                "type": "object",
                "properties": {
                    "tenant_id": string, "timestamp": date_time, "action": string, "resource": string,
                    "metadata": {"type": "object"},
                },
            },
        },
        "securitySchemes": {
            "bearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"},
        },
    }


class OpenApiGenerator:
    def __init__(self, versions: ApiVersionService, servers: Optional[List[Dict[str, str]]] = None):
        self.versions = versions
        self.servers = servers or DEFAULT_SERVERS

    def generate_openapi_spec(self, version: Optional[str] = None, info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        version = version or self.versions.current_version
        if not self.versions.is_supported_version(version):
            raise UnsupportedVersion(f"Unsupported API version: {version}")

        api_info = {**DEFAULT_INFO, **(info or {})}
        api_info.setdefault("version", version)

        return {
            "openapi": "3.0.3",
            "info": api_info,
            "servers": self.servers,
            "paths": self._paths(version),
            "components": _components(),
            "security": [{"bearerAuth": []}],
            "tags": TAGS,
        }

    def _paths(self, version: str) -> Dict[str, Any]:
        catalog = _path_items()
        paths: Dict[str, Any] = {}
        for endpoint in self.versions.get_endpoints_for_version(version):
            item = catalog.get(endpoint.path)
            if item is None:
                continue
            if endpoint.deprecated:
                item = {method: {**op, "deprecated": True} for method, op in item.items()}
            paths[endpoint.path] = item
        return paths
