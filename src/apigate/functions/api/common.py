"""
Shared request/response plumbing for the API Gateway proxy handlers.

Every handler routes through respond(): it maps ApiError to the JSON error
envelope, hides unexpected failures behind a 500, records usage for
authenticated calls and stamps version and CORS headers on the way out.
"""

import base64
import json
import time
from typing import Any, Callable, Dict, Iterable, Optional
from urllib.parse import parse_qsl

from loguru import logger

from apigate.container import Container
from apigate.errors import ApiError, Forbidden, RateLimited, Unauthorized, ValidationError
from apigate.models import TokenPayload

CORS_ALLOW_HEADERS = "Authorization, Content-Type"
CORS_ALLOW_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"


class Request:
    def __init__(self, event: Dict[str, Any]):
        self.event = event
        request_context = event.get("requestContext") or {}
        self.method = (
            event.get("httpMethod") or request_context.get("http", {}).get("method") or ""
        ).upper()
        self.path = event.get("path") or event.get("rawPath") or ""
        # Templated path, e.g. /api/developer/keys/{tenantId}
        self.resource = event.get("resource") or self.path
        self.path_params = event.get("pathParameters") or {}
        self.query = event.get("queryStringParameters") or {}
        self.headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
        self.authorizer = request_context.get("authorizer") or {}
        self.source_ip = request_context.get("identity", {}).get("sourceIp")
        self.principal: Optional[TokenPayload] = None

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def tenant_id(self) -> Optional[str]:
        return self.path_params.get("tenantId")

    @property
    def raw_body(self) -> str:
        body = self.event.get("body") or ""
        if self.event.get("isBase64Encoded") and body:
            body = base64.b64decode(body).decode()
        return body

    def json(self) -> Dict[str, Any]:
        if not self.raw_body:
            return {}
        try:
            data = json.loads(self.raw_body)
        except json.JSONDecodeError as e:
            raise ValidationError("Request body must be valid JSON") from e
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    def form(self) -> Dict[str, str]:
        """Form-encoded body; JSON is accepted when the content type says so."""
        if "application/json" in (self.header("content-type") or ""):
            return {k: str(v) for k, v in self.json().items() if v is not None}
        return dict(parse_qsl(self.raw_body, keep_blank_values=True))


def json_response(status_code: int, body: Any = None, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    response = {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json", **(headers or {})},
        "body": json.dumps(body) if body is not None else "",
    }
    return response


def redirect_response(location: str) -> Dict[str, Any]:
    return {"statusCode": 302, "headers": {"Location": location}, "body": ""}


def error_response(error: ApiError) -> Dict[str, Any]:
    return json_response(error.status_code, error.to_dict())


def oauth_error_response(error: ApiError) -> Dict[str, Any]:
    return json_response(
        error.status_code,
        error.to_oauth_dict(),
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )


def require_fields(data: Dict[str, Any], fields: Iterable[str]) -> None:
    missing = [f for f in fields if not data.get(f)]
    if missing:
        raise ValidationError(f"Missing required parameters: {', '.join(missing)}", details={"missing": missing})


def query_limit(request: Request, default: int = 50, maximum: int = 100) -> int:
    raw = request.query.get("limit")
    if not raw:
        return default
    try:
        limit = int(raw)
    except ValueError as e:
        raise ValidationError("limit must be an integer") from e
    if limit <= 0:
        raise ValidationError("limit must be positive")
    return min(limit, maximum)


def authorize(container: Container, request: Request, permission: Optional[str] = None) -> TokenPayload:
    """Bearer token, tenant isolation, permission and rate limit, in that order."""
    required = [permission] if permission else []
    result = container.security.validate_request(request.header("authorization"), request.tenant_id, required)
    if not result.is_valid:
        if result.status_code == 403:
            raise Forbidden()
        raise Unauthorized()

    payload = result.token_payload
    request.principal = payload
    window = container.rate_limits.exceeded_window(payload.key_id, request.tenant_id, request.resource)
    if window is not None:
        raise RateLimited(f"Rate limit exceeded for the current {window}", details={"window": window})
    return payload


def _finalize(container: Container, request: Request, response: Dict[str, Any], started: float) -> Dict[str, Any]:
    headers = response.setdefault("headers", {})
    headers.update(container.versions.get_version_headers(request.resource))

    origin = request.header("origin")
    if request.tenant_id and origin and container.security.validate_cors_origin(origin, request.tenant_id):
        headers.update({
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
            "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
            "Vary": "Origin",
        })

    if request.principal is not None:
        container.rate_limits.record_usage(
            request.principal.key_id,
            request.principal.tenant_id,
            request.resource,
            request.method,
            response["statusCode"],
            int((time.monotonic() - started) * 1000),
        )
    return response


def respond(
    container: Container,
    request: Request,
    route: Callable[[], Dict[str, Any]],
    oauth: bool = False,
) -> Dict[str, Any]:
    started = time.monotonic()
    if request.method == "OPTIONS":
        return _finalize(container, request, {"statusCode": 204, "headers": {}, "body": ""}, started)

    try:
        response = route()
    except ApiError as e:
        if e.status_code >= 500:
            logger.error(f"{request.method} {request.resource} failed: {e.message}")
        response = oauth_error_response(e) if oauth else error_response(e)
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.resource}: {e}")
        error = ApiError()
        response = oauth_error_response(error) if oauth else error_response(error)
    return _finalize(container, request, response, started)
