from typing import Any, Dict, Optional


class ApiError(Exception):
    """Base error for the developer API. Carries a machine code and HTTP status."""

    code = "internal_error"
    status_code = 500
    message = "Internal server error"
    # OAuth-standard error name used on the /authorize and /token endpoints
    oauth_error = "server_error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def to_oauth_dict(self) -> Dict[str, str]:
        return {"error": self.oauth_error, "error_description": self.message}


# Authentication (401)

class Unauthorized(ApiError):
    code = "unauthorized"
    status_code = 401
    message = "Unauthorized"
    oauth_error = "invalid_client"


class InvalidKey(Unauthorized):
    code = "invalid_key"
    message = "Invalid API key or secret"


class KeyNotActive(Unauthorized):
    code = "key_not_active"
    message = "API key is not active"


class InvalidToken(Unauthorized):
    code = "invalid_token"
    message = "Invalid token"


class TokenExpired(InvalidToken):
    message = "Token expired"


class Forbidden(ApiError):
    code = "forbidden"
    status_code = 403
    message = "Insufficient permissions"
    oauth_error = "unauthorized_client"


# Validation (400)

class ValidationError(ApiError):
    code = "invalid_request"
    status_code = 400
    message = "Invalid request"
    oauth_error = "invalid_request"


class InvalidRedirectUri(ValidationError):
    code = "invalid_redirect_uri"
    message = "Redirect URIs must use HTTPS or localhost"


class RedirectUriMismatch(ValidationError):
    code = "redirect_uri_mismatch"
    message = "Redirect URI does not match a registered URI"
    oauth_error = "invalid_grant"


class ScopeNotAllowed(ValidationError):
    code = "scope_not_allowed"
    message = "Requested scope is not allowed for this client"
    oauth_error = "invalid_scope"


class InvalidPermissions(ValidationError):
    code = "invalid_permissions"
    message = "Unknown permission"


class InvalidLimits(ValidationError):
    code = "invalid_limits"
    message = "Rate limits must be greater than zero"


class InvalidUrl(ValidationError):
    code = "invalid_url"
    message = "Webhook URL must use HTTPS"


class NoEvents(ValidationError):
    code = "no_events"
    message = "At least one event is required"


class UnsupportedGrantType(ValidationError):
    code = "unsupported_grant_type"
    message = "Unsupported grant type"
    oauth_error = "unsupported_grant_type"


class UnsupportedVersion(ValidationError):
    code = "unsupported_version"
    message = "Unsupported API version"


class UnsupportedResponseType(ValidationError):
    code = "unsupported_response_type"
    message = "Only the code response type is supported"
    oauth_error = "unsupported_response_type"


# OAuth client failures

class ClientNotFound(ApiError):
    code = "invalid_client"
    status_code = 401
    message = "Invalid client"
    oauth_error = "invalid_client"


class ClientInactive(ClientNotFound):
    message = "Client is not active"


class ClientIdMismatch(ApiError):
    code = "invalid_grant"
    status_code = 400
    message = "Client ID mismatch"
    oauth_error = "invalid_grant"


class InvalidClientSecret(ClientNotFound):
    message = "Invalid client secret"


# OAuth grant failures (400 invalid_grant)

class InvalidGrant(ApiError):
    code = "invalid_grant"
    status_code = 400
    message = "Invalid grant"
    oauth_error = "invalid_grant"


class InvalidCode(InvalidGrant):
    message = "Invalid authorization code"


class CodeAlreadyUsed(InvalidGrant):
    message = "Authorization code already used"


class CodeExpired(InvalidGrant):
    message = "Authorization code expired"


class InvalidRefreshToken(InvalidGrant):
    message = "Invalid refresh token"


class RefreshTokenRevoked(InvalidGrant):
    message = "Refresh token revoked"


class RefreshTokenExpired(InvalidGrant):
    message = "Refresh token expired"


# Lookups. One generic message for every resource so responses are not an
# existence oracle.

class NotFound(ApiError):
    code = "not_found"
    status_code = 404
    message = "Resource not found"


class ApiKeyNotFound(NotFound):
    pass


class OAuthClientNotFound(NotFound):
    pass


class WebhookNotFound(NotFound):
    pass


class TenantNotFound(NotFound):
    pass


class RateLimited(ApiError):
    code = "rate_limited"
    status_code = 429
    message = "Rate limit exceeded"


class MethodNotAllowed(ApiError):
    code = "method_not_allowed"
    status_code = 405
    message = "Method not allowed"


class ConditionFailed(Exception):
    """Raised by stores when a compare-and-set loses."""
