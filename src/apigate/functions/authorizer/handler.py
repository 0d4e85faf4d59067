from typing import Any, Dict, Optional

from loguru import logger

from apigate.container import Container, get_container
from apigate.models import Permission

# Resource prefix -> permission required on top of a valid, tenant-matched token
REQUIRED_PERMISSIONS = (
    ("/api/developer/keys/", Permission.KEYS_MANAGE.value),
    ("/api/developer/oauth/", Permission.OAUTH_MANAGE.value),
    ("/api/developer/webhooks/", Permission.WEBHOOKS_MANAGE.value),
)


def required_permission(resource: str) -> Optional[str]:
    for prefix, permission in REQUIRED_PERMISSIONS:
        if resource.startswith(prefix):
            return permission
    return None


class Authorizer:
    """API Gateway REQUEST authorizer in front of tenant-scoped routes."""

    def __init__(self, container: Container):
        self.security = container.security
        self.rate_limits = container.rate_limits

    def authorize(self, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Returns the authorizer context for an allowed request, None otherwise.
        """
        headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
        tenant_id = (event.get("pathParameters") or {}).get("tenantId")
        resource = event.get("resource") or event.get("path") or ""
        if not tenant_id:
            return None

        permission = required_permission(resource)
        result = self.security.validate_request(
            headers.get("authorization"), tenant_id, [permission] if permission else []
        )
        if not result.is_valid:
            logger.info(f"Denied {resource} for tenant {tenant_id}: {result.error}")
            return None

        payload = result.token_payload
        if not self.rate_limits.check_rate_limit(payload.key_id, tenant_id, resource):
            return None

        # Authorizer context values must be strings, numbers or booleans
        return {
            "tenantId": payload.tenant_id,
            "keyId": payload.key_id,
            "permissions": ",".join(payload.permissions),
        }

    def generate_policy(self, principal_id: str, effect: str, method_arn: str, context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generates an IAM policy for API Gateway.
        """
        return {
            "principalId": principal_id,
            "policyDocument": {
                "Version": "2012-10-17",
                "Statement": [
                    {
                        "Action": "execute-api:Invoke",
                        "Effect": effect,
                        "Resource": method_arn
                    }
                ]
            },
            "context": context
        }


def handler(event, context, container: Container = None):
    authorizer = Authorizer(container or get_container())
    method_arn = event.get("methodArn")

    try:
        auth_context = authorizer.authorize(event)
    except Exception as e:
        logger.exception(f"Authorizer failed: {e}")
        auth_context = None

    if auth_context:
        return authorizer.generate_policy(
            principal_id=auth_context["keyId"],
            effect="Allow",
            method_arn=method_arn,
            context=auth_context
        )
    return authorizer.generate_policy(
        principal_id="anonymous",
        effect="Deny",
        method_arn=method_arn,
        context={}
    )
