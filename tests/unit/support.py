import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from apigate.config import Settings
from apigate.container import Container, build_container

TENANT_ID = "ten_abc"
OTHER_TENANT_ID = "ten_xyz"
START = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InlineDispatcher:
    """Delivers synchronously so tests can assert on the outcome right away."""

    def __init__(self):
        self.dispatched: List[str] = []

    def dispatch(self, event_id, deliver):
        self.dispatched.append(event_id)
        deliver(event_id)

    def close(self):
        pass


class RecordingSender:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.calls: List[Dict[str, Any]] = []

    def send(self, url, body, headers) -> bool:
        self.calls.append({"url": url, "body": body, "headers": headers})
        return self.succeed


def memory_settings() -> Settings:
    settings = Settings()
    settings.store_backend = "memory"
    settings.environment = "test"
    settings.api_jwt_secret = "api-test-secret"
    settings.api_jwt_secret_id = None
    settings.oauth_jwt_secret = "oauth-test-secret"
    settings.oauth_jwt_secret_id = None
    settings.webhook_queue_url = None
    return settings


def use_clock(container: Container, clock) -> None:
    for service in (container.auth, container.oauth, container.rate_limits, container.webhooks):
        service.clock = clock
    container.auth.codec.clock = clock
    container.oauth.codec.clock = clock


def build_test_container(clock: Optional[FakeClock] = None, sender: Optional[RecordingSender] = None) -> Container:
    container = build_container(
        memory_settings(),
        sender=sender or RecordingSender(),
        dispatcher=InlineDispatcher(),
    )
    if clock is not None:
        use_clock(container, clock)
    return container


def api_event(
    method: str,
    resource: str,
    path_params: Optional[Dict[str, str]] = None,
    body: Any = None,
    token: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    query: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    all_headers = dict(headers or {})
    if token:
        all_headers["Authorization"] = f"Bearer {token}"
    if body is not None and not isinstance(body, str):
        body = json.dumps(body)
    return {
        "httpMethod": method,
        "resource": resource,
        "path": resource,
        "pathParameters": path_params,
        "queryStringParameters": query,
        "headers": all_headers,
        "body": body,
        "requestContext": {},
    }


def management_token(container: Container, tenant_id: str = TENANT_ID, permissions=None) -> str:
    created = container.auth.generate_api_key(
        tenant_id,
        "management",
        permissions if permissions is not None else ["keys:manage", "oauth:manage", "webhooks:manage"],
        created_by="tests",
    )
    return container.auth.authenticate(created.api_key.key, created.secret, tenant_id).token


def body_of(response: Dict[str, Any]) -> Any:
    return json.loads(response["body"]) if response["body"] else None
