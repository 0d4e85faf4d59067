"""
DynamoDB-backed stores. One table per entity; table names come from Settings.
"""

import json
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
import ulid
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from apigate.errors import ConditionFailed
from apigate.models import (
    AccessToken,
    ApiKey,
    ApiKeyStatus,
    AuditEntry,
    AuthorizationCode,
    OAuthClient,
    RateLimits,
    RefreshToken,
    Tenant,
    UsageRecord,
    Webhook,
    WebhookEvent,
)
from apigate.stores.base import (
    ApiKeyStore,
    AuditStore,
    AuthorizationCodeStore,
    OAuthClientStore,
    OAuthTokenStore,
    RateLimitStore,
    TenantStore,
    UsageStore,
    WebhookEventStore,
    WebhookStore,
)

LIMITS_BUCKET = "LIMITS"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot store {type(value).__name__}")


def to_item_values(values: Dict[str, Any]) -> Dict[str, Any]:
    # DynamoDB rejects floats; Decimal(str) keeps the written precision
    return json.loads(json.dumps(values, default=_json_default), parse_float=Decimal)


def to_item(model) -> Dict[str, Any]:
    return to_item_values(model.model_dump(mode="json"))


def from_item(value: Any) -> Any:
    if isinstance(value, Decimal):
        # A number written as 1.0 keeps a negative exponent and comes back a float
        return int(value) if value.as_tuple().exponent >= 0 else float(value)
    if isinstance(value, dict):
        return {k: from_item(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_item(v) for v in value]
    return value


def _is_condition_failure(error: ClientError) -> bool:
    return error.response["Error"]["Code"] == "ConditionalCheckFailedException"


class DynamoTable:
    def __init__(self, table_name: str, region_name: str = "us-east-1", dynamodb=None):
        self.dynamodb = dynamodb or boto3.resource("dynamodb", region_name=region_name)
        self.table_name = table_name
        self.table = self.dynamodb.Table(table_name)

    def _get(self, key: Dict[str, str]) -> Optional[Dict[str, Any]]:
        item = self.table.get_item(Key=key).get("Item")
        return from_item(item) if item else None

    def _query_all(self, **kwargs) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        while True:
            response = self.table.query(**kwargs)
            items.extend(from_item(item) for item in response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key


class DynamoApiKeyStore(DynamoTable, ApiKeyStore):
    def put(self, api_key: ApiKey) -> None:
        self.table.put_item(Item=to_item(api_key))

    def get(self, tenant_id: str, key_id: str) -> Optional[ApiKey]:
        item = self._get({"tenant_id": tenant_id, "id": key_id})
        return ApiKey(**item) if item else None

    def find_by_key(self, key: str, tenant_id: str) -> Optional[ApiKey]:
        items = self._query_all(
            IndexName="api_key-index",
            KeyConditionExpression=Key("key").eq(key),
        )
        # The index spans tenants; the tenant filter is part of the lookup contract
        for item in items:
            if item["tenant_id"] == tenant_id:
                return ApiKey(**item)
        return None

    def list_by_tenant(self, tenant_id: str) -> List[ApiKey]:
        items = self._query_all(KeyConditionExpression=Key("tenant_id").eq(tenant_id))
        return [ApiKey(**item) for item in items]

    def set_status(self, tenant_id: str, key_id: str, status: ApiKeyStatus, updated_at: datetime) -> None:
        self.table.update_item(
            Key={"tenant_id": tenant_id, "id": key_id},
            UpdateExpression="SET #s = :s, updated_at = :u",
            ExpressionAttributeNames={"#s": "status"},
            ExpressionAttributeValues={":s": status.value, ":u": updated_at.isoformat()},
        )

    def touch(self, tenant_id: str, key_id: str, last_used_at: datetime) -> None:
        self.table.update_item(
            Key={"tenant_id": tenant_id, "id": key_id},
            UpdateExpression="SET last_used_at = :l",
            ExpressionAttributeValues={":l": last_used_at.isoformat()},
        )


class DynamoOAuthClientStore(DynamoTable, OAuthClientStore):
    def put(self, client: OAuthClient) -> None:
        self.table.put_item(Item=to_item(client))

    def get(self, tenant_id: str, client_id: str) -> Optional[OAuthClient]:
        item = self._get({"tenant_id": tenant_id, "client_id": client_id})
        return OAuthClient(**item) if item else None

    def list_by_tenant(self, tenant_id: str) -> List[OAuthClient]:
        items = self._query_all(KeyConditionExpression=Key("tenant_id").eq(tenant_id))
        return [OAuthClient(**item) for item in items]

    def delete(self, tenant_id: str, client_id: str) -> None:
        self.table.delete_item(Key={"tenant_id": tenant_id, "client_id": client_id})


class DynamoAuthorizationCodeStore(DynamoTable, AuthorizationCodeStore):
    def put(self, code: AuthorizationCode) -> None:
        item = to_item(code)
        item["expires_at_epoch"] = int(code.expires_at.timestamp())
        self.table.put_item(Item=item)

    def get(self, code: str) -> Optional[AuthorizationCode]:
        item = self._get({"code": code})
        return AuthorizationCode(**item) if item else None

    def mark_used(self, code: str) -> None:
        try:
            self.table.update_item(
                Key={"code": code},
                UpdateExpression="SET #u = :t",
                ConditionExpression="attribute_exists(#c) AND #u = :f",
                ExpressionAttributeNames={"#u": "used", "#c": "code"},
                ExpressionAttributeValues={":t": True, ":f": False},
            )
        except ClientError as e:
            if _is_condition_failure(e):
                raise ConditionFailed(code) from e
            raise


class DynamoOAuthTokenStore(DynamoTable, OAuthTokenStore):
    def _put(self, token, token_type: str) -> None:
        item = to_item(token)
        item["token_type"] = token_type
        item["expires_at_epoch"] = int(token.expires_at.timestamp())
        self.table.put_item(Item=item)

    def _get_typed(self, token: str, token_type: str) -> Optional[Dict[str, Any]]:
        item = self._get({"token": token})
        if not item or item.pop("token_type", None) != token_type:
            return None
        item.pop("expires_at_epoch", None)
        return item

    def put_access_token(self, token: AccessToken) -> None:
        self._put(token, "access")

    def put_refresh_token(self, token: RefreshToken) -> None:
        self._put(token, "refresh")

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        item = self._get_typed(token, "refresh")
        return RefreshToken(**item) if item else None

    def revoke_refresh_token(self, token: str) -> None:
        try:
            self.table.update_item(
                Key={"token": token},
                UpdateExpression="SET #r = :t",
                ConditionExpression="attribute_exists(#k) AND #tt = :refresh AND #r = :f",
                ExpressionAttributeNames={"#r": "revoked", "#k": "token", "#tt": "token_type"},
                ExpressionAttributeValues={":t": True, ":f": False, ":refresh": "refresh"},
            )
        except ClientError as e:
            if _is_condition_failure(e):
                raise ConditionFailed(token) from e
            raise


class DynamoWebhookStore(DynamoTable, WebhookStore):
    def put(self, webhook: Webhook) -> None:
        self.table.put_item(Item=to_item(webhook))

    def get(self, tenant_id: str, webhook_id: str) -> Optional[Webhook]:
        item = self._get({"tenant_id": tenant_id, "id": webhook_id})
        return Webhook(**item) if item else None

    def list_by_tenant(self, tenant_id: str) -> List[Webhook]:
        items = self._query_all(KeyConditionExpression=Key("tenant_id").eq(tenant_id))
        return [Webhook(**item) for item in items]

    def delete(self, tenant_id: str, webhook_id: str) -> None:
        self.table.delete_item(Key={"tenant_id": tenant_id, "id": webhook_id})

    def _update_existing(self, tenant_id: str, webhook_id: str, **kwargs) -> Optional[Dict[str, Any]]:
        # update_item upserts; the condition keeps a deleted webhook from coming back as a partial item
        names = kwargs.pop("ExpressionAttributeNames", {})
        names["#id"] = "id"
        try:
            response = self.table.update_item(
                Key={"tenant_id": tenant_id, "id": webhook_id},
                ConditionExpression="attribute_exists(#id)",
                ExpressionAttributeNames=names,
                ReturnValues="ALL_NEW",
                **kwargs,
            )
        except ClientError as e:
            if _is_condition_failure(e):
                return None
            raise
        return from_item(response["Attributes"])

    def update_fields(self, tenant_id: str, webhook_id: str, fields: Dict[str, Any]) -> Optional[Webhook]:
        values = to_item_values(fields)
        names = {f"#f{i}": name for i, name in enumerate(values)}
        assignments = ", ".join(f"{alias} = :v{i}" for i, alias in enumerate(names))
        item = self._update_existing(
            tenant_id, webhook_id,
            UpdateExpression=f"SET {assignments}",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues={f":v{i}": value for i, value in enumerate(values.values())},
        )
        return Webhook(**item) if item else None

    def record_success(self, tenant_id: str, webhook_id: str, at: datetime) -> Optional[Webhook]:
        item = self._update_existing(
            tenant_id, webhook_id,
            UpdateExpression="SET failure_count = :zero, last_triggered_at = :at, updated_at = :at",
            ExpressionAttributeValues={":zero": 0, ":at": at.isoformat()},
        )
        return Webhook(**item) if item else None

    def record_failure(self, tenant_id: str, webhook_id: str, at: datetime, max_failures: int) -> Optional[Webhook]:
        item = self._update_existing(
            tenant_id, webhook_id,
            UpdateExpression="ADD failure_count :one SET last_triggered_at = :at, updated_at = :at",
            ExpressionAttributeValues={":one": 1, ":at": at.isoformat()},
        )
        if item is None:
            return None
        if item["failure_count"] >= max_failures and item.get("active", True):
            item = self._update_existing(
                tenant_id, webhook_id,
                UpdateExpression="SET #a = :f",
                ExpressionAttributeNames={"#a": "active"},
                ExpressionAttributeValues={":f": False},
            )
            if item is None:
                return None
        return Webhook(**item)


class DynamoWebhookEventStore(DynamoTable, WebhookEventStore):
    """Payloads are stored as JSON text so they are signed and delivered exactly as triggered."""

    def put(self, event: WebhookEvent) -> None:
        item = to_item(event)
        item["payload"] = json.dumps(event.model_dump(mode="json")["payload"])
        self.table.put_item(Item=item)

    def _event(self, item: Dict[str, Any]) -> WebhookEvent:
        if isinstance(item.get("payload"), str):
            item["payload"] = json.loads(item["payload"])
        return WebhookEvent(**item)

    def get(self, event_id: str) -> Optional[WebhookEvent]:
        item = self._get({"id": event_id})
        return self._event(item) if item else None

    def list_by_webhook(self, webhook_id: str) -> List[WebhookEvent]:
        items = self._query_all(
            IndexName="webhook-index",
            KeyConditionExpression=Key("webhook_id").eq(webhook_id),
        )
        return [self._event(item) for item in items]


class DynamoRateLimitStore(DynamoTable, RateLimitStore):
    def increment(self, api_key_id: str, buckets: Dict[str, int]) -> None:
        now = int(time.time())
        for bucket, ttl in buckets.items():
            self.table.update_item(
                Key={"api_key_id": api_key_id, "bucket": bucket},
                UpdateExpression="ADD #c :one SET expires_at = if_not_exists(expires_at, :exp)",
                ExpressionAttributeNames={"#c": "count"},
                ExpressionAttributeValues={":one": 1, ":exp": now + ttl},
            )

    def get_counts(self, api_key_id: str, buckets: List[str]) -> Dict[str, int]:
        counts = {}
        for bucket in buckets:
            item = self._get({"api_key_id": api_key_id, "bucket": bucket})
            counts[bucket] = int(item.get("count", 0)) if item else 0
        return counts

    def get_limits(self, api_key_id: str) -> Optional[RateLimits]:
        item = self._get({"api_key_id": api_key_id, "bucket": LIMITS_BUCKET})
        if not item:
            return None
        return RateLimits(
            per_minute=item["per_minute"],
            per_hour=item["per_hour"],
            per_day=item["per_day"],
        )

    def put_limits(self, api_key_id: str, tenant_id: str, limits: RateLimits) -> None:
        item = to_item(limits)
        item.update({"api_key_id": api_key_id, "bucket": LIMITS_BUCKET, "tenant_id": tenant_id})
        self.table.put_item(Item=item)


class DynamoUsageStore(DynamoTable, UsageStore):
    def append(self, record: UsageRecord) -> None:
        item = to_item(record)
        item["sk"] = f"{record.timestamp.isoformat()}#{ulid.new()}"
        self.table.put_item(Item=item)

    def list_for_key(self, api_key_id: str, limit: int = 100) -> List[UsageRecord]:
        response = self.table.query(
            KeyConditionExpression=Key("api_key_id").eq(api_key_id),
            ScanIndexForward=False,  # Newest first
            Limit=limit,
        )
        records = []
        for item in response.get("Items", []):
            item = from_item(item)
            item.pop("sk", None)
            records.append(UsageRecord(**item))
        return records


class DynamoTenantStore(DynamoTable, TenantStore):
    def put(self, tenant: Tenant) -> None:
        self.table.put_item(Item=to_item(tenant))

    def get(self, tenant_id: str) -> Optional[Tenant]:
        item = self._get({"tenant_id": tenant_id})
        return Tenant(**item) if item else None


class DynamoAuditStore(DynamoTable, AuditStore):
    def put(self, entry: AuditEntry, expires_at: int) -> None:
        item = to_item(entry)
        item["expires_at"] = expires_at
        self.table.put_item(Item=item)

    def list_by_tenant(self, tenant_id: str, limit: int = 50) -> List[AuditEntry]:
        response = self.table.query(
            KeyConditionExpression=Key("tenant_id").eq(tenant_id),
            ScanIndexForward=False,  # Newest first
            Limit=limit,
        )
        entries = []
        for item in response.get("Items", []):
            item = from_item(item)
            item.pop("expires_at", None)
            entries.append(AuditEntry(**item))
        return entries
