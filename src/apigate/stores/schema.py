"""
DynamoDB table definitions, shared by deployment scripts and tests.
"""

from typing import Any, Dict, List

from apigate.config import Settings


def _table(name: str, hash_key: str, range_key: str = None, indexes: List[Dict[str, str]] = None) -> Dict[str, Any]:
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    attributes = {hash_key}
    if range_key:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
        attributes.add(range_key)

    definition: Dict[str, Any] = {
        "TableName": name,
        "KeySchema": key_schema,
        "BillingMode": "PAY_PER_REQUEST",
    }
    if indexes:
        definition["GlobalSecondaryIndexes"] = [
            {
                "IndexName": index["name"],
                "KeySchema": [{"AttributeName": index["hash_key"], "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
            for index in indexes
        ]
        attributes.update(index["hash_key"] for index in indexes)

    definition["AttributeDefinitions"] = [
        {"AttributeName": attribute, "AttributeType": "S"} for attribute in sorted(attributes)
    ]
    return definition


def table_definitions(settings: Settings) -> List[Dict[str, Any]]:
    return [
        _table(settings.api_keys_table, "tenant_id", "id",
               indexes=[{"name": "api_key-index", "hash_key": "key"}]),
        _table(settings.oauth_clients_table, "tenant_id", "client_id"),
        _table(settings.oauth_codes_table, "code"),
        _table(settings.oauth_tokens_table, "token"),
        _table(settings.webhooks_table, "tenant_id", "id"),
        _table(settings.webhook_events_table, "id",
               indexes=[{"name": "webhook-index", "hash_key": "webhook_id"}]),
        _table(settings.rate_limits_table, "api_key_id", "bucket"),
        _table(settings.usage_table, "api_key_id", "sk"),
        _table(settings.tenants_table, "tenant_id"),
        _table(settings.audit_table, "tenant_id", "timestamp"),
    ]


def create_tables(dynamodb, settings: Settings) -> None:
    """Create every apigate table on the given boto3 DynamoDB resource."""
    for definition in table_definitions(settings):
        dynamodb.create_table(**definition)
