#!/usr/bin/env python3
"""
apigate-admin.py - bootstrap tables, tenants and the first management key

Usage:
  apigate-admin.py create-tables
  apigate-admin.py create-tenant --name <name> --email <email> [--origin <origin> ...]
  apigate-admin.py create-key --tenant <tenant_id> --name <name> [--permission <perm> ...]
"""

import argparse
import json
import sys
import uuid

import boto3

from apigate.config import Settings
from apigate.container import build_container
from apigate.logging_config import configure_logging
from apigate.models import Permission, Tenant
from apigate.stores.schema import create_tables

MANAGEMENT_PERMISSIONS = [
    Permission.KEYS_MANAGE.value,
    Permission.OAUTH_MANAGE.value,
    Permission.WEBHOOKS_MANAGE.value,
]


def parse_args():
    parser = argparse.ArgumentParser(description="apigate administration")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("create-tables", help="Create every DynamoDB table")

    tenant = commands.add_parser("create-tenant", help="Create a tenant")
    tenant.add_argument("--name", required=True)
    tenant.add_argument("--email", required=True)
    tenant.add_argument("--origin", action="append", default=[], help="Allowed CORS origin (repeatable)")

    key = commands.add_parser("create-key", help="Create an API key; the secret is printed once")
    key.add_argument("--tenant", required=True, help="Tenant ID")
    key.add_argument("--name", required=True, help="Key name")
    key.add_argument("--permission", action="append", default=None,
                     help="Permission to grant (repeatable, defaults to the management set)")
    return parser.parse_args()


def main():
    args = parse_args()
    settings = Settings()
    configure_logging(settings)

    if args.command == "create-tables":
        dynamodb = boto3.resource("dynamodb", region_name=settings.region_name)
        create_tables(dynamodb, settings)
        print("Tables ready")
        return 0

    container = build_container(settings)

    if args.command == "create-tenant":
        tenant = Tenant(
            tenant_id=f"ten_{uuid.uuid4().hex[:12]}",
            name=args.name,
            email=args.email,
            allowed_origins=args.origin,
        )
        container.tenants.put(tenant)
        container.audit.log_action(tenant.tenant_id, "CREATE_TENANT", tenant.tenant_id, metadata={"name": tenant.name})
        print(json.dumps(tenant.model_dump(mode="json"), indent=2))
        return 0

    if args.command == "create-key":
        created = container.auth.generate_api_key(
            args.tenant, args.name, args.permission or MANAGEMENT_PERMISSIONS, created_by="apigate-admin"
        )
        print(json.dumps(created.public_dict(), indent=2))
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
