import time
from typing import Any, Dict

import boto3
from botocore.exceptions import ClientError
from loguru import logger


class SecretsManager:
    """Reads token-signing secrets from AWS Secrets Manager with a short TTL cache."""

    def __init__(self, region_name: str = "us-east-1", cache_ttl: int = 300):
        self.client = boto3.client("secretsmanager", region_name=region_name)
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._cache_ttl = cache_ttl

    def create_secret(self, secret_id: str, value: str) -> str:
        try:
            response = self.client.create_secret(
                Name=secret_id,
                SecretString=value,
                Description="apigate token signing secret",
                Tags=[{"Key": "Project", "Value": "apigate"}],
            )
            self._cache.pop(secret_id, None)
            return response["ARN"]
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceExistsException":
                self.client.put_secret_value(SecretId=secret_id, SecretString=value)
                self._cache.pop(secret_id, None)
                return secret_id
            raise

    def get_secret(self, secret_id: str) -> str:
        entry = self._cache.get(secret_id)
        if entry and time.time() - entry["timestamp"] < self._cache_ttl:
            return entry["value"]

        response = self.client.get_secret_value(SecretId=secret_id)
        value = response["SecretString"]
        self._cache[secret_id] = {"value": value, "timestamp": time.time()}
        return value

    def delete_secret(self, secret_id: str, recovery_window: int = 7) -> None:
        try:
            self.client.delete_secret(SecretId=secret_id, RecoveryWindowInDays=recovery_window)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise
            logger.warning(f"Secret {secret_id} already gone")
        self._cache.pop(secret_id, None)
