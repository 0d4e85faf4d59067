import time
from typing import Any, Dict, List, Optional

from loguru import logger

from apigate.models import AuditEntry, utc_now
from apigate.stores import AuditStore


class AuditService:
    def __init__(self, store: AuditStore, retention_days: int = 90):
        self.store = store
        self.retention_days = retention_days

    def log_action(
        self,
        tenant_id: str,
        action: str,
        resource: str,
        metadata: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ):
        """
        Logs an action to the audit table. Never raises.
        """
        expires_at = int(time.time()) + (self.retention_days * 24 * 60 * 60)

        entry = AuditEntry(
            tenant_id=tenant_id,
            timestamp=utc_now(),
            action=action,
            resource=resource,
            metadata=metadata or {},
            request_id=request_id,
            ip_address=ip_address,
            user_agent=user_agent
        )

        try:
            self.store.put(entry, expires_at)
        except Exception as e:
            logger.error(f"Failed to log audit entry {action} for tenant {tenant_id}: {e}")

    def get_tenant_audit(self, tenant_id: str, limit: int = 50) -> List[AuditEntry]:
        """
        Retrieves audit entries for a tenant, newest first.
        """
        try:
            return self.store.list_by_tenant(tenant_id, limit=limit)
        except Exception as e:
            logger.error(f"Failed to retrieve audit entries for tenant {tenant_id}: {e}")
            return []
