import uuid

from apigate.container import Container, get_container
from apigate.errors import MethodNotAllowed, TenantNotFound, ValidationError
from apigate.functions.api.common import Request, json_response, query_limit, require_fields, respond
from apigate.models import Tenant, TenantStatus
from apigate.services import AuditService
from apigate.stores import TenantStore


class TenantAPI:
    """Platform administration. Routes are protected by IAM at the gateway, not by API keys."""

    def __init__(self, tenants: TenantStore, audit: AuditService):
        self.tenants = tenants
        self.audit = audit

    def _build(self, data: dict, **fields) -> Tenant:
        try:
            return Tenant(**{**data, **fields})
        except ValueError as e:
            raise ValidationError(str(e)) from e

    def create_tenant(self, data: dict):
        require_fields(data, ["name", "email"])
        tenant_id = f"ten_{uuid.uuid4().hex[:12]}"
        tenant = self._build(
            {"name": data["name"], "email": data["email"], "allowed_origins": data.get("allowed_origins") or []},
            tenant_id=tenant_id,
            status=TenantStatus.ACTIVE,
        )
        self.tenants.put(tenant)
        self.audit.log_action(tenant_id, "CREATE_TENANT", tenant_id, metadata={"name": tenant.name})
        return tenant.model_dump(mode="json")

    def get_tenant(self, tenant_id: str) -> Tenant:
        tenant = self.tenants.get(tenant_id)
        if tenant is None or tenant.status == TenantStatus.DELETED:
            raise TenantNotFound()
        return tenant

    def update_tenant(self, tenant_id: str, data: dict):
        current = self.get_tenant(tenant_id)
        changes = {k: data[k] for k in ("name", "email", "allowed_origins") if k in data}
        tenant = self._build(current.model_dump(), **changes)
        self.tenants.put(tenant)
        self.audit.log_action(tenant_id, "UPDATE_TENANT", tenant_id, metadata=changes)
        return tenant.model_dump(mode="json")

    def delete_tenant(self, tenant_id: str):
        tenant = self.get_tenant(tenant_id)
        tenant.status = TenantStatus.DELETED
        self.tenants.put(tenant)
        self.audit.log_action(tenant_id, "DELETE_TENANT", tenant_id)
        return {"status": "deleted"}

    def get_audit(self, tenant_id: str, limit: int):
        self.get_tenant(tenant_id)
        return {"entries": [e.model_dump(mode="json") for e in self.audit.get_tenant_audit(tenant_id, limit=limit)]}


def handler(event, context, container: Container = None):
    container = container or get_container()
    request = Request(event)
    api = TenantAPI(container.tenants, container.audit)
    tenant_id = request.tenant_id

    def route():
        if request.method == "POST" and not tenant_id:
            return json_response(201, api.create_tenant(request.json()))

        if not tenant_id:
            raise ValidationError("Missing tenant ID")
        if request.resource.endswith("/audit"):
            if request.method == "GET":
                return json_response(200, api.get_audit(tenant_id, query_limit(request)))
            raise MethodNotAllowed()
        if request.method == "GET":
            return json_response(200, api.get_tenant(tenant_id).model_dump(mode="json"))
        if request.method == "PATCH":
            return json_response(200, api.update_tenant(tenant_id, request.json()))
        if request.method == "DELETE":
            return json_response(200, api.delete_tenant(tenant_id))
        raise MethodNotAllowed()

    return respond(container, request, route)
