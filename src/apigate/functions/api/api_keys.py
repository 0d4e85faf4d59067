from apigate.container import Container, get_container
from apigate.errors import MethodNotAllowed
from apigate.functions.api.common import Request, authorize, json_response, query_limit, require_fields, respond
from apigate.models import Permission


class ApiKeysAPI:
    def __init__(self, container: Container):
        self.auth = container.auth
        self.rate_limits = container.rate_limits

    def list_keys(self, tenant_id: str):
        return {"keys": [k.public_dict() for k in self.auth.list_api_keys(tenant_id)]}

    def create_key(self, tenant_id: str, data: dict, created_by: str):
        require_fields(data, ["name"])
        created = self.auth.generate_api_key(tenant_id, data["name"], data.get("permissions") or [], created_by)
        return created.public_dict()

    def get_key(self, tenant_id: str, key_id: str):
        result = self.auth.get_api_key(key_id, tenant_id).public_dict()
        result["limits"] = self.rate_limits.get_api_key_limits(key_id).model_dump()
        return result

    def revoke_key(self, tenant_id: str, key_id: str):
        return self.auth.revoke_api_key(key_id, tenant_id).public_dict()

    def update_limits(self, tenant_id: str, key_id: str, data: dict):
        self.auth.get_api_key(key_id, tenant_id)
        current = self.rate_limits.get_api_key_limits(key_id).model_dump()
        limits = self.rate_limits.update_api_key_limits(key_id, tenant_id, {**current, **data})
        return limits.model_dump()

    def get_usage(self, tenant_id: str, key_id: str, limit: int):
        self.auth.get_api_key(key_id, tenant_id)
        records = self.rate_limits.get_usage(key_id, limit=limit)
        return {"usage": [r.model_dump(mode="json") for r in records]}


def handler(event, context, container: Container = None):
    container = container or get_container()
    request = Request(event)
    api = ApiKeysAPI(container)

    def route():
        principal = authorize(container, request, Permission.KEYS_MANAGE.value)
        tenant_id = request.tenant_id
        key_id = request.path_params.get("keyId")

        if key_id and request.resource.endswith("/usage"):
            if request.method == "GET":
                return json_response(200, api.get_usage(tenant_id, key_id, query_limit(request)))
            raise MethodNotAllowed()

        if key_id and request.resource.endswith("/limits"):
            if request.method == "PUT":
                return json_response(200, api.update_limits(tenant_id, key_id, request.json()))
            raise MethodNotAllowed()

        if key_id:
            if request.method == "GET":
                return json_response(200, api.get_key(tenant_id, key_id))
            if request.method == "DELETE":
                return json_response(200, api.revoke_key(tenant_id, key_id))
            raise MethodNotAllowed()

        if request.method == "GET":
            return json_response(200, api.list_keys(tenant_id))
        if request.method == "POST":
            return json_response(201, api.create_key(tenant_id, request.json(), principal.key_id))
        raise MethodNotAllowed()

    return respond(container, request, route)
