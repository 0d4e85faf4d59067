from apigate.container import Container, get_container
from apigate.errors import MethodNotAllowed
from apigate.functions.api.common import Request, json_response, require_fields, respond


class AuthAPI:
    def __init__(self, container: Container):
        self.auth = container.auth

    def authenticate(self, tenant_id: str, data: dict):
        require_fields(data, ["apiKey", "apiSecret"])
        issued = self.auth.authenticate(data["apiKey"], data["apiSecret"], tenant_id)
        return {"token": issued.token, "expiresAt": issued.expires_at.isoformat()}


def handler(event, context, container: Container = None):
    container = container or get_container()
    request = Request(event)
    api = AuthAPI(container)

    def route():
        if request.method == "POST":
            return json_response(200, api.authenticate(request.tenant_id, request.json()))
        raise MethodNotAllowed()

    return respond(container, request, route)
