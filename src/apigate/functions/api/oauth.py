from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

from apigate.container import Container, get_container
from apigate.errors import MethodNotAllowed, UnsupportedGrantType, UnsupportedResponseType
from apigate.functions.api.common import (
    Request,
    authorize,
    json_response,
    redirect_response,
    require_fields,
    respond,
)
from apigate.models import Permission
from apigate.services.oauth import parse_scope


def add_query(url: str, params: dict) -> str:
    parts = urlparse(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunparse(parts._replace(query=urlencode(query)))


class OAuthAPI:
    def __init__(self, container: Container):
        self.oauth = container.oauth
        self.consent_url = container.settings.oauth_consent_url

    # Clients

    def list_clients(self, tenant_id: str):
        return {"clients": [c.public_dict() for c in self.oauth.list_clients(tenant_id)]}

    def register_client(self, tenant_id: str, data: dict, created_by: str):
        require_fields(data, ["name"])
        client = self.oauth.register_client(
            tenant_id,
            data["name"],
            data.get("redirect_uris") or [],
            data.get("allowed_scopes") or [],
            created_by,
            description=data.get("description"),
        )
        # The secret is only ever shown here
        return client.model_dump(mode="json")

    def get_client(self, tenant_id: str, client_id: str):
        return self.oauth.get_client(client_id, tenant_id).public_dict()

    def update_client(self, tenant_id: str, client_id: str, data: dict):
        client = self.oauth.update_client(
            client_id,
            tenant_id,
            name=data.get("name"),
            description=data.get("description"),
            redirect_uris=data.get("redirect_uris"),
            allowed_scopes=data.get("allowed_scopes"),
            active=data.get("active"),
        )
        return client.public_dict()

    def delete_client(self, tenant_id: str, client_id: str):
        self.oauth.delete_client(client_id, tenant_id)

    # Grants

    def authorize(self, tenant_id: str, query: dict, user_id: str = None) -> str:
        """Returns the redirect location: the client callback with a code, or the consent page."""
        require_fields(query, ["client_id", "redirect_uri", "response_type", "scope"])
        if query["response_type"] != "code":
            raise UnsupportedResponseType()

        scopes = parse_scope(query["scope"])
        self.oauth.validate_authorization_request(query["client_id"], tenant_id, scopes, query["redirect_uri"])

        if not user_id:
            return add_query(self.consent_url, {
                "tenant_id": tenant_id,
                "client_id": query["client_id"],
                "redirect_uri": query["redirect_uri"],
                "scope": query["scope"],
                "state": query.get("state"),
            })

        auth_code = self.oauth.generate_authorization_code(
            query["client_id"], tenant_id, user_id, scopes, query["redirect_uri"]
        )
        return add_query(query["redirect_uri"], {"code": auth_code.code, "state": query.get("state")})

    def token(self, form: dict):
        require_fields(form, ["grant_type"])
        grant_type = form["grant_type"]

        if grant_type == "authorization_code":
            require_fields(form, ["code", "redirect_uri", "client_id", "client_secret"])
            access = self.oauth.exchange_authorization_code(
                form["code"], form["client_id"], form["client_secret"], form["redirect_uri"]
            )
        elif grant_type == "refresh_token":
            require_fields(form, ["refresh_token", "client_id", "client_secret"])
            access = self.oauth.refresh_access_token(
                form["refresh_token"], form["client_id"], form["client_secret"]
            )
        else:
            raise UnsupportedGrantType()

        return access.to_token_response(self.oauth.clock())


def handler(event, context, container: Container = None):
    container = container or get_container()
    request = Request(event)
    api = OAuthAPI(container)
    tenant_id = request.tenant_id

    if request.resource.endswith("/authorize"):
        def route():
            if request.method != "GET":
                raise MethodNotAllowed()
            user_id = request.authorizer.get("user_id") or request.authorizer.get("userId")
            return redirect_response(api.authorize(tenant_id, request.query, user_id))

        return respond(container, request, route, oauth=True)

    if request.resource.endswith("/token"):
        def route():
            if request.method != "POST":
                raise MethodNotAllowed()
            return json_response(
                200, api.token(request.form()), headers={"Cache-Control": "no-store", "Pragma": "no-cache"}
            )

        return respond(container, request, route, oauth=True)

    def route():
        principal = authorize(container, request, Permission.OAUTH_MANAGE.value)
        client_id = request.path_params.get("clientId")

        if client_id:
            if request.method == "GET":
                return json_response(200, api.get_client(tenant_id, client_id))
            if request.method == "PATCH":
                return json_response(200, api.update_client(tenant_id, client_id, request.json()))
            if request.method == "DELETE":
                api.delete_client(tenant_id, client_id)
                return json_response(204)
            raise MethodNotAllowed()

        if request.method == "GET":
            return json_response(200, api.list_clients(tenant_id))
        if request.method == "POST":
            return json_response(201, api.register_client(tenant_id, request.json(), principal.key_id))
        raise MethodNotAllowed()

    return respond(container, request, route)
