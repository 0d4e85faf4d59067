from apigate.container import Container, get_container
from apigate.errors import MethodNotAllowed, WebhookNotFound
from apigate.functions.api.common import Request, authorize, json_response, require_fields, respond
from apigate.models import Permission, Webhook


def public_webhook(webhook: Webhook) -> dict:
    return webhook.model_dump(mode="json", exclude={"secret"})


class WebhooksAPI:
    def __init__(self, container: Container):
        self.auth = container.auth
        self.webhooks = container.webhooks

    def _owned(self, tenant_id: str, api_key_id: str, webhook_id: str) -> Webhook:
        webhook = self.webhooks.get_webhook(tenant_id, webhook_id)
        if webhook.api_key_id != api_key_id:
            raise WebhookNotFound()
        return webhook

    def list_webhooks(self, tenant_id: str, api_key_id: str):
        return {"webhooks": [public_webhook(w) for w in self.webhooks.list_webhooks(tenant_id, api_key_id)]}

    def create_webhook(self, tenant_id: str, api_key_id: str, data: dict):
        require_fields(data, ["url"])
        # Subscriptions hang off an existing key of the same tenant
        self.auth.get_api_key(api_key_id, tenant_id)
        webhook = self.webhooks.register_webhook(tenant_id, api_key_id, data["url"], data.get("events") or [])
        return webhook.model_dump(mode="json")

    def get_webhook(self, tenant_id: str, api_key_id: str, webhook_id: str):
        result = public_webhook(self._owned(tenant_id, api_key_id, webhook_id))
        result["recent_events"] = [
            e.model_dump(mode="json") for e in self.webhooks.list_events(tenant_id, webhook_id)[:20]
        ]
        return result

    def update_webhook(self, tenant_id: str, api_key_id: str, webhook_id: str, data: dict):
        self._owned(tenant_id, api_key_id, webhook_id)
        webhook = self.webhooks.update_webhook(
            tenant_id,
            webhook_id,
            url=data.get("url"),
            events=data.get("events"),
            active=data.get("active"),
        )
        return public_webhook(webhook)

    def delete_webhook(self, tenant_id: str, api_key_id: str, webhook_id: str):
        self._owned(tenant_id, api_key_id, webhook_id)
        self.webhooks.delete_webhook(tenant_id, webhook_id)


def handler(event, context, container: Container = None):
    container = container or get_container()
    request = Request(event)
    api = WebhooksAPI(container)

    def route():
        authorize(container, request, Permission.WEBHOOKS_MANAGE.value)
        tenant_id = request.tenant_id
        api_key_id = request.path_params.get("apiKeyId")
        webhook_id = request.path_params.get("webhookId")

        if webhook_id:
            if request.method == "GET":
                return json_response(200, api.get_webhook(tenant_id, api_key_id, webhook_id))
            if request.method == "PATCH":
                return json_response(200, api.update_webhook(tenant_id, api_key_id, webhook_id, request.json()))
            if request.method == "DELETE":
                api.delete_webhook(tenant_id, api_key_id, webhook_id)
                return json_response(204)
            raise MethodNotAllowed()

        if request.method == "GET":
            return json_response(200, api.list_webhooks(tenant_id, api_key_id))
        if request.method == "POST":
            return json_response(201, api.create_webhook(tenant_id, api_key_id, request.json()))
        raise MethodNotAllowed()

    return respond(container, request, route)
