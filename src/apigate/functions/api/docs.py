from apigate.container import Container, get_container
from apigate.errors import MethodNotAllowed
from apigate.functions.api.common import Request, json_response, respond


def handler(event, context, container: Container = None):
    container = container or get_container()
    request = Request(event)

    def route():
        if request.method != "GET":
            raise MethodNotAllowed()
        version = request.query.get("version") or container.versions.current_version
        return json_response(200, container.openapi.generate_openapi_spec(version))

    return respond(container, request, route)
