import unittest
from datetime import datetime, timezone
from unittest.mock import patch
from urllib.parse import parse_qs, urlencode, urlparse

from apigate.functions.api import api_keys, auth, docs, oauth, webhooks
from apigate.models import Tenant
from support import (
    OTHER_TENANT_ID,
    TENANT_ID,
    FakeClock,
    api_event,
    body_of,
    build_test_container,
    management_token,
)

AUTH = "/api/developer/auth/{tenantId}"
KEYS = "/api/developer/keys/{tenantId}"
KEY = "/api/developer/keys/{tenantId}/{keyId}"
LIMITS = "/api/developer/keys/{tenantId}/{keyId}/limits"
USAGE = "/api/developer/keys/{tenantId}/{keyId}/usage"
CLIENTS = "/api/developer/oauth/{tenantId}/clients"
CLIENT = "/api/developer/oauth/{tenantId}/clients/{clientId}"
AUTHORIZE = "/api/developer/oauth/{tenantId}/authorize"
TOKEN = "/api/developer/oauth/{tenantId}/token"
WEBHOOKS = "/api/developer/webhooks/{tenantId}/{apiKeyId}"
WEBHOOK = "/api/developer/webhooks/{tenantId}/{apiKeyId}/{webhookId}"
DOCS = "/api/developer/docs"
REDIRECT = "https://partner.example.com/callback"


class HandlerTestCase(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.container = build_test_container(clock=self.clock)
        self.token = management_token(self.container)

    def call(self, module, method, resource, path_params=None, **kwargs):
        params = {"tenantId": TENANT_ID, **(path_params or {})}
        return module.handler(api_event(method, resource, params, **kwargs), None, container=self.container)


class TestAuthHandler(HandlerTestCase):
    def setUp(self):
        super().setUp()
        self.created = self.container.auth.generate_api_key(TENANT_ID, "ci", ["content:read"], "admin")

    def test_authenticate(self):
        response = self.call(auth, "POST", AUTH, body={
            "apiKey": self.created.api_key.key,
            "apiSecret": self.created.secret,
        })
        self.assertEqual(response["statusCode"], 200)
        body = body_of(response)
        self.assertEqual(self.container.security.verify(body["token"]).key_id, self.created.api_key.id)
        self.assertIn("expiresAt", body)
        self.assertEqual(response["headers"]["X-API-Version"], "v1")

    def test_missing_parameters(self):
        response = self.call(auth, "POST", AUTH, body={"apiKey": self.created.api_key.key})
        self.assertEqual(response["statusCode"], 400)
        self.assertEqual(body_of(response)["error"]["details"]["missing"], ["apiSecret"])

    def test_bad_credentials(self):
        response = self.call(auth, "POST", AUTH, body={"apiKey": self.created.api_key.key, "apiSecret": "sk_x"})
        self.assertEqual(response["statusCode"], 401)
        self.assertEqual(body_of(response)["error"]["code"], "invalid_key")

    def test_malformed_json(self):
        response = self.call(auth, "POST", AUTH, body="{not json")
        self.assertEqual(response["statusCode"], 400)

    def test_method_not_allowed(self):
        response = self.call(auth, "GET", AUTH)
        self.assertEqual(response["statusCode"], 405)

    def test_unexpected_error_is_hidden(self):
        with patch.object(self.container.auth, "authenticate", side_effect=RuntimeError("db password is hunter2")):
            response = self.call(auth, "POST", AUTH, body={"apiKey": "a", "apiSecret": "b"})
        self.assertEqual(response["statusCode"], 500)
        self.assertEqual(body_of(response), {"error": {"code": "internal_error", "message": "Internal server error"}})


class TestApiKeysHandler(HandlerTestCase):
    def test_requires_token(self):
        self.assertEqual(self.call(api_keys, "GET", KEYS)["statusCode"], 401)

    def test_requires_permission(self):
        token = management_token(self.container, permissions=["content:read"])
        response = self.call(api_keys, "GET", KEYS, token=token)
        self.assertEqual(response["statusCode"], 403)
        self.assertEqual(body_of(response)["error"]["code"], "forbidden")

    def test_tenant_isolation(self):
        response = api_keys.handler(
            api_event("GET", KEYS, {"tenantId": OTHER_TENANT_ID}, token=self.token), None, container=self.container
        )
        self.assertEqual(response["statusCode"], 401)

    def test_create_list_revoke(self):
        created = self.call(api_keys, "POST", KEYS, token=self.token,
                            body={"name": "mobile", "permissions": ["content:read"]})
        self.assertEqual(created["statusCode"], 201)
        key = body_of(created)
        self.assertTrue(key["secret"].startswith("sk_"))
        self.assertNotIn("secret_hash", key)

        listed = body_of(self.call(api_keys, "GET", KEYS, token=self.token))["keys"]
        self.assertEqual(len(listed), 2)
        self.assertTrue(all("secret" not in k and "secret_hash" not in k for k in listed))

        revoked = self.call(api_keys, "DELETE", KEY, {"keyId": key["id"]}, token=self.token)
        self.assertEqual(body_of(revoked)["status"], "revoked")

    def test_unknown_key_is_404(self):
        response = self.call(api_keys, "DELETE", KEY, {"keyId": "missing"}, token=self.token)
        self.assertEqual(response["statusCode"], 404)
        self.assertEqual(body_of(response)["error"]["message"], "Resource not found")

    def test_update_limits(self):
        key_id = self.container.security.verify(self.token).key_id
        response = self.call(api_keys, "PUT", LIMITS, {"keyId": key_id}, token=self.token, body={"per_minute": 2})
        self.assertEqual(response["statusCode"], 200)
        self.assertEqual(body_of(response), {"per_minute": 2, "per_hour": 1000, "per_day": 10000})

        bad = self.call(api_keys, "PUT", LIMITS, {"keyId": key_id}, token=self.token, body={"per_minute": -1})
        self.assertEqual(bad["statusCode"], 400)

    def test_rate_limited_requests_get_429(self):
        key_id = self.container.security.verify(self.token).key_id
        self.container.rate_limits.update_api_key_limits(key_id, TENANT_ID, {"per_minute": 2, "per_hour": 10, "per_day": 10})

        responses = [self.call(api_keys, "GET", KEYS, token=self.token) for _ in range(3)]
        self.assertEqual([r["statusCode"] for r in responses], [200, 200, 429])
        self.assertEqual(body_of(responses[2])["error"]["details"], {"window": "minute"})

    def test_daily_limit_applies_across_hours(self):
        created = self.container.auth.generate_api_key(TENANT_ID, "batch", ["keys:manage"], "tests")
        self.container.rate_limits.update_api_key_limits(
            created.api_key.id, TENANT_ID, {"per_minute": 2, "per_hour": 2, "per_day": 3}
        )

        def fresh_token():
            return self.container.auth.authenticate(created.api_key.key, created.secret, TENANT_ID).token

        for _ in range(3):
            self.assertEqual(self.call(api_keys, "GET", KEYS, token=fresh_token())["statusCode"], 200)
            self.clock.advance(hours=2)

        response = self.call(api_keys, "GET", KEYS, token=fresh_token())
        self.assertEqual(response["statusCode"], 429)
        self.assertEqual(body_of(response)["error"]["details"], {"window": "day"})

    def test_usage_recorded(self):
        self.call(api_keys, "GET", KEYS, token=self.token)
        key_id = self.container.security.verify(self.token).key_id
        usage = self.container.rate_limits.get_usage(key_id)
        self.assertEqual(len(usage), 1)
        self.assertEqual((usage[0].endpoint, usage[0].method, usage[0].status_code), (KEYS, "GET", 200))

    def test_get_usage(self):
        key_id = self.container.security.verify(self.token).key_id
        self.call(api_keys, "GET", KEYS, token=self.token)
        self.call(api_keys, "DELETE", KEY, {"keyId": "missing"}, token=self.token)

        response = self.call(api_keys, "GET", USAGE, {"keyId": key_id}, token=self.token)
        self.assertEqual(response["statusCode"], 200)
        usage = body_of(response)["usage"]
        self.assertEqual([(u["endpoint"], u["status_code"]) for u in usage], [(KEY, 404), (KEYS, 200)])

        limited = self.call(api_keys, "GET", USAGE, {"keyId": key_id}, token=self.token, query={"limit": "1"})
        self.assertEqual(len(body_of(limited)["usage"]), 1)

        bad = self.call(api_keys, "GET", USAGE, {"keyId": key_id}, token=self.token, query={"limit": "many"})
        self.assertEqual(bad["statusCode"], 400)

        missing = self.call(api_keys, "GET", USAGE, {"keyId": "missing"}, token=self.token)
        self.assertEqual(missing["statusCode"], 404)


class TestResponseHeaders(HandlerTestCase):
    def test_cors_for_allowed_origin(self):
        self.container.tenants.put(Tenant(
            tenant_id=TENANT_ID, name="Acme", email="a@acme.com", allowed_origins=["https://*.acme.com"]
        ))
        allowed = self.call(api_keys, "GET", KEYS, token=self.token, headers={"Origin": "https://app.acme.com"})
        self.assertEqual(allowed["headers"]["Access-Control-Allow-Origin"], "https://app.acme.com")

        denied = self.call(api_keys, "GET", KEYS, token=self.token, headers={"Origin": "https://evil.com"})
        self.assertNotIn("Access-Control-Allow-Origin", denied["headers"])

        apex = self.call(api_keys, "GET", KEYS, token=self.token, headers={"Origin": "https://acme.com"})
        self.assertNotIn("Access-Control-Allow-Origin", apex["headers"])

    def test_preflight(self):
        self.container.tenants.put(Tenant(
            tenant_id=TENANT_ID, name="Acme", email="a@acme.com", allowed_origins=["https://app.acme.com"]
        ))
        response = self.call(api_keys, "OPTIONS", KEYS, headers={"Origin": "https://app.acme.com"})
        self.assertEqual(response["statusCode"], 204)
        self.assertIn("Authorization", response["headers"]["Access-Control-Allow-Headers"])

    def test_deprecation_headers(self):
        self.container.versions.deprecate_endpoint(
            KEYS,
            datetime(2025, 1, 1, tzinfo=timezone.utc),
            datetime(2025, 7, 1, tzinfo=timezone.utc),
        )
        headers = self.call(api_keys, "GET", KEYS, token=self.token)["headers"]
        self.assertEqual(headers["Deprecation"], "2025-01-01T00:00:00.000Z")
        self.assertEqual(headers["Sunset"], "2025-07-01T00:00:00.000Z")
        self.assertIn('rel="deprecation"', headers["Link"])


class TestOAuthHandler(HandlerTestCase):
    def setUp(self):
        super().setUp()
        response = self.call(oauth, "POST", CLIENTS, token=self.token, body={
            "name": "Partner",
            "redirect_uris": [REDIRECT],
            "allowed_scopes": ["content:read", "user:read"],
        })
        self.assertEqual(response["statusCode"], 201)
        self.client = body_of(response)

    def authorize(self, user_id=None, **overrides):
        query = {
            "client_id": self.client["client_id"],
            "redirect_uri": REDIRECT,
            "response_type": "code",
            "scope": "content:read",
            "state": "xyz",
            **overrides,
        }
        event = api_event("GET", AUTHORIZE, {"tenantId": TENANT_ID}, query=query)
        if user_id:
            event["requestContext"]["authorizer"] = {"user_id": user_id}
        return oauth.handler(event, None, container=self.container)

    def token_request(self, form):
        return self.call(
            oauth, "POST", TOKEN, body=urlencode(form),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    def test_client_secret_returned_once(self):
        self.assertIn("client_secret", self.client)
        listed = body_of(self.call(oauth, "GET", CLIENTS, token=self.token))["clients"]
        self.assertNotIn("client_secret", listed[0])

    def test_update_and_delete_client(self):
        params = {"clientId": self.client["client_id"]}
        updated = self.call(oauth, "PATCH", CLIENT, params, token=self.token, body={"active": False})
        self.assertFalse(body_of(updated)["active"])

        deleted = self.call(oauth, "DELETE", CLIENT, params, token=self.token)
        self.assertEqual(deleted["statusCode"], 204)
        self.assertEqual(self.call(oauth, "GET", CLIENT, params, token=self.token)["statusCode"], 404)

    def test_authorize_without_user_goes_to_consent(self):
        response = self.authorize()
        self.assertEqual(response["statusCode"], 302)
        location = urlparse(response["headers"]["Location"])
        self.assertEqual(f"{location.scheme}://{location.netloc}{location.path}",
                         self.container.settings.oauth_consent_url)
        query = parse_qs(location.query)
        self.assertEqual(query["client_id"], [self.client["client_id"]])
        self.assertEqual(query["state"], ["xyz"])

    def test_authorize_errors(self):
        response = self.authorize(response_type="token")
        self.assertEqual(response["statusCode"], 400)
        self.assertEqual(body_of(response)["error"], "unsupported_response_type")

        response = self.authorize(scope="keys:manage")
        self.assertEqual(body_of(response)["error"], "invalid_scope")

        response = self.authorize(client_id="apigate_missing")
        self.assertEqual(response["statusCode"], 401)
        self.assertEqual(body_of(response)["error"], "invalid_client")

    def test_code_flow(self):
        response = self.authorize(user_id="user_1")
        self.assertEqual(response["statusCode"], 302)
        callback = urlparse(response["headers"]["Location"])
        self.assertTrue(response["headers"]["Location"].startswith(REDIRECT))
        query = parse_qs(callback.query)
        self.assertEqual(query["state"], ["xyz"])

        form = {
            "grant_type": "authorization_code",
            "code": query["code"][0],
            "redirect_uri": REDIRECT,
            "client_id": self.client["client_id"],
            "client_secret": self.client["client_secret"],
        }
        response = self.token_request(form)
        self.assertEqual(response["statusCode"], 200)
        self.assertEqual(response["headers"]["Cache-Control"], "no-store")
        tokens = body_of(response)
        self.assertEqual(tokens["token_type"], "Bearer")
        self.assertEqual(tokens["expires_in"], 3600)
        self.assertEqual(tokens["scope"], "content:read")

        # Replay of the same code
        replay = self.token_request(form)
        self.assertEqual(replay["statusCode"], 400)
        self.assertEqual(body_of(replay), {"error": "invalid_grant", "error_description": "Authorization code already used"})

        refreshed = self.token_request({
            "grant_type": "refresh_token",
            "refresh_token": tokens["refresh_token"],
            "client_id": self.client["client_id"],
            "client_secret": self.client["client_secret"],
        })
        self.assertEqual(refreshed["statusCode"], 200)
        self.assertNotEqual(body_of(refreshed)["refresh_token"], tokens["refresh_token"])

    def test_token_errors(self):
        response = self.token_request({"grant_type": "password"})
        self.assertEqual(body_of(response)["error"], "unsupported_grant_type")

        response = self.token_request({"client_id": "x"})
        self.assertEqual(response["statusCode"], 400)
        self.assertEqual(body_of(response)["error"], "invalid_request")

        response = self.token_request({
            "grant_type": "refresh_token",
            "refresh_token": "missing",
            "client_id": self.client["client_id"],
            "client_secret": self.client["client_secret"],
        })
        self.assertEqual(body_of(response)["error"], "invalid_grant")


class TestWebhooksHandler(HandlerTestCase):
    def setUp(self):
        super().setUp()
        self.key_id = self.container.security.verify(self.token).key_id
        self.params = {"apiKeyId": self.key_id}

    def create(self, **body):
        payload = {"url": "https://hooks.example.com/in", "events": ["content.created"], **body}
        return self.call(webhooks, "POST", WEBHOOKS, self.params, token=self.token, body=payload)

    def test_create_and_list(self):
        created = self.create()
        self.assertEqual(created["statusCode"], 201)
        self.assertIn("secret", body_of(created))

        listed = body_of(self.call(webhooks, "GET", WEBHOOKS, self.params, token=self.token))["webhooks"]
        self.assertEqual(len(listed), 1)
        self.assertNotIn("secret", listed[0])

    def test_create_validation(self):
        self.assertEqual(body_of(self.create(url="http://hooks.example.com"))["error"]["code"], "invalid_url")
        self.assertEqual(body_of(self.create(events=[]))["error"]["code"], "no_events")

    def test_unknown_api_key(self):
        response = self.call(webhooks, "POST", WEBHOOKS, {"apiKeyId": "missing"}, token=self.token,
                             body={"url": "https://hooks.example.com/in", "events": ["a"]})
        self.assertEqual(response["statusCode"], 404)

    def test_update_and_delete(self):
        webhook_id = body_of(self.create())["id"]
        params = {**self.params, "webhookId": webhook_id}

        updated = self.call(webhooks, "PATCH", WEBHOOK, params, token=self.token, body={"events": ["user.updated"]})
        self.assertEqual(body_of(updated)["events"], ["user.updated"])

        detail = body_of(self.call(webhooks, "GET", WEBHOOK, params, token=self.token))
        self.assertEqual(detail["recent_events"], [])

        self.assertEqual(self.call(webhooks, "DELETE", WEBHOOK, params, token=self.token)["statusCode"], 204)
        self.assertEqual(self.call(webhooks, "GET", WEBHOOK, params, token=self.token)["statusCode"], 404)

    def test_webhook_of_other_key_is_hidden(self):
        webhook_id = body_of(self.create())["id"]
        params = {"apiKeyId": "another", "webhookId": webhook_id}
        self.assertEqual(self.call(webhooks, "GET", WEBHOOK, params, token=self.token)["statusCode"], 404)


class TestDocsHandler(HandlerTestCase):
    def test_docs(self):
        response = docs.handler(api_event("GET", DOCS, query={"version": "v1"}), None, container=self.container)
        self.assertEqual(response["statusCode"], 200)
        self.assertEqual(body_of(response)["openapi"], "3.0.3")

    def test_unknown_version(self):
        response = docs.handler(api_event("GET", DOCS, query={"version": "v9"}), None, container=self.container)
        self.assertEqual(response["statusCode"], 400)
        self.assertEqual(body_of(response)["error"]["code"], "unsupported_version")


if __name__ == "__main__":
    unittest.main()
