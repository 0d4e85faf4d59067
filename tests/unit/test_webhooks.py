import hashlib
import hmac
import json
import unittest
from unittest.mock import patch

import httpx

from apigate.errors import InvalidUrl, NoEvents, WebhookNotFound
from apigate.models import WebhookEventStatus
from apigate.services.webhooks import SIGNATURE_HEADER, canonical_json, sign_payload, verify_signature
from apigate.worker.dispatch import ThreadPoolDispatcher
from apigate.worker.executor import WebhookSender
from support import OTHER_TENANT_ID, TENANT_ID, FakeClock, RecordingSender, build_test_container

URL = "https://hooks.partner.example.com/apigate"


class WebhookTestCase(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.sender = RecordingSender()
        self.container = build_test_container(clock=self.clock, sender=self.sender)
        self.webhooks = self.container.webhooks
        self.webhook = self.webhooks.register_webhook(TENANT_ID, "key_1", URL, ["content.created", "user.updated"])


class TestSubscriptions(WebhookTestCase):
    def test_register(self):
        self.assertTrue(self.webhook.active)
        self.assertEqual(self.webhook.failure_count, 0)
        self.assertEqual(len(self.webhook.secret), 64)

    def test_register_validation(self):
        with self.assertRaises(InvalidUrl):
            self.webhooks.register_webhook(TENANT_ID, "key_1", "http://hooks.example.com", ["a"])
        with self.assertRaises(NoEvents):
            self.webhooks.register_webhook(TENANT_ID, "key_1", URL, [])

    def test_list_filters_by_key(self):
        self.webhooks.register_webhook(TENANT_ID, "key_2", URL, ["a"])
        self.assertEqual(len(self.webhooks.list_webhooks(TENANT_ID)), 2)
        self.assertEqual([w.id for w in self.webhooks.list_webhooks(TENANT_ID, "key_1")], [self.webhook.id])
        self.assertEqual(self.webhooks.list_webhooks(OTHER_TENANT_ID), [])

    def test_delete(self):
        self.webhooks.delete_webhook(TENANT_ID, self.webhook.id)
        with self.assertRaises(WebhookNotFound):
            self.webhooks.get_webhook(TENANT_ID, self.webhook.id)


class TestDelivery(WebhookTestCase):
    def test_trigger_fans_out_to_subscribers(self):
        self.webhooks.register_webhook(TENANT_ID, "key_2", URL + "/other", ["user.updated"])
        self.webhooks.register_webhook(OTHER_TENANT_ID, "key_3", URL, ["content.created"])

        events = self.webhooks.trigger_event(TENANT_ID, "content.created", {"id": 7})
        self.assertEqual(len(events), 1)
        self.assertEqual(len(self.sender.calls), 1)

        call = self.sender.calls[0]
        self.assertEqual(call["url"], URL)
        self.assertEqual(call["body"]["event"], "content.created")
        self.assertEqual(call["body"]["payload"], {"id": 7})
        self.assertEqual(call["headers"]["X-Webhook-Event"], "content.created")
        self.assertEqual(call["headers"]["X-Webhook-Id"], events[0].id)

        stored = self.container.webhooks.events.get(events[0].id)
        self.assertEqual(stored.status, WebhookEventStatus.DELIVERED)
        self.assertEqual(stored.attempts, 1)

    def test_signature_header(self):
        payload = {"b": 2, "a": [1, {"c": None}]}
        self.webhooks.trigger_event(TENANT_ID, "content.created", payload)
        header = self.sender.calls[0]["headers"][SIGNATURE_HEADER]

        expected = hmac.new(
            self.webhook.secret.encode(),
            json.dumps(payload, separators=(",", ":"), sort_keys=True).encode(),
            hashlib.sha256,
        ).hexdigest()
        self.assertEqual(header, f"sha256={expected}")
        self.assertTrue(verify_signature(self.webhook.secret, payload, header))
        self.assertFalse(verify_signature("other", payload, header))

    def test_canonical_json_ignores_key_order(self):
        self.assertEqual(canonical_json({"b": 1, "a": 2}), '{"a":2,"b":1}')
        self.assertEqual(sign_payload("s", {"b": 1, "a": 2}), sign_payload("s", {"a": 2, "b": 1}))

    def test_disabled_after_five_failures(self):
        self.sender.succeed = False
        for _ in range(7):
            self.webhooks.trigger_event(TENANT_ID, "content.created", {})

        webhook = self.webhooks.get_webhook(TENANT_ID, self.webhook.id)
        self.assertFalse(webhook.active)
        self.assertEqual(webhook.failure_count, 5)
        self.assertEqual(len(self.sender.calls), 5)

        actions = [e.action for e in self.container.audit.get_tenant_audit(TENANT_ID)]
        self.assertIn("WEBHOOK_DISABLED", actions)

    def test_success_resets_failures(self):
        self.sender.succeed = False
        for _ in range(4):
            self.webhooks.trigger_event(TENANT_ID, "content.created", {})
        self.sender.succeed = True
        self.webhooks.trigger_event(TENANT_ID, "content.created", {})

        webhook = self.webhooks.get_webhook(TENANT_ID, self.webhook.id)
        self.assertTrue(webhook.active)
        self.assertEqual(webhook.failure_count, 0)
        self.assertEqual(webhook.last_triggered_at, self.clock.now)

    def test_manual_reenable(self):
        self.sender.succeed = False
        for _ in range(5):
            self.webhooks.trigger_event(TENANT_ID, "content.created", {})

        webhook = self.webhooks.update_webhook(TENANT_ID, self.webhook.id, active=True)
        self.assertTrue(webhook.active)
        self.assertEqual(webhook.failure_count, 0)

        self.sender.succeed = True
        self.webhooks.trigger_event(TENANT_ID, "content.created", {})
        self.assertEqual(len(self.sender.calls), 6)

    def test_webhook_deleted_mid_delivery(self):
        for succeed in (False, True):
            with self.subTest(succeed=succeed):
                webhook = self.webhooks.register_webhook(TENANT_ID, "key_9", URL, ["user.deleted"])

                def send(url, body, headers):
                    self.webhooks.delete_webhook(TENANT_ID, webhook.id)
                    return succeed

                self.sender.send = send
                events = self.webhooks.trigger_event(TENANT_ID, "user.deleted", {"id": 1})

                stored = self.webhooks.events.get(events[0].id)
                expected = WebhookEventStatus.DELIVERED if succeed else WebhookEventStatus.FAILED
                self.assertEqual(stored.status, expected)
                self.assertEqual(stored.attempts, 1)
                self.assertEqual(self.webhooks.list_webhooks(TENANT_ID, "key_9"), [])
                with self.assertRaises(WebhookNotFound):
                    self.webhooks.get_webhook(TENANT_ID, webhook.id)

    def test_edit_keeps_failures_recorded_meanwhile(self):
        snapshot = self.webhooks.get_webhook(TENANT_ID, self.webhook.id)

        def stale_read(tenant_id, webhook_id):
            for _ in range(5):
                self.webhooks.webhooks.record_failure(tenant_id, webhook_id, self.clock.now, 5)
            return snapshot

        with patch.object(self.webhooks, "get_webhook", side_effect=stale_read):
            updated = self.webhooks.update_webhook(TENANT_ID, self.webhook.id, url=URL + "/v2")

        self.assertEqual(updated.url, URL + "/v2")
        self.assertFalse(updated.active)
        self.assertEqual(updated.failure_count, 5)
        self.assertEqual(self.webhooks.get_webhook(TENANT_ID, self.webhook.id), updated)

    def test_update_missing_webhook(self):
        with self.assertRaises(WebhookNotFound):
            self.webhooks.update_webhook(TENANT_ID, "missing", url=URL)

    def test_deliver_skips_settled_and_inactive(self):
        events = self.webhooks.trigger_event(TENANT_ID, "content.created", {})
        self.webhooks.deliver_event(events[0].id)
        self.assertEqual(len(self.sender.calls), 1)

        self.container.dispatcher.dispatch = lambda event_id, deliver: None
        pending = self.webhooks.trigger_event(TENANT_ID, "content.created", {})
        self.webhooks.update_webhook(TENANT_ID, self.webhook.id, active=False)
        result = self.webhooks.deliver_event(pending[0].id)
        self.assertEqual(result.status, WebhookEventStatus.FAILED)
        self.assertEqual(len(self.sender.calls), 1)

        self.assertIsNone(self.webhooks.deliver_event("missing"))


class TestWebhookSender(unittest.TestCase):
    def sender_for(self, handler):
        return WebhookSender(client=httpx.Client(transport=httpx.MockTransport(handler)))

    def test_posts_json(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(204)

        sender = self.sender_for(handler)
        self.assertTrue(sender.send(URL, {"id": "e1"}, {"X-Webhook-Event": "a"}))
        self.assertEqual(seen["body"], {"id": "e1"})
        self.assertEqual(seen["headers"]["content-type"], "application/json")
        self.assertEqual(seen["headers"]["x-webhook-event"], "a")

    def test_non_2xx_is_failure(self):
        sender = self.sender_for(lambda request: httpx.Response(500))
        self.assertFalse(sender.send(URL, {}, {}))

    def test_transport_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        sender = self.sender_for(handler)
        self.assertFalse(sender.send(URL, {}, {}))


class TestThreadPoolDispatcher(unittest.TestCase):
    def test_runs_in_background(self):
        delivered = []
        dispatcher = ThreadPoolDispatcher(max_workers=2)
        for event_id in ("e1", "e2", "e3"):
            dispatcher.dispatch(event_id, delivered.append)
        dispatcher.close(timeout=5)
        self.assertEqual(sorted(delivered), ["e1", "e2", "e3"])

    def test_crash_is_contained(self):
        dispatcher = ThreadPoolDispatcher(max_workers=1)

        def explode(event_id):
            raise RuntimeError("boom")

        dispatcher.dispatch("e1", explode)
        dispatcher.close(timeout=5)


if __name__ == "__main__":
    unittest.main()
