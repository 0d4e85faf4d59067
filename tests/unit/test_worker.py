import json
import unittest
from unittest.mock import Mock

import boto3
from moto import mock_aws

from apigate.models import WebhookEventStatus
from apigate.worker.dispatch import SqsDispatcher
from apigate.worker.main import DeliveryPoller
from support import TENANT_ID, RecordingSender, build_test_container

URL = "https://hooks.partner.example.com/apigate"


@mock_aws
class TestDeliveryPoller(unittest.TestCase):
    def setUp(self):
        self.region = "us-east-1"
        self.sqs = boto3.client("sqs", region_name=self.region)
        self.queue_url = self.sqs.create_queue(QueueName="apigate-webhooks-prod")["QueueUrl"]

        self.sender = RecordingSender()
        self.container = build_test_container(sender=self.sender)
        # Trigger through the queue rather than inline delivery
        self.container.webhooks.dispatcher = SqsDispatcher(self.queue_url, region_name=self.region)
        self.webhook = self.container.webhooks.register_webhook(TENANT_ID, "key_1", URL, ["content.created"])

        self.poller = DeliveryPoller(self.container, queue_url=self.queue_url, sqs=self.sqs, install_signals=False)

    def queue_depth(self):
        attributes = self.sqs.get_queue_attributes(
            QueueUrl=self.queue_url,
            AttributeNames=["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"],
        )["Attributes"]
        return int(attributes["ApproximateNumberOfMessages"]) + int(attributes["ApproximateNumberOfMessagesNotVisible"])

    def test_trigger_enqueues_without_delivering(self):
        self.container.webhooks.trigger_event(TENANT_ID, "content.created", {"id": 1})
        self.assertEqual(self.sender.calls, [])
        self.assertEqual(self.queue_depth(), 1)

    def test_poll_delivers_and_deletes(self):
        events = self.container.webhooks.trigger_event(TENANT_ID, "content.created", {"id": 1})

        processed = self.poller.poll_once()
        self.assertEqual(processed, 1)
        self.assertEqual(len(self.sender.calls), 1)
        self.assertEqual(self.queue_depth(), 0)

        stored = self.container.webhooks.events.get(events[0].id)
        self.assertEqual(stored.status, WebhookEventStatus.DELIVERED)

    def test_failed_delivery_is_not_retried_by_queue(self):
        self.sender.succeed = False
        self.container.webhooks.trigger_event(TENANT_ID, "content.created", {"id": 1})
        self.poller.poll_once()
        # A failed attempt is recorded on the webhook; the message is still consumed
        self.assertEqual(self.queue_depth(), 0)
        self.assertEqual(self.container.webhooks.get_webhook(TENANT_ID, self.webhook.id).failure_count, 1)

    def test_crash_leaves_message_on_queue(self):
        self.container.webhooks.trigger_event(TENANT_ID, "content.created", {"id": 1})
        self.poller.webhooks = Mock()
        self.poller.webhooks.deliver_event.side_effect = RuntimeError("store down")

        self.poller.poll_once()
        self.assertEqual(self.queue_depth(), 1)

    def test_malformed_message_dropped(self):
        self.sqs.send_message(QueueUrl=self.queue_url, MessageBody=json.dumps({"job_id": "x"}))
        self.poller.poll_once()
        self.assertEqual(self.queue_depth(), 0)

    def test_stop(self):
        self.poller.stop()
        self.assertFalse(self.poller.running)


if __name__ == "__main__":
    unittest.main()
