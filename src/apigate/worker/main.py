import json
import signal
import time

import boto3
from loguru import logger

from apigate.container import Container, get_container


class DeliveryPoller:
    """Long-polls the webhook queue and delivers one event per message."""

    def __init__(self, container: Container, queue_url: str = None, sqs=None, install_signals: bool = True):
        settings = container.settings
        self.webhooks = container.webhooks
        self.sqs = sqs or boto3.client("sqs", region_name=settings.region_name)
        self.queue_url = queue_url or settings.webhook_queue_url
        self.running = True

        if install_signals:
            signal.signal(signal.SIGTERM, self.stop)
            signal.signal(signal.SIGINT, self.stop)

    def stop(self, *args):
        logger.info("Stopping webhook delivery worker...")
        self.running = False

    def start(self):
        logger.info(f"Starting webhook delivery worker, polling {self.queue_url}...")
        while self.running:
            self.poll_once()

    def poll_once(self) -> int:
        try:
            response = self.sqs.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=10,
                WaitTimeSeconds=20,
                MessageAttributeNames=["All"],
            )
        except Exception as e:
            logger.error(f"Error polling SQS: {e}")
            time.sleep(5)
            return 0

        messages = response.get("Messages", [])
        for message in messages:
            self.process_message(message)
        return len(messages)

    def process_message(self, message) -> bool:
        receipt_handle = message["ReceiptHandle"]
        try:
            event_id = json.loads(message["Body"])["event_id"]
        except (ValueError, KeyError, TypeError) as e:
            # Unparseable messages would redeliver forever
            logger.error(f"Dropping malformed webhook message {message.get('MessageId')}: {e}")
            self.sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
            return False

        try:
            self.webhooks.deliver_event(event_id)
        except Exception as e:
            # Left on the queue; it returns after the visibility timeout
            logger.error(f"Error delivering webhook event {event_id}: {e}")
            return False

        self.sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
        return True


if __name__ == "__main__":
    poller = DeliveryPoller(get_container())
    poller.start()
