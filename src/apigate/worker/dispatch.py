"""
Hand-off of pending webhook events so trigger_event never waits on delivery.
"""

import json
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, Protocol, Set

import boto3
from loguru import logger


class Dispatcher(Protocol):
    def dispatch(self, event_id: str, deliver: Callable[[str], object]) -> None: ...

    def close(self) -> None: ...


class ThreadPoolDispatcher:
    """Delivers in background threads of the current process."""

    def __init__(self, max_workers: int = 4):
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webhook")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def dispatch(self, event_id: str, deliver: Callable[[str], object]) -> None:
        future = self.executor.submit(deliver, event_id)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda f: self._done(event_id, f))

    def _done(self, event_id: str, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            logger.error(f"Webhook event {event_id} delivery crashed: {error}")

    def _drain(self, timeout: Optional[float] = None) -> None:
        """Block until every dispatched delivery has finished."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def close(self, timeout: Optional[float] = None) -> None:
        self._drain(timeout)
        self.executor.shutdown(wait=timeout is None)


class SqsDispatcher:
    """Queues event ids for the delivery worker (apigate.worker.main)."""

    def __init__(self, queue_url: str, region_name: str = "us-east-1"):
        self.sqs = boto3.client("sqs", region_name=region_name)
        self.queue_url = queue_url

    def dispatch(self, event_id: str, deliver: Callable[[str], object]) -> None:
        self.sqs.send_message(
            QueueUrl=self.queue_url,
            MessageBody=json.dumps({"event_id": event_id}),
            MessageAttributes={
                "EventID": {"DataType": "String", "StringValue": event_id},
            },
        )

    def close(self) -> None:
        self.sqs.close()
