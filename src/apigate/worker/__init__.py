from .executor import WebhookSender
from .dispatch import Dispatcher, SqsDispatcher, ThreadPoolDispatcher

__all__ = ["WebhookSender", "Dispatcher", "SqsDispatcher", "ThreadPoolDispatcher"]
