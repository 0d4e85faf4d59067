"""
Per-tenant webhook subscriptions and signed delivery.

Each trigger produces one WebhookEvent per active subscriber and one delivery
attempt per event. Failures are counted on the webhook; once the count reaches
max_failures the webhook is deactivated until re-enabled through update_webhook.
"""

import hashlib
import hmac
import json
import secrets
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import ulid
from loguru import logger

from apigate.errors import InvalidUrl, NoEvents, WebhookNotFound
from apigate.models import Webhook, WebhookEvent, WebhookEventStatus, utc_now
from apigate.services.audit import AuditService
from apigate.stores import WebhookEventStore, WebhookStore

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
ID_HEADER = "X-Webhook-Id"


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)


def sign_payload(secret: str, payload: Dict[str, Any]) -> str:
    return hmac.new(secret.encode(), canonical_json(payload).encode(), hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: Dict[str, Any], signature: str) -> bool:
    """Receiver-side check; accepts the header value with or without its sha256= prefix."""
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(sign_payload(secret, payload), signature)


def _validate_url(url: str) -> str:
    parsed = urlparse(url or "")
    if parsed.scheme != "https" or not parsed.netloc:
        raise InvalidUrl()
    return url


def _validate_events(events: Iterable[str]) -> List[str]:
    cleaned: List[str] = []
    for event in events or []:
        event = event.strip()
        if event and event not in cleaned:
            cleaned.append(event)
    if not cleaned:
        raise NoEvents()
    return cleaned


class WebhookService:
    def __init__(
        self,
        webhooks: WebhookStore,
        events: WebhookEventStore,
        sender,
        dispatcher,
        audit: AuditService,
        max_failures: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.webhooks = webhooks
        self.events = events
        self.sender = sender
        self.dispatcher = dispatcher
        self.audit = audit
        self.max_failures = max_failures
        self.clock = clock

    # Subscriptions

    def register_webhook(self, tenant_id: str, api_key_id: str, url: str, events: Iterable[str]) -> Webhook:
        url = _validate_url(url)
        events = _validate_events(events)

        now = self.clock()
        webhook = Webhook(
            id=str(ulid.new()),
            tenant_id=tenant_id,
            api_key_id=api_key_id,
            url=url,
            secret=secrets.token_hex(32),
            events=events,
            active=True,
            failure_count=0,
            created_at=now,
            updated_at=now,
        )
        self.webhooks.put(webhook)
        self.audit.log_action(tenant_id, "REGISTER_WEBHOOK", webhook.id, metadata={"url": url, "events": events})
        return webhook

    def get_webhook(self, tenant_id: str, webhook_id: str) -> Webhook:
        webhook = self.webhooks.get(tenant_id, webhook_id)
        if webhook is None:
            raise WebhookNotFound()
        return webhook

    def list_webhooks(self, tenant_id: str, api_key_id: Optional[str] = None) -> List[Webhook]:
        webhooks = self.webhooks.list_by_tenant(tenant_id)
        if api_key_id is not None:
            webhooks = [w for w in webhooks if w.api_key_id == api_key_id]
        return sorted(webhooks, key=lambda w: w.created_at)

    def update_webhook(
        self,
        tenant_id: str,
        webhook_id: str,
        url: Optional[str] = None,
        events: Optional[Iterable[str]] = None,
        active: Optional[bool] = None,
    ) -> Webhook:
        current = self.get_webhook(tenant_id, webhook_id)
        # Only edited fields are written so concurrent failure counting is preserved
        fields: Dict[str, Any] = {"updated_at": self.clock()}
        if url is not None:
            fields["url"] = _validate_url(url)
        if events is not None:
            fields["events"] = _validate_events(events)
        if active is not None:
            fields["active"] = active
            if active and not current.active:
                # Manual re-enable starts a fresh failure budget
                fields["failure_count"] = 0

        webhook = self.webhooks.update_fields(tenant_id, webhook_id, fields)
        if webhook is None:
            raise WebhookNotFound()
        self.audit.log_action(tenant_id, "UPDATE_WEBHOOK", webhook_id, metadata={"active": webhook.active})
        return webhook

    def delete_webhook(self, tenant_id: str, webhook_id: str) -> None:
        self.get_webhook(tenant_id, webhook_id)
        self.webhooks.delete(tenant_id, webhook_id)
        self.audit.log_action(tenant_id, "DELETE_WEBHOOK", webhook_id)

    def list_events(self, tenant_id: str, webhook_id: str) -> List[WebhookEvent]:
        self.get_webhook(tenant_id, webhook_id)
        return sorted(self.events.list_by_webhook(webhook_id), key=lambda e: e.created_at, reverse=True)

    # Delivery

    def trigger_event(self, tenant_id: str, event: str, payload: Dict[str, Any]) -> List[WebhookEvent]:
        """Create one pending event per active subscriber and hand each to the dispatcher."""
        subscribers = [
            w for w in self.webhooks.list_by_tenant(tenant_id)
            if w.active and event in w.events
        ]
        created: List[WebhookEvent] = []
        for webhook in subscribers:
            webhook_event = WebhookEvent(
                id=str(ulid.new()),
                webhook_id=webhook.id,
                tenant_id=tenant_id,
                event=event,
                payload=payload,
                status=WebhookEventStatus.PENDING,
                attempts=0,
                created_at=self.clock(),
            )
            self.events.put(webhook_event)
            created.append(webhook_event)

        for webhook_event in created:
            self.dispatcher.dispatch(webhook_event.id, self.deliver_event)

        logger.info(f"Event {event} for tenant {tenant_id} fanned out to {len(created)} webhook(s)")
        return created

    def deliver_event(self, event_id: str) -> Optional[WebhookEvent]:
        webhook_event = self.events.get(event_id)
        if webhook_event is None:
            logger.warning(f"Webhook event {event_id} not found")
            return None
        if webhook_event.status != WebhookEventStatus.PENDING:
            return webhook_event

        webhook = self.webhooks.get(webhook_event.tenant_id, webhook_event.webhook_id)
        if webhook is None or not webhook.active:
            # Subscriber was removed or disabled after the trigger; no attempt is made
            webhook_event.status = WebhookEventStatus.FAILED
            self.events.put(webhook_event)
            return webhook_event

        signature = sign_payload(webhook.secret, webhook_event.payload)
        headers = {
            SIGNATURE_HEADER: f"sha256={signature}",
            EVENT_HEADER: webhook_event.event,
            ID_HEADER: webhook_event.id,
        }
        delivered = self.sender.send(webhook.url, webhook_event.delivery_body(), headers)

        now = self.clock()
        webhook_event.attempts += 1
        webhook_event.last_attempt_at = now
        if delivered:
            webhook_event.status = WebhookEventStatus.DELIVERED
            self.events.put(webhook_event)
            if self.webhooks.record_success(webhook.tenant_id, webhook.id, now) is None:
                logger.info(f"Webhook {webhook.id} was deleted during delivery of event {webhook_event.id}")
            return webhook_event

        webhook_event.status = WebhookEventStatus.FAILED
        self.events.put(webhook_event)
        updated = self.webhooks.record_failure(webhook.tenant_id, webhook.id, now, self.max_failures)
        if updated is None:
            logger.info(f"Webhook {webhook.id} was deleted during delivery of event {webhook_event.id}; dropping it")
            return webhook_event

        logger.warning(
            f"Delivery of {webhook_event.event} to webhook {webhook.id} failed "
            f"({updated.failure_count}/{self.max_failures})"
        )
        if webhook.active and not updated.active:
            logger.warning(f"Webhook {webhook.id} disabled after {updated.failure_count} consecutive failures")
            self.audit.log_action(
                webhook.tenant_id, "WEBHOOK_DISABLED", webhook.id,
                metadata={"failure_count": updated.failure_count},
            )
        return webhook_event
