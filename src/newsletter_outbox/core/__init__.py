"""Core logic of the publish pipeline.

This package contains:
- Coordinator: new-vs-duplicate decision on the idempotency table
- Outbox: issue insert and delivery task fan-out inside the admission transaction
- Publish: the idempotent publish operation tying the two together
- Delivery: workers that claim, send and delete delivery tasks
- Expiry: TTL-based removal of idempotency records
- Runtime: start/stop helpers for the background loops
"""

from newsletter_outbox.core.coordinator import (
    RequestCoordinator,
    ReturnSavedResponse,
    StartProcessing,
)
from newsletter_outbox.core.delivery import DeliveryWorker, EmailClient
from newsletter_outbox.core.expiry import ExpiryReaper
from newsletter_outbox.core.publish import NewsletterPublisher, PublishOutcome

__all__ = [
    "RequestCoordinator",
    "StartProcessing",
    "ReturnSavedResponse",
    "NewsletterPublisher",
    "PublishOutcome",
    "DeliveryWorker",
    "EmailClient",
    "ExpiryReaper",
]
