"""Transactional outbox writes performed inside the admission transaction.

The issue row and its delivery tasks are written on the transaction handed
out by the request coordinator, so they commit (or vanish) together with the
idempotency record. Recipients are snapshotted at enqueue time: subscribers
confirmed afterwards do not receive this issue.
"""

from datetime import datetime
from uuid import UUID

from newsletter_outbox.models import NewsletterIssue, NewsletterPayload
from newsletter_outbox.observability.logging import get_logger
from newsletter_outbox.storage.base import StoreTransaction

logger = get_logger(__name__)


async def insert_newsletter_issue(
    transaction: StoreTransaction,
    payload: NewsletterPayload,
    published_at: datetime,
) -> NewsletterIssue:
    """Insert a new issue built from ``payload``.

    Returns:
        The inserted issue, with its freshly generated id.
    """
    issue = NewsletterIssue(
        title=payload.title,
        html_content=payload.html,
        text_content=payload.text,
        published_at=published_at,
    )
    await transaction.insert_issue(issue)
    logger.debug("outbox.issue_inserted", newsletter_issue_id=str(issue.issue_id))
    return issue


async def enqueue_delivery_tasks(transaction: StoreTransaction, issue_id: UUID) -> int:
    """Enqueue one delivery task per confirmed subscriber.

    Returns:
        The number of tasks enqueued.
    """
    count = await transaction.enqueue_delivery_tasks(issue_id)
    logger.info(
        "outbox.tasks_enqueued",
        newsletter_issue_id=str(issue_id),
        task_count=count,
    )
    return count
