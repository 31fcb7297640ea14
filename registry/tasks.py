# registry/tasks.py
import logging

from celery import shared_task

from projects.models import Project
from submissions.models import Submission

from . import anchor, ledger, orchestrator
from .exceptions import InconsistentReconciliation, RetryNotAllowed, StoreUnavailable
from .models import Transaction

logger = logging.getLogger("scribe.registry.tasks")

# Rows examined per sweep
POLL_BATCH_SIZE = 200

# Seconds before a retry task runs again after the record store failed
STORE_RETRY_COUNTDOWN = 30


@shared_task
def poll_pending_transactions():
    """
    Ask the chain for finality of pending attempts and reconcile them.

    Rows without a hash never reached the chain and are left alone.
    """
    client = anchor.get_anchor_client()
    if client is None:
        return "anchor_unavailable"

    pending = (
        Transaction.objects
        .filter(status=Transaction.STATUS_PENDING, transaction_hash__isnull=False)
        .order_by("created_at")[:POLL_BATCH_SIZE]
    )

    settled = 0
    for tx in pending:
        final_status = client.transaction_status(tx.transaction_hash)
        if final_status not in (Transaction.STATUS_CONFIRMED, Transaction.STATUS_FAILED):
            continue
        try:
            ledger.reconcile(tx.id, final_status)
            settled += 1
        except InconsistentReconciliation as e:
            logger.error(f"Poller skipped {tx.id}: {e.detail}")

    logger.info(f"Finality sweep settled {settled} transaction(s)")
    return settled


@shared_task(bind=True, max_retries=3)
def retry_project_anchor_task(self, project_id: str):
    project = Project.objects.filter(pk=project_id).first()
    if project is None:
        return "project_not_found"

    try:
        outcome = orchestrator.retry_project_anchor(project)
    except RetryNotAllowed:
        return "retry_not_allowed"
    except StoreUnavailable as e:
        logger.warning(f"Record store unavailable retrying anchoring for {project_id}; rescheduling")
        raise self.retry(exc=e, countdown=STORE_RETRY_COUNTDOWN)

    return outcome.status


@shared_task(bind=True, max_retries=3)
def retry_submission_mint_task(self, submission_id: str):
    submission = Submission.objects.select_related("writer").filter(pk=submission_id).first()
    if submission is None:
        return "submission_not_found"

    try:
        outcome = orchestrator.retry_submission_mint(submission)
    except RetryNotAllowed:
        return "retry_not_allowed"
    except StoreUnavailable as e:
        logger.warning(f"Record store unavailable retrying mint for {submission_id}; rescheduling")
        raise self.retry(exc=e, countdown=STORE_RETRY_COUNTDOWN)

    return outcome.status
