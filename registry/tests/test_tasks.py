from unittest import mock

from celery.exceptions import Retry
from django.contrib.auth import get_user_model
from django.test import TestCase

from projects.models import Project
from registry import ledger, tasks
from registry.constants import (
    CHAIN_CONFIRMED,
    CHAIN_FAILED,
    CHAIN_PENDING,
    TX_KIND_PROJECT_REGISTRATION,
    TX_STATUS_CONFIRMED,
    TX_STATUS_FAILED,
    TX_STATUS_PENDING,
)
from registry.exceptions import StoreUnavailable
from registry.models import Transaction

from .fakes import FakeAnchorClient

User = get_user_model()


class PollPendingTransactionsTests(TestCase):
    def setUp(self):
        owner = User.objects.create_user(username="prod", password="x", role=User.ROLE_PRODUCER)
        self.projects = []
        self.txs = []
        for i, tx_hash in enumerate(["0xa", "0xb", "0xc"]):
            project = Project.objects.create(
                id=f"proj_p{i}",
                owner=owner,
                title="T",
                description="D",
                chain_status=CHAIN_PENDING,
                chain_ref={"hash": "0xph", "transaction_hash": tx_hash},
            )
            self.projects.append(project)
            self.txs.append(
                ledger.record_attempt(TX_KIND_PROJECT_REGISTRATION, project.id, tx_hash, TX_STATUS_PENDING)
            )
        # Never reached the chain; must be ignored
        ledger.record_attempt(TX_KIND_PROJECT_REGISTRATION, "proj_p0", None, TX_STATUS_PENDING)

    def test_settles_final_transactions_only(self):
        chain = FakeAnchorClient(statuses={"0xa": "confirmed", "0xb": "failed"})

        with mock.patch("registry.anchor.get_anchor_client", return_value=chain):
            settled = tasks.poll_pending_transactions()

        self.assertEqual(settled, 2)
        statuses = {tx.transaction_hash: tx.status for tx in Transaction.objects.exclude(transaction_hash=None)}
        self.assertEqual(statuses, {"0xa": TX_STATUS_CONFIRMED, "0xb": TX_STATUS_FAILED, "0xc": TX_STATUS_PENDING})

        chain_statuses = [Project.objects.get(pk=p.pk).chain_status for p in self.projects]
        self.assertEqual(chain_statuses, [CHAIN_CONFIRMED, CHAIN_FAILED, CHAIN_PENDING])

    def test_unreachable_chain_leaves_everything_pending(self):
        with mock.patch("registry.anchor.get_anchor_client", return_value=None):
            result = tasks.poll_pending_transactions()

        self.assertEqual(result, "anchor_unavailable")
        self.assertEqual(Transaction.objects.filter(status=TX_STATUS_PENDING).count(), 4)

    def test_unknown_answer_is_skipped(self):
        chain = FakeAnchorClient(statuses={"0xa": None})

        with mock.patch("registry.anchor.get_anchor_client", return_value=chain):
            settled = tasks.poll_pending_transactions()

        self.assertEqual(settled, 0)


class RetryTaskTests(TestCase):
    def test_missing_subjects(self):
        self.assertEqual(tasks.retry_project_anchor_task("proj_missing"), "project_not_found")
        self.assertEqual(tasks.retry_submission_mint_task("sub_missing"), "submission_not_found")

    def test_project_retry(self):
        owner = User.objects.create_user(username="prod", password="x", role=User.ROLE_PRODUCER)
        project = Project.objects.create(
            id="proj_t1", owner=owner, title="T", description="D", chain_status=CHAIN_FAILED
        )

        with mock.patch("registry.anchor.get_anchor_client", return_value=FakeAnchorClient()):
            self.assertEqual(tasks.retry_project_anchor_task(project.id), CHAIN_PENDING)
            self.assertEqual(tasks.retry_project_anchor_task(project.id), "retry_not_allowed")

    def test_store_outage_reschedules(self):
        owner = User.objects.create_user(username="prod", password="x", role=User.ROLE_PRODUCER)
        project = Project.objects.create(
            id="proj_t2", owner=owner, title="T", description="D", chain_status=CHAIN_FAILED
        )
        task = tasks.retry_project_anchor_task

        with mock.patch("registry.orchestrator.retry_project_anchor", side_effect=StoreUnavailable()), \
                mock.patch.object(task, "retry", side_effect=Retry()) as retry:
            with self.assertRaises(Retry):
                task(project.id)

        self.assertIsInstance(retry.call_args.kwargs["exc"], StoreUnavailable)
        self.assertEqual(retry.call_args.kwargs["countdown"], tasks.STORE_RETRY_COUNTDOWN)
