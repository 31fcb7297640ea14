from datetime import datetime, timezone
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.exceptions import NotFound, PermissionDenied

from projects.models import Project
from registry import ledger, orchestrator
from registry.constants import (
    ANCHOR_UNAVAILABLE,
    CHAIN_CONFIRMED,
    CHAIN_FAILED,
    CHAIN_NOT_ATTEMPTED,
    CHAIN_PENDING,
    CHAIN_SKIPPED,
    ERROR_KIND_FAILED,
    ERROR_KIND_UNAVAILABLE,
    TX_KIND_PROJECT_REGISTRATION,
    TX_KIND_SUBMISSION_MINT,
    TX_STATUS_CONFIRMED,
    TX_STATUS_FAILED,
    TX_STATUS_PENDING,
)
from registry.exceptions import (
    ContentStoreFailure,
    DuplicateSubmission,
    ProjectNotOpen,
    RetryNotAllowed,
    StatusConflict,
)
from registry.models import Transaction
from submissions.models import Submission

from .fakes import FakeAnchorClient, FakeContentStore, rejected_anchor, rejected_mint

User = get_user_model()

WALLET = "0x" + "a1" * 20
SCRIPT = b"FADE IN:\nEXT. NEON CITY - NIGHT\nRain hammers the skyline."


class OrchestratorTestCase(TestCase):
    def setUp(self):
        self.producer = User.objects.create_user(username="producer", password="x", role=User.ROLE_PRODUCER)
        self.writer = User.objects.create_user(
            username="writer", password="x", role=User.ROLE_WRITER, wallet_address=WALLET
        )
        self.chain = FakeAnchorClient()
        self.store = FakeContentStore()

        patches = [
            mock.patch("registry.anchor.get_anchor_client", return_value=self.chain),
            mock.patch("registry.content_store.get_content_store", return_value=self.store),
            mock.patch("registry.scoring.score_content", return_value={"overall": 80}),
        ]
        self.get_client, self.get_store, self.score = [p.start() for p in patches]
        for p in patches:
            self.addCleanup(p.stop)

    def make_project(self, **overrides):
        fields = {"title": "Neon City", "description": "A cyberpunk feature"}
        fields.update(overrides)
        project, _ = orchestrator.create_project(self.producer, fields)
        return project


class CreateProjectTests(OrchestratorTestCase):
    def test_anchored_project_is_pending_with_one_transaction(self):
        project, outcome = orchestrator.create_project(
            self.producer, {"title": "Neon City", "description": "A cyberpunk feature"}
        )

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.status, CHAIN_PENDING)

        project.refresh_from_db()
        self.assertTrue(project.id.startswith("proj_"))
        self.assertEqual(project.chain_status, CHAIN_PENDING)
        self.assertEqual(project.chain_ref["transaction_hash"], outcome.transaction_hash)

        tx = Transaction.objects.get(subject_id=project.id)
        self.assertEqual(tx.kind, TX_KIND_PROJECT_REGISTRATION)
        self.assertEqual(tx.status, TX_STATUS_PENDING)
        self.assertEqual(tx.metadata["payload_hash"], project.chain_ref["hash"])

    def test_chain_unavailable_keeps_project_and_records_skip(self):
        self.get_client.return_value = None

        project, outcome = orchestrator.create_project(
            self.producer, {"title": "Neon City", "description": "A cyberpunk feature"}
        )

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.status, CHAIN_SKIPPED)
        self.assertEqual(outcome.error, ANCHOR_UNAVAILABLE)
        self.assertIsNone(outcome.transaction_hash)

        project.refresh_from_db()
        self.assertEqual(project.chain_status, CHAIN_SKIPPED)

        tx = Transaction.objects.get(subject_id=project.id)
        self.assertEqual(tx.status, TX_STATUS_FAILED)
        self.assertIsNone(tx.transaction_hash)
        self.assertEqual(tx.metadata["error"], ANCHOR_UNAVAILABLE)
        self.assertEqual(tx.metadata["error_kind"], ERROR_KIND_UNAVAILABLE)

    def test_chain_rejection_is_failed_not_raised(self):
        self.chain.anchor_results = [rejected_anchor()]

        project, outcome = orchestrator.create_project(
            self.producer, {"title": "Neon City", "description": "A cyberpunk feature"}
        )

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.status, CHAIN_FAILED)
        self.assertIn("registry paused", outcome.error)
        self.assertTrue(Project.objects.filter(pk=project.id).exists())

        tx = Transaction.objects.get(subject_id=project.id)
        self.assertEqual(tx.metadata["error_kind"], ERROR_KIND_FAILED)

    def test_writer_cannot_create_project(self):
        with self.assertRaises(PermissionDenied):
            orchestrator.create_project(self.writer, {"title": "T", "description": "D"})
        self.assertEqual(Project.objects.count(), 0)

    def test_payload_hash_is_stable_across_reads(self):
        project = self.make_project(
            budget=Decimal("2500"),
            deadline=datetime(2027, 1, 1, 12, 0, tzinfo=timezone.utc),
            requirements=["Sci-fi"],
        )
        anchored_hash = project.chain_ref["hash"]

        reloaded = Project.objects.get(pk=project.id)
        self.assertEqual(orchestrator.hash_payload(orchestrator.project_payload(reloaded)), anchored_hash)
        self.assertEqual(self.chain.anchor_calls[0], (project.id, anchored_hash))


class RetryProjectAnchorTests(OrchestratorTestCase):
    def test_failed_then_retry_appends_second_transaction(self):
        self.chain.anchor_results = [rejected_anchor()]
        project = self.make_project()

        outcome = orchestrator.retry_project_anchor(project, self.producer)

        self.assertTrue(outcome.success)
        project.refresh_from_db()
        self.assertEqual(project.chain_status, CHAIN_PENDING)

        history = list(ledger.transactions_for_subject(project.id))
        self.assertEqual([tx.status for tx in history], [TX_STATUS_PENDING, TX_STATUS_FAILED])
        # Same subject id, same payload hash on both attempts
        self.assertEqual(self.chain.anchor_calls[0], self.chain.anchor_calls[1])

    def test_skipped_recovers_on_retry(self):
        self.get_client.return_value = None
        project = self.make_project()

        self.get_client.return_value = self.chain
        outcome = orchestrator.retry_project_anchor(project, self.producer)

        self.assertEqual(outcome.status, CHAIN_PENDING)

    def test_retry_while_pending_is_rejected(self):
        project = self.make_project()

        with self.assertRaises(RetryNotAllowed):
            orchestrator.retry_project_anchor(project, self.producer)

    def test_only_owner_may_retry(self):
        self.get_client.return_value = None
        project = self.make_project()

        with self.assertRaises(PermissionDenied):
            orchestrator.retry_project_anchor(project, self.writer)

    def test_overlapping_retries_anchor_once(self):
        self.chain.anchor_results = [rejected_anchor()]
        project = self.make_project()
        first = Project.objects.get(pk=project.id)
        second = Project.objects.get(pk=project.id)

        outcome = orchestrator.retry_project_anchor(first, self.producer)
        with self.assertRaises(RetryNotAllowed):
            orchestrator.retry_project_anchor(second, self.producer)

        self.assertEqual(len(self.chain.anchor_calls), 2)
        project.refresh_from_db()
        self.assertEqual(project.chain_ref["transaction_hash"], outcome.transaction_hash)
        self.assertEqual(
            Transaction.objects.filter(subject_id=project.id, status=TX_STATUS_PENDING).count(), 1
        )

    def test_stale_status_write_is_reported(self):
        self.get_client.return_value = None
        project = self.make_project()
        stale = Project.objects.get(pk=project.id)
        Project.objects.filter(pk=project.id).update(chain_status=CHAIN_PENDING)

        with self.assertRaises(StatusConflict):
            orchestrator.anchor_project(stale)

        project.refresh_from_db()
        self.assertEqual(project.chain_status, CHAIN_PENDING)

    def test_confirmed_after_reconcile(self):
        project = self.make_project()
        tx = Transaction.objects.get(subject_id=project.id)

        ledger.reconcile(tx.id, TX_STATUS_CONFIRMED)

        project.refresh_from_db()
        self.assertEqual(project.chain_status, CHAIN_CONFIRMED)


class CreateSubmissionTests(OrchestratorTestCase):
    def setUp(self):
        super().setUp()
        self.project = self.make_project()

    def submit(self, writer=None, content=SCRIPT, title="Neon City draft"):
        return orchestrator.create_submission(
            writer or self.writer, self.project.id, {"title": title}, content
        )

    def test_happy_path_mints_token(self):
        result = self.submit()
        submission = result.submission

        self.assertTrue(result.mint.success)
        self.assertTrue(submission.id.startswith("sub_"))
        self.assertTrue(submission.content_ref.startswith("sha256:"))
        self.assertEqual(submission.score, {"overall": 80})

        submission.refresh_from_db()
        self.assertEqual(submission.mint_status, CHAIN_PENDING)
        self.assertEqual(submission.token_ref["token_id"], result.mint.token_id)

        tx = Transaction.objects.get(subject_id=submission.id)
        self.assertEqual(tx.kind, TX_KIND_SUBMISSION_MINT)
        self.assertEqual(tx.transaction_hash, submission.token_ref["transaction_hash"])
        self.assertEqual(tx.metadata["content_ref"], submission.content_ref)
        self.assertEqual(tx.metadata["token_id"], result.mint.token_id)
        self.assertEqual(self.chain.mint_calls, [(WALLET, submission.content_ref, submission.id)])

    def test_scoring_runs_once_with_requirements(self):
        self.submit()
        self.score.assert_called_once()
        self.assertEqual(self.score.call_args.args[1], self.project.requirements)

    def test_second_submission_is_duplicate_and_has_no_side_effects(self):
        first = self.submit().submission

        with self.assertRaises(DuplicateSubmission) as ctx:
            self.submit(content=b"a different draft")

        self.assertEqual(ctx.exception.submission_id, first.id)
        self.assertEqual(Submission.objects.count(), 1)
        self.assertEqual(len(self.store.objects), 1)
        self.assertEqual(len(self.chain.mint_calls), 1)

    def test_concurrent_duplicate_reports_winner(self):
        winner = Submission.objects.create(
            id="sub_winner", project=self.project, writer=self.writer, title="Winner"
        )

        # The precheck ran before the winner committed
        with mock.patch(
            "registry.orchestrator._existing_submission_id",
            side_effect=[None, winner.id],
        ):
            with self.assertRaises(DuplicateSubmission) as ctx:
                self.submit()

        self.assertEqual(ctx.exception.submission_id, "sub_winner")
        self.assertEqual(Submission.objects.count(), 1)
        self.assertEqual(self.chain.mint_calls, [])

    def test_content_store_failure_creates_nothing(self):
        self.store.fail = True

        with self.assertRaises(ContentStoreFailure):
            self.submit()

        self.assertEqual(Submission.objects.count(), 0)
        self.assertFalse(Transaction.objects.filter(kind=TX_KIND_SUBMISSION_MINT).exists())
        self.score.assert_not_called()

    def test_missing_project(self):
        with self.assertRaises(NotFound):
            orchestrator.create_submission(self.writer, "proj_nope", {"title": "T"}, SCRIPT)

    def test_closed_project(self):
        Project.objects.filter(pk=self.project.pk).update(status=Project.STATUS_FUNDED)

        with self.assertRaises(ProjectNotOpen):
            self.submit()
        self.assertEqual(self.store.objects, {})

    def test_legacy_published_status_accepts_submissions(self):
        Project.objects.filter(pk=self.project.pk).update(status="published")
        self.assertTrue(self.submit().mint.success)

    def test_producer_cannot_submit(self):
        with self.assertRaises(PermissionDenied):
            self.submit(writer=self.producer)

    def test_mint_failure_keeps_submission(self):
        self.chain.mint_results = [rejected_mint(transaction_hash="0xdead")]

        result = self.submit()

        self.assertFalse(result.mint.success)
        self.assertEqual(result.mint.status, CHAIN_FAILED)

        submission = Submission.objects.get(pk=result.submission.id)
        self.assertEqual(submission.mint_status, CHAIN_FAILED)
        self.assertIsNone(submission.token_ref)

        tx = Transaction.objects.get(subject_id=submission.id)
        self.assertEqual(tx.status, TX_STATUS_FAILED)
        self.assertEqual(tx.transaction_hash, "0xdead")

    def test_mint_retry_after_failure(self):
        self.chain.mint_results = [rejected_mint()]
        submission = self.submit().submission

        outcome = orchestrator.retry_submission_mint(submission, self.writer)

        self.assertTrue(outcome.success)
        submission.refresh_from_db()
        self.assertEqual(submission.mint_status, CHAIN_PENDING)
        self.assertEqual(Transaction.objects.filter(subject_id=submission.id).count(), 2)
        # Content was stored exactly once
        self.assertEqual(len(self.store.objects), 1)

    def test_overlapping_mint_retries_mint_once(self):
        self.chain.mint_results = [rejected_mint()]
        submission_id = self.submit().submission.id
        first = Submission.objects.select_related("writer").get(pk=submission_id)
        second = Submission.objects.select_related("writer").get(pk=submission_id)

        outcome = orchestrator.retry_submission_mint(first, self.writer)
        with self.assertRaises(RetryNotAllowed):
            orchestrator.retry_submission_mint(second, self.writer)

        self.assertEqual(len(self.chain.mint_calls), 2)
        stored = Submission.objects.get(pk=submission_id)
        self.assertEqual(stored.mint_status, CHAIN_PENDING)
        self.assertEqual(stored.token_ref["token_id"], outcome.token_id)
        self.assertEqual(
            Transaction.objects.filter(
                subject_id=submission_id, kind=TX_KIND_SUBMISSION_MINT, status=TX_STATUS_PENDING
            ).count(),
            1,
        )

    def test_failed_retry_releases_claim(self):
        self.chain.mint_results = [rejected_mint(), rejected_mint()]
        submission = self.submit().submission

        outcome = orchestrator.retry_submission_mint(submission, self.writer)

        self.assertEqual(outcome.status, CHAIN_FAILED)
        submission.refresh_from_db()
        self.assertEqual(submission.mint_status, CHAIN_FAILED)
        self.assertIsNone(submission.token_ref)

    def test_writer_without_wallet_is_skipped(self):
        self.writer.wallet_address = None
        self.writer.save()

        result = self.submit()

        self.assertEqual(result.mint.status, CHAIN_SKIPPED)
        self.assertEqual(self.chain.mint_calls, [])
        tx = Transaction.objects.get(subject_id=result.submission.id)
        self.assertEqual(tx.metadata["error_kind"], ERROR_KIND_UNAVAILABLE)

    def test_chain_unavailable_skips_mint(self):
        self.get_client.return_value = None

        result = self.submit()

        submission = Submission.objects.get(pk=result.submission.id)
        self.assertEqual(submission.mint_status, CHAIN_SKIPPED)
        self.assertEqual(submission.content_ref, result.submission.content_ref)

    def test_retry_not_allowed_once_minted(self):
        submission = self.submit().submission

        with self.assertRaises(RetryNotAllowed):
            orchestrator.retry_submission_mint(submission, self.writer)


class LedgerInvariantTests(OrchestratorTestCase):
    """Cross-cutting checks over a mixed run of successes and failures."""

    def test_every_token_has_a_ledger_row_and_every_attempt_is_recorded(self):
        self.chain.anchor_results = [rejected_anchor()]
        project = self.make_project()
        orchestrator.retry_project_anchor(project, self.producer)

        writers = [
            User.objects.create_user(username=f"w{i}", password="x", wallet_address=WALLET)
            for i in range(3)
        ]
        self.chain.mint_results = [rejected_mint()]
        for writer in writers:
            orchestrator.create_submission(writer, project.id, {"title": "Draft"}, SCRIPT + writer.username.encode())

        self.assertEqual(len(self.chain.anchor_calls), Transaction.objects.filter(kind=TX_KIND_PROJECT_REGISTRATION).count())
        self.assertEqual(len(self.chain.mint_calls), Transaction.objects.filter(kind=TX_KIND_SUBMISSION_MINT).count())

        for submission in Submission.objects.filter(token_ref__isnull=False):
            self.assertTrue(
                Transaction.objects.filter(
                    subject_id=submission.id,
                    transaction_hash=submission.token_ref["transaction_hash"],
                    status__in=[TX_STATUS_PENDING, TX_STATUS_CONFIRMED],
                ).exists()
            )

        for submission in Submission.objects.all():
            self.assertNotEqual(submission.mint_status, CHAIN_NOT_ATTEMPTED)
