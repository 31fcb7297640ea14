from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase

from projects.models import Project
from registry import state_machine
from registry.constants import (
    CHAIN_CONFIRMED,
    CHAIN_FAILED,
    CHAIN_NOT_ATTEMPTED,
    CHAIN_PENDING,
    CHAIN_SKIPPED,
)

User = get_user_model()


class CanTransitionTests(SimpleTestCase):
    def test_allowed_moves(self):
        allowed = [
            (CHAIN_NOT_ATTEMPTED, CHAIN_PENDING),
            (CHAIN_NOT_ATTEMPTED, CHAIN_FAILED),
            (CHAIN_NOT_ATTEMPTED, CHAIN_SKIPPED),
            (CHAIN_PENDING, CHAIN_CONFIRMED),
            (CHAIN_PENDING, CHAIN_FAILED),
            (CHAIN_FAILED, CHAIN_PENDING),
            (CHAIN_SKIPPED, CHAIN_PENDING),
        ]
        for current, new in allowed:
            ok, reason = state_machine.can_transition(current, new)
            self.assertTrue(ok, f"{current} -> {new}: {reason}")

    def test_confirmed_is_terminal(self):
        for new in (CHAIN_PENDING, CHAIN_FAILED, CHAIN_SKIPPED, CHAIN_NOT_ATTEMPTED):
            ok, _ = state_machine.can_transition(CHAIN_CONFIRMED, new)
            self.assertFalse(ok)

    def test_pending_cannot_be_skipped(self):
        ok, reason = state_machine.can_transition(CHAIN_PENDING, CHAIN_SKIPPED)
        self.assertFalse(ok)
        self.assertIn("Cannot transition", reason)

    def test_unknown_status_rejected(self):
        ok, reason = state_machine.can_transition(CHAIN_PENDING, "finalized")
        self.assertFalse(ok)
        self.assertIn("Invalid status", reason)

    def test_only_failed_and_skipped_are_retryable(self):
        self.assertTrue(state_machine.is_retryable(CHAIN_FAILED))
        self.assertTrue(state_machine.is_retryable(CHAIN_SKIPPED))
        self.assertFalse(state_machine.is_retryable(CHAIN_PENDING))
        self.assertFalse(state_machine.is_retryable(CHAIN_CONFIRMED))
        self.assertFalse(state_machine.is_retryable(CHAIN_NOT_ATTEMPTED))


class TransitionTests(TestCase):
    def setUp(self):
        owner = User.objects.create_user(username="prod", password="x", role=User.ROLE_PRODUCER)
        self.project = Project.objects.create(
            id="proj_sm1", owner=owner, title="T", description="D"
        )

    def test_transition_persists_status_and_extra_fields(self):
        ok, _ = state_machine.transition(
            self.project, "chain_status", CHAIN_PENDING,
            chain_ref={"hash": "0xabc", "transaction_hash": "0x1"},
        )
        self.assertTrue(ok)

        self.project.refresh_from_db()
        self.assertEqual(self.project.chain_status, CHAIN_PENDING)
        self.assertEqual(self.project.chain_ref["transaction_hash"], "0x1")

    def test_invalid_transition_leaves_row_untouched(self):
        ok, _ = state_machine.transition(self.project, "chain_status", CHAIN_CONFIRMED)
        self.assertFalse(ok)

        self.project.refresh_from_db()
        self.assertEqual(self.project.chain_status, CHAIN_NOT_ATTEMPTED)

    def test_stale_read_loses_race(self):
        stale = Project.objects.get(pk=self.project.pk)
        state_machine.transition(self.project, "chain_status", CHAIN_SKIPPED)

        # `stale` still believes not_attempted; conditional update must not apply
        ok, reason = state_machine.transition(stale, "chain_status", CHAIN_PENDING)
        self.assertFalse(ok)
        self.assertEqual(reason, "Status changed concurrently")

        self.project.refresh_from_db()
        self.assertEqual(self.project.chain_status, CHAIN_SKIPPED)

    def test_write_fields_keeps_status(self):
        state_machine.transition(self.project, "chain_status", CHAIN_PENDING)

        ok, _ = state_machine.write_fields(
            self.project, "chain_status", chain_ref={"hash": "0xabc", "transaction_hash": "0x2"}
        )
        self.assertTrue(ok)

        self.project.refresh_from_db()
        self.assertEqual(self.project.chain_status, CHAIN_PENDING)
        self.assertEqual(self.project.chain_ref["transaction_hash"], "0x2")

    def test_write_fields_on_stale_read(self):
        stale = Project.objects.get(pk=self.project.pk)
        state_machine.transition(self.project, "chain_status", CHAIN_FAILED)

        ok, reason = state_machine.write_fields(stale, "chain_status", chain_ref={"hash": "0xabc"})
        self.assertFalse(ok)
        self.assertEqual(reason, "Status changed concurrently")

        self.project.refresh_from_db()
        self.assertNotEqual(self.project.chain_ref, {"hash": "0xabc"})
