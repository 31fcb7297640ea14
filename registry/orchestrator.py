# registry/orchestrator.py
"""
Registration orchestrator.

Creates the authoritative local record first, then talks to the external
ledger / content store, appends a Transaction per attempt and moves the
record's anchoring status. Local success is never rolled back because an
external step failed; the failure is recorded and reported instead.

Ordering per subject:
  local record write -> external call -> Transaction append -> status update
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import timezone as dt_timezone
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import DatabaseError
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from projects.models import Project
from submissions.models import Submission

from . import anchor, content_store, ledger, scoring, state_machine
from .constants import (
    ANCHOR_UNAVAILABLE,
    CHAIN_FAILED,
    CHAIN_NOT_ATTEMPTED,
    CHAIN_PENDING,
    CHAIN_SKIPPED,
    ERROR_KIND_FAILED,
    ERROR_KIND_UNAVAILABLE,
    PROJECT_ID_PREFIX,
    SUBMISSION_ID_PREFIX,
    TX_KIND_PROJECT_REGISTRATION,
    TX_KIND_SUBMISSION_MINT,
    TX_STATUS_FAILED,
    TX_STATUS_PENDING,
)
from .exceptions import (
    DuplicateSubmission,
    ProjectNotOpen,
    RetryNotAllowed,
    StatusConflict,
    StoreUnavailable,
)
from .records import InsertOutcome, create_with_fresh_id

logger = logging.getLogger("scribe.registry")

WALLET_MISSING = "writer has no wallet address"

PROJECT_FIELDS = ("title", "description", "budget", "deadline", "requirements", "metadata", "status")


@dataclass
class AnchorOutcome:
    success: bool
    status: str
    transaction_hash: Optional[str] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    duplicate: bool = False

    def as_response(self) -> dict:
        data = {
            "success": self.success,
            "transactionHash": self.transaction_hash,
            "status": self.status,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class MintOutcome:
    success: bool
    status: str
    token_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None

    def as_response(self) -> dict:
        data = {"success": self.success, "status": self.status}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SubmissionOutcome:
    submission: Submission
    mint: Optional[MintOutcome] = None


# ==================== Helpers ====================

def _normalize_budget(value):
    if value is None:
        return None
    return f"{Decimal(value):.2f}"


def _normalize_deadline(value):
    if value is None:
        return None
    return value.astimezone(dt_timezone.utc).isoformat()


def project_payload(project: Project) -> dict:
    """The fields anchored on-chain. Stable across re-reads of the same row."""
    return {
        "id": project.id,
        "owner_id": str(project.owner_id),
        "title": project.title,
        "description": project.description,
        "budget": _normalize_budget(project.budget),
        "deadline": _normalize_deadline(project.deadline),
        "requirements": project.requirements or [],
    }


def hash_payload(payload: dict) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), cls=DjangoJSONEncoder)
    return "0x" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _move(record, field_name: str, new_status: str, **extra_fields) -> None:
    try:
        if getattr(record, field_name) == new_status == CHAIN_PENDING:
            # Claimed by a retry; only the chain reference is new
            moved, reason = state_machine.write_fields(record, field_name, **extra_fields)
        else:
            moved, reason = state_machine.transition(record, field_name, new_status, **extra_fields)
    except DatabaseError as e:
        logger.error(f"Record store unavailable updating {record.__class__.__name__} {record.pk}: {e}")
        raise StoreUnavailable()
    if not moved:
        raise StatusConflict(record.pk, reason)


def _claim(record, field_name: str) -> None:
    """
    Move a retryable record to pending before the chain is contacted, so at
    most one retry reaches the chain per failure.
    """
    try:
        claimed, _ = state_machine.transition(record, field_name, CHAIN_PENDING)
        if claimed:
            return
        current = (
            record.__class__.objects
            .filter(pk=record.pk)
            .values_list(field_name, flat=True)
            .first()
        )
    except DatabaseError as e:
        logger.error(f"Record store unavailable claiming {record.__class__.__name__} {record.pk}: {e}")
        raise StoreUnavailable()
    logger.info(f"Retry for {record.pk} lost the claim; {field_name} is now {current}")
    raise RetryNotAllowed(record.pk, current)


def _unavailable_status(current: str) -> str:
    # skipped is only reachable from states where the chain was never reached
    return CHAIN_SKIPPED if current in (CHAIN_NOT_ATTEMPTED, CHAIN_SKIPPED) else CHAIN_FAILED


# ==================== Projects ====================

def create_project(owner, fields: dict):
    """
    Create a Project with a fresh id, then attempt anchoring once.

    Returns (project, AnchorOutcome). Raises ValidationError,
    PermissionDenied, IdGenerationExhausted or StoreUnavailable.
    """
    if not (owner.is_producer or owner.is_platform_admin):
        raise PermissionDenied("Only producers can create projects")

    title = (fields.get("title") or "").strip()
    description = (fields.get("description") or "").strip()
    errors = {}
    if not title:
        errors["title"] = ["This field may not be blank."]
    if not description:
        errors["description"] = ["This field may not be blank."]
    if errors:
        raise ValidationError(errors)

    values = {name: fields[name] for name in PROJECT_FIELDS if fields.get(name) is not None}
    values.update(title=title, description=description, owner=owner, chain_status=CHAIN_NOT_ATTEMPTED)

    outcome = create_with_fresh_id(Project, PROJECT_ID_PREFIX, values)
    if outcome.kind != InsertOutcome.CREATED:
        logger.error(f"Unexpected project insert outcome {outcome.kind}: {outcome.error}")
        raise StoreUnavailable()

    project = outcome.instance
    logger.info(f"Project created: id={project.id}, owner={owner.id}, status={project.status}")

    return project, anchor_project(project)


def anchor_project(project: Project, claim: bool = False) -> AnchorOutcome:
    """
    One anchoring attempt for an existing project. Never raises for chain
    problems; only StoreUnavailable and status conflicts escape.

    With `claim`, the project is moved to pending before the chain call and
    a lost claim raises RetryNotAllowed without contacting the chain.
    """
    payload = project_payload(project)
    payload_hash = hash_payload(payload)
    snapshot = {"payload": payload, "payload_hash": payload_hash}

    client = anchor.get_anchor_client()
    if client is None:
        new_status = _unavailable_status(project.chain_status)
        tx = ledger.record_attempt(
            TX_KIND_PROJECT_REGISTRATION,
            project.id,
            None,
            TX_STATUS_FAILED,
            {**snapshot, "error": ANCHOR_UNAVAILABLE, "error_kind": ERROR_KIND_UNAVAILABLE},
        )
        _move(project, "chain_status", new_status,
              chain_ref={"hash": payload_hash, "transaction_hash": None})
        logger.warning(f"Anchoring {new_status} for project {project.id}: anchor client unavailable")
        return AnchorOutcome(
            success=False,
            status=new_status,
            transaction_id=tx.id,
            error=ANCHOR_UNAVAILABLE,
        )

    if claim:
        _claim(project, "chain_status")

    result = client.anchor(project.id, payload_hash)

    if result.success:
        tx = ledger.record_attempt(
            TX_KIND_PROJECT_REGISTRATION,
            project.id,
            result.transaction_hash,
            TX_STATUS_PENDING,
            {**snapshot, "duplicate": result.duplicate},
        )
        _move(project, "chain_status", CHAIN_PENDING,
              chain_ref={"hash": payload_hash, "transaction_hash": result.transaction_hash})
        return AnchorOutcome(
            success=True,
            status=CHAIN_PENDING,
            transaction_hash=result.transaction_hash,
            transaction_id=tx.id,
            duplicate=result.duplicate,
        )

    tx = ledger.record_attempt(
        TX_KIND_PROJECT_REGISTRATION,
        project.id,
        result.transaction_hash,
        TX_STATUS_FAILED,
        {**snapshot, "error": result.error, "error_kind": result.error_kind or ERROR_KIND_FAILED},
    )
    _move(project, "chain_status", CHAIN_FAILED,
          chain_ref={"hash": payload_hash, "transaction_hash": None})
    logger.warning(f"Anchoring failed for project {project.id}: {result.error}")
    return AnchorOutcome(
        success=False,
        status=CHAIN_FAILED,
        transaction_hash=result.transaction_hash,
        transaction_id=tx.id,
        error=result.error,
    )


def retry_project_anchor(project: Project, actor=None) -> AnchorOutcome:
    """Re-attempt anchoring for the same project id; appends a new Transaction."""
    if actor is not None and not (project.owner_id == actor.id or actor.is_platform_admin):
        raise PermissionDenied("Only the project owner can retry anchoring")
    if not state_machine.is_retryable(project.chain_status):
        raise RetryNotAllowed(project.id, project.chain_status)
    logger.info(f"Retrying anchoring for project {project.id} (was {project.chain_status})")
    return anchor_project(project, claim=True)


# ==================== Submissions ====================

def create_submission(writer, project_id: str, fields: dict, content: bytes, filename: str = "content") -> SubmissionOutcome:
    """
    Validate, check preconditions (local reads only), store content, create
    the Submission, then attempt the mint once.
    """
    if not (writer.is_writer or writer.is_platform_admin):
        raise PermissionDenied("Only writers can submit content")

    title = (fields.get("title") or "").strip()
    errors = {}
    if not title:
        errors["title"] = ["This field may not be blank."]
    if not content:
        errors["content"] = ["Content is required."]
    elif len(content) > settings.REGISTRY["MAX_CONTENT_BYTES"]:
        errors["content"] = [f"Content exceeds {settings.REGISTRY['MAX_CONTENT_BYTES']} bytes."]
    if errors:
        raise ValidationError(errors)

    # Preconditions, in order, before any external side effect
    try:
        project = Project.objects.filter(pk=project_id).first()
        if project is None:
            raise NotFound("Project not found")
        if not project.is_open_for_submissions:
            raise ProjectNotOpen(project.id, project.status)
        existing_id = _existing_submission_id(project, writer)
    except DatabaseError as e:
        logger.error(f"Record store unavailable checking submission preconditions: {e}")
        raise StoreUnavailable()

    if existing_id:
        logger.info(f"Duplicate submission rejected: project={project.id}, writer={writer.id}, existing={existing_id}")
        raise DuplicateSubmission(existing_id)

    stored = content_store.get_content_store().store(content, filename)

    score = scoring.score_content(content.decode("utf-8", errors="replace"), project.requirements)

    outcome = create_with_fresh_id(
        Submission,
        SUBMISSION_ID_PREFIX,
        {
            "project": project,
            "writer": writer,
            "title": title,
            "metadata": fields.get("metadata") or {},
            "content_ref": stored.content_ref,
            "content_hash": stored.content_hash,
            "content_size": stored.size,
            "score": score,
            "mint_status": CHAIN_NOT_ATTEMPTED,
        },
    )

    if outcome.kind == InsertOutcome.UNIQUE_CONFLICT:
        # Lost the race on (project, writer); report the winner
        winner_id = _existing_submission_id(project, writer)
        if winner_id is None:
            logger.error(f"Submission insert conflict without a winner: {outcome.error}")
            raise StoreUnavailable()
        logger.info(f"Concurrent duplicate submission: project={project.id}, writer={writer.id}, winner={winner_id}")
        raise DuplicateSubmission(winner_id)

    submission = outcome.instance
    logger.info(
        f"Submission created: id={submission.id}, project={project.id}, writer={writer.id}, "
        f"content_ref={stored.content_ref}"
    )

    return SubmissionOutcome(submission=submission, mint=mint_submission(submission))


def _existing_submission_id(project, writer):
    return (
        Submission.objects
        .filter(project=project, writer=writer)
        .values_list("id", flat=True)
        .first()
    )


def mint_submission(submission: Submission, claim: bool = False) -> MintOutcome:
    """
    One mint attempt for a stored submission. token_ref is only written
    after the mint succeeded and its Transaction was appended. `claim` works
    as in anchor_project.
    """
    wallet = submission.writer.wallet_address
    snapshot = {
        "project_id": submission.project_id,
        "content_ref": submission.content_ref,
        "content_hash": submission.content_hash,
        "owner_wallet": wallet,
    }

    client = anchor.get_anchor_client() if wallet else None
    if client is None:
        # No recipient or no chain: the mint is never sent
        error = ANCHOR_UNAVAILABLE if wallet else WALLET_MISSING
        new_status = _unavailable_status(submission.mint_status)
        tx = ledger.record_attempt(
            TX_KIND_SUBMISSION_MINT, submission.id, None, TX_STATUS_FAILED,
            {**snapshot, "error": error, "error_kind": ERROR_KIND_UNAVAILABLE},
        )
        _move(submission, "mint_status", new_status)
        logger.warning(f"Mint {new_status} for submission {submission.id}: {error}")
        return MintOutcome(success=False, status=new_status, transaction_id=tx.id, error=error)

    if claim:
        _claim(submission, "mint_status")

    result = client.mint(wallet, submission.content_ref, submission.id)

    if not result.success:
        tx = ledger.record_attempt(
            TX_KIND_SUBMISSION_MINT, submission.id, result.transaction_hash, TX_STATUS_FAILED,
            {**snapshot, "error": result.error, "error_kind": result.error_kind or ERROR_KIND_FAILED},
        )
        _move(submission, "mint_status", CHAIN_FAILED)
        logger.warning(f"Mint failed for submission {submission.id}: {result.error}")
        return MintOutcome(
            success=False,
            status=CHAIN_FAILED,
            transaction_hash=result.transaction_hash,
            transaction_id=tx.id,
            error=result.error,
        )

    tx = ledger.record_attempt(
        TX_KIND_SUBMISSION_MINT, submission.id, result.transaction_hash, TX_STATUS_PENDING,
        {**snapshot, "token_id": result.token_id},
    )
    _move(submission, "mint_status", CHAIN_PENDING,
          token_ref={"token_id": result.token_id, "transaction_hash": result.transaction_hash})
    return MintOutcome(
        success=True,
        status=CHAIN_PENDING,
        token_id=result.token_id,
        transaction_hash=result.transaction_hash,
        transaction_id=tx.id,
    )


def retry_submission_mint(submission: Submission, actor=None) -> MintOutcome:
    """Re-attempt minting without re-uploading or re-creating the submission."""
    if actor is not None and not (submission.writer_id == actor.id or actor.is_platform_admin):
        raise PermissionDenied("Only the writer can retry minting")
    if submission.token_ref or not state_machine.is_retryable(submission.mint_status):
        raise RetryNotAllowed(submission.id, submission.mint_status)
    logger.info(f"Retrying mint for submission {submission.id} (was {submission.mint_status})")
    return mint_submission(submission, claim=True)
