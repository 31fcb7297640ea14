# registry/exceptions.py
"""
Error taxonomy for the registration pipeline.

Validation errors use DRF's ValidationError directly. Conflicts carry the
identity of the conflicting resource so the caller can recover. External
unavailability / rejection is *not* an exception here: it is recorded as
Transaction metadata and reported in response status fields.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class RegistryError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Registration error."
    default_code = "registry_error"

    def __init__(self, detail=None, code=None, **extra):
        detail = detail or self.default_detail
        code = code or self.default_code
        payload = {"detail": detail, "code": code}
        payload.update(extra)
        super().__init__(payload, code)


class DuplicateSubmission(RegistryError):
    """A submission already exists for this (project, writer) pair."""
    default_detail = "You have already submitted to this project."
    default_code = "duplicate_submission"

    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        super().__init__(submission_id=submission_id)


class ProjectNotOpen(RegistryError):
    default_detail = "Project is not open for submissions."
    default_code = "project_not_open"

    def __init__(self, project_id: str, project_status: str):
        super().__init__(project_id=project_id, project_status=project_status)


class IdGenerationExhausted(RegistryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Could not allocate a unique record id."
    default_code = "id_generation_exhausted"

    def __init__(self, prefix: str, attempts: int):
        super().__init__(prefix=prefix, attempts=attempts)


class RetryNotAllowed(RegistryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Nothing to retry in the current state."
    default_code = "retry_not_allowed"

    def __init__(self, subject_id: str, current_status: str):
        super().__init__(subject_id=subject_id, current_status=current_status)


class InconsistentReconciliation(RegistryError):
    """Reconcile asked for a terminal status different from the recorded one."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Transaction already settled with a different status."
    default_code = "inconsistent_reconciliation"

    def __init__(self, transaction_id: str, recorded: str, requested: str):
        self.transaction_id = transaction_id
        self.recorded = recorded
        self.requested = requested
        super().__init__(transaction_id=transaction_id, recorded=recorded, requested=requested)


class ContentStoreFailure(RegistryError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Content upload failed; no submission was created."
    default_code = "content_store_failure"

    def __init__(self, reason: str = ""):
        super().__init__(reason=reason)


class StoreUnavailable(RegistryError):
    """The record store rejected or could not take a write. Nothing happened."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Record store unavailable; the operation was not performed."
    default_code = "store_unavailable"


class StatusConflict(RegistryError):
    """Another attempt moved the subject's anchoring status first."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Anchoring status changed concurrently."
    default_code = "status_conflict"

    def __init__(self, subject_id: str, reason: str):
        super().__init__(subject_id=subject_id, reason=reason)
