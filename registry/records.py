# registry/records.py
"""
Record creation with a bounded id-generation loop.

Each insert attempt resolves to one tagged outcome (Created, IdConflict,
UniqueConflict, StoreUnavailable) instead of nested try/except fallbacks.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction

from .exceptions import IdGenerationExhausted, StoreUnavailable

logger = logging.getLogger("scribe.registry")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_record_id(prefix: str) -> str:
    """`<prefix>_<ms clock base36><8 hex random>`, e.g. proj_lx2k9a1c3f9e0b12."""
    return f"{prefix}_{_base36(time.time_ns() // 1_000_000)}{secrets.token_hex(4)}"


@dataclass(frozen=True)
class InsertOutcome:
    CREATED = "created"
    ID_CONFLICT = "id_conflict"
    UNIQUE_CONFLICT = "unique_conflict"
    STORE_UNAVAILABLE = "store_unavailable"

    kind: str
    instance: Any = None
    error: Optional[Exception] = None


def attempt_insert(model, record_id: str, fields: dict) -> InsertOutcome:
    """Single atomic insert; classifies the result without raising."""
    try:
        with transaction.atomic():
            instance = model.objects.create(id=record_id, **fields)
        return InsertOutcome(InsertOutcome.CREATED, instance=instance)
    except IntegrityError as e:
        # Distinguish a primary-key collision from another unique constraint
        if model.objects.filter(pk=record_id).exists():
            return InsertOutcome(InsertOutcome.ID_CONFLICT, error=e)
        return InsertOutcome(InsertOutcome.UNIQUE_CONFLICT, error=e)
    except DatabaseError as e:
        return InsertOutcome(InsertOutcome.STORE_UNAVAILABLE, error=e)


def max_id_attempts() -> int:
    return max(1, int(settings.REGISTRY.get("ID_GENERATION_ATTEMPTS", 3)))


def create_with_fresh_id(model, prefix: str, fields: dict, id_factory=generate_record_id) -> InsertOutcome:
    """
    Insert `model(**fields)` under a freshly generated id.

    Regenerates on IdConflict up to ID_GENERATION_ATTEMPTS times, then raises
    IdGenerationExhausted. StoreUnavailable raises immediately. Created and
    UniqueConflict are returned for the caller to interpret.
    """
    attempts = max_id_attempts()
    for attempt in range(1, attempts + 1):
        record_id = id_factory(prefix)
        outcome = attempt_insert(model, record_id, fields)

        if outcome.kind == InsertOutcome.CREATED:
            return outcome

        if outcome.kind == InsertOutcome.STORE_UNAVAILABLE:
            logger.error(f"Record store unavailable creating {model.__name__}: {outcome.error}")
            raise StoreUnavailable()

        if outcome.kind == InsertOutcome.UNIQUE_CONFLICT:
            return outcome

        logger.warning(
            f"Id collision for {model.__name__} id={record_id} "
            f"(attempt {attempt}/{attempts}); regenerating"
        )

    raise IdGenerationExhausted(prefix=prefix, attempts=attempts)
