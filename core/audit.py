"""
Audit trail for invoice engine changes.

Two layers, both append-only:
- The audit_log table (AuditLogger) records every entity mutation for
  administrative oversight.
- Each invoice embeds its own history of HistoryEntry records, built with
  history_entry() and appended by the state machine on every transition.
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.models import HistoryEntry
from utils.user_context import get_current_user_id
from utils.timezone import now_utc

# Never echoed into embedded history
_NOISE_FIELDS = {"history", "updated_at", "created_at"}


class AuditAction(Enum):
    """Kind of invoice engine change recorded in audit_log."""

    CREATE = "create"
    TRANSITION = "transition"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


def sanitize_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Drop timestamps and history echoes from a change set."""
    return {k: v for k, v in changes.items() if k not in _NOISE_FIELDS}


def history_entry(actor: UUID, action: str, changes: dict[str, Any]) -> HistoryEntry:
    """Build an embedded invoice history record stamped now."""
    return HistoryEntry(
        actor=actor,
        timestamp=now_utc(),
        action=action,
        changes=sanitize_changes(changes),
    )


class AuditLogger:
    """
    Audit sink for entity changes.

    IMPORTANT: Always use model_dump(mode="json") when passing Pydantic models
    to ensure UUIDs, Decimals and datetimes are serialized to JSON-compatible
    values.

    Usage:
        audit = AuditLogger(postgres)

        audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json", exclude={"history"})}
        )

        history = audit.get_entity_history("invoice", invoice.id)
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | None = None
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: Type of entity ("invoice", "product", etc.)
            entity_id: ID of the entity
            action: The action performed (CREATE, TRANSITION)
            changes: The changes made (format depends on action)
            user_id: User who made change (defaults to current context)

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - TRANSITION: the history entry changes, {"status": {"old": ..., "new": ...}, ...}
        """
        if user_id is None:
            user_id = get_current_user_id()

        self.postgres.execute(
            """
            INSERT INTO audit_log (id, user_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                user_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Returns:
            List of audit entries, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, user_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )
