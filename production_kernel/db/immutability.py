"""
ORM-Level Append-Only Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger is only trustworthy if its history never changes: every
balance_after is the prefix sum of the rows before it, so editing or deleting
one row silently corrupts every later balance.  Inspection evidence (QC
records), labour entries and the audit trail have the same property.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (database triggers)
    - Catches raw SQL, bulk UPDATE statements, direct console access

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable          | Why
--------------------|-------------------------|----------------------------------
StockTransaction    | ALWAYS (from creation)  | Running balances depend on history
LabourLogEntry      | ALWAYS (from creation)  | Stage hours are their sum
QCRecord            | ALWAYS (from creation)  | Gate decisions are replayable from it
AuditEvent          | ALWAYS (from creation)  | Hash chain

Corrections are new rows: an ADJUSTMENT transaction, a fresh inspection.

===============================================================================
USAGE
===============================================================================

Registered by init_engine_from_url().  Registration is idempotent.

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event

from production_kernel.exceptions import ImmutabilityViolationError
from production_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(target, operation: str) -> ImmutabilityViolationError:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    verb = "modified" if operation == "UPDATE" else "deleted"
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} rows are append-only and cannot be {verb}",
    )


def _reject_update(mapper, connection, target):
    """Prevent any UPDATE of an append-only row."""
    raise _blocked(target, "UPDATE")


def _reject_delete(mapper, connection, target):
    """Prevent any DELETE of an append-only row."""
    raise _blocked(target, "DELETE")


def _append_only_models():
    from production_kernel.models.audit_event import AuditEvent
    from production_kernel.models.inventory import StockTransaction
    from production_kernel.models.job_card import LabourLogEntry
    from production_kernel.models.quality import QCRecord

    return (StockTransaction, LabourLogEntry, QCRecord, AuditEvent)


def register_immutability_listeners():
    """Register append-only listeners on every protected model."""
    for model in _append_only_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove append-only listeners.

    WARNING: Only use this in tests that must bypass the ORM layer to
    verify the database layer.
    """
    for model in _append_only_models():
        _safe_remove_listener(model, "before_update", _reject_update)
        _safe_remove_listener(model, "before_delete", _reject_delete)
