"""
Typed Exception Hierarchy for the Production Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Shop-floor clients react differently to different failures: a validation
error is shown next to the form field, a conflict is silently retried once
with fresh state, an illegal transition is shown as-is. Parsing message
strings for that decision is fragile, so every failure is:

  1. A TYPED exception class (catch by type, not message)
  2. Carrying a CODE attribute (machine-readable, API-safe)
  3. Carrying structured DATA (not just a message string)

Example:
    try:
        engine.start_stage(actor, job_id)
    except StageLogAlreadyOpenError as e:
        show_banner(f"Stage {e.stage} is already running")
    except ConflictError:
        refetch_and_retry_once()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProductionEngineError:

    ProductionEngineError (base)
    |
    +-- ValidationError
    |   +-- StageCatalogNotConfiguredError
    |   +-- UnknownStageError
    |   +-- MissingDefectsError
    |   +-- InvalidSourceError
    |   +-- InsufficientStockError
    |   +-- ReservationError
    |
    +-- NotFoundError
    |
    +-- InvalidTransitionError
    |   +-- StageLogAlreadyOpenError
    |
    +-- PrecondGateError
    |   +-- NoOpenStageLogError
    |   +-- UnresolvedReworkError
    |
    +-- ConflictError
    |   +-- OptimisticLockError
    |   +-- LockTimeoutError
    |   +-- ReturnAlreadyInspectedError
    |
    +-- DuplicateReworkError
    |
    +-- LedgerIntegrityError
    |
    +-- ImmutabilityViolationError
    |
    +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Bad input (qty <= 0, missing field, ...)
                | STAGE_CATALOG_NOT_CONFIGURED| Tenant has no production stages
                | UNKNOWN_STAGE               | Stage not in the tenant catalog
                | MISSING_DEFECTS             | FAIL inspection without defects
                | INVALID_SOURCE              | Zero or two sources given
                | INSUFFICIENT_STOCK          | Issue exceeds available - reserved
                | RESERVATION_ERROR           | Reserve/unreserve out of bounds
----------------|-----------------------------|-----------------------------------------
Lookup          | NOT_FOUND                   | Entity missing or in another tenant
----------------|-----------------------------|-----------------------------------------
Transition      | INVALID_TRANSITION          | Status change outside the table
                | STAGE_LOG_ALREADY_OPEN      | StartStage with a log already open
----------------|-----------------------------|-----------------------------------------
Precondition    | PRECONDITION_FAILED         | Operation needs state that is absent
                | NO_OPEN_STAGE_LOG           | LogHours without a running stage
                | UNRESOLVED_REWORK           | Resume while rework is still open
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONFLICT                    | Lost a race; re-read and retry
                | OPTIMISTIC_LOCK_CONFLICT    | Version mismatch
                | LOCK_TIMEOUT                | Per-key lock not acquired in time
                | RETURN_ALREADY_INSPECTED    | Return outcome already set
----------------|-----------------------------|-----------------------------------------
Rework          | DUPLICATE_REWORK            | QC record already spawned a rework
----------------|-----------------------------|-----------------------------------------
Ledger          | LEDGER_INTEGRITY_VIOLATION  | balance_after chain broken (fatal)
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only record
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY A retryable CLASS ATTRIBUTE?
   Only conflicts are worth retrying automatically. The API layer copies
   the flag into the error body so clients do not hard-code code lists.

2. WHY IS LedgerIntegrityError NOT A ValidationError?
   The caller did nothing wrong. A broken balance chain means stored data
   is inconsistent and the operation must abort loudly.

===============================================================================
"""


class ProductionEngineError(Exception):
    """
    Base exception for all production kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PRODUCTION_ENGINE_ERROR"
    retryable: bool = False


# Validation


class ValidationError(ProductionEngineError):
    """Input failed a field-level or business-rule check."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class StageCatalogNotConfiguredError(ValidationError):
    """Tenant has no production stages configured."""

    code: str = "STAGE_CATALOG_NOT_CONFIGURED"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(
            f"Production stages not configured for tenant {tenant_id}",
            field="stage",
        )


class UnknownStageError(ValidationError):
    """Stage is not part of the tenant's catalog."""

    code: str = "UNKNOWN_STAGE"

    def __init__(self, stage: str, tenant_id: str):
        self.stage = stage
        self.tenant_id = tenant_id
        super().__init__(f"Unknown stage '{stage}' for tenant {tenant_id}", field="stage")


class MissingDefectsError(ValidationError):
    """A FAIL inspection was submitted without any defect."""

    code: str = "MISSING_DEFECTS"

    def __init__(self):
        super().__init__("A FAIL inspection must list at least one defect", field="defects")


class InvalidSourceError(ValidationError):
    """Exactly one source (production job or delivery note) is required."""

    code: str = "INVALID_SOURCE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid source: {reason}", field="source")


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds what is free to move."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item_id: str, requested: str, available: str):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for item {item_id}: "
            f"requested {requested}, available {available}",
            field="qty",
        )


class ReservationError(ValidationError):
    """Reserve or unreserve would break 0 <= reserved <= available."""

    code: str = "RESERVATION_ERROR"

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Reservation rejected for item {item_id}: {reason}", field="qty")


# Lookup


class NotFoundError(ProductionEngineError):
    """Entity does not exist or belongs to another tenant."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Transitions


class InvalidTransitionError(ProductionEngineError):
    """A status change not present in the entity's transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        from_state: str,
        to_state: str | None = None,
        action: str | None = None,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
        self.action = action
        self.reason = reason
        target = to_state or action or "?"
        message = f"Invalid transition for {entity_type} {entity_id}: {from_state} -> {target}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class StageLogAlreadyOpenError(InvalidTransitionError):
    """StartStage while a log for the stage is still open."""

    code: str = "STAGE_LOG_ALREADY_OPEN"

    def __init__(self, job_id: str, stage: str, from_state: str):
        self.job_id = job_id
        self.stage = stage
        super().__init__(
            "JobCard",
            job_id,
            from_state,
            action="start_stage",
            reason=f"stage {stage} already has an open log",
        )


# Preconditions


class PrecondGateError(ProductionEngineError):
    """The operation requires state that is not present."""

    code: str = "PRECONDITION_FAILED"

    def __init__(self, message: str):
        super().__init__(message)


class NoOpenStageLogError(PrecondGateError):
    """Hours can only be logged against a running stage."""

    code: str = "NO_OPEN_STAGE_LOG"

    def __init__(self, job_id: str, stage: str):
        self.job_id = job_id
        self.stage = stage
        super().__init__(f"Job {job_id} has no open log for stage {stage}")


class UnresolvedReworkError(PrecondGateError):
    """A job cannot resume while rework sourced from it is still open."""

    code: str = "UNRESOLVED_REWORK"

    def __init__(self, job_id: str, open_rework_ids: list[str]):
        self.job_id = job_id
        self.open_rework_ids = open_rework_ids
        super().__init__(
            f"Job {job_id} has unresolved rework: {', '.join(open_rework_ids)}"
        )


# Concurrency


class ConflictError(ProductionEngineError):
    """A concurrent writer won the race. Re-read and retry."""

    code: str = "CONFLICT"
    retryable: bool = True

    def __init__(self, message: str):
        super().__init__(message)


class OptimisticLockError(ConflictError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class LockTimeoutError(ConflictError):
    """The per-key serialization lock could not be acquired in time."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, key: str, timeout_seconds: float):
        self.key = key
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Timed out after {timeout_seconds}s waiting for lock {key}")


class ReturnAlreadyInspectedError(ConflictError):
    """The return's outcome has already been set."""

    code: str = "RETURN_ALREADY_INSPECTED"
    retryable: bool = False

    def __init__(self, return_id: str, status: str):
        self.return_id = return_id
        self.status = status
        super().__init__(f"Return {return_id} is already {status}")


# Rework


class DuplicateReworkError(ProductionEngineError):
    """The QC record has already spawned a rework job."""

    code: str = "DUPLICATE_REWORK"

    def __init__(self, qc_record_id: str, existing_rework_id: str | None = None):
        self.qc_record_id = qc_record_id
        self.existing_rework_id = existing_rework_id
        super().__init__(
            f"QC record {qc_record_id} already spawned rework {existing_rework_id}"
        )


# Ledger


class LedgerIntegrityError(ProductionEngineError):
    """
    The stored balance chain for an item is inconsistent.

    Fatal: the enclosing operation is aborted and nothing is written.
    """

    code: str = "LEDGER_INTEGRITY_VIOLATION"

    def __init__(self, item_id: str, expected: str, actual: str, detail: str = ""):
        self.item_id = item_id
        self.expected = expected
        self.actual = actual
        self.detail = detail
        super().__init__(
            f"Ledger integrity violation for item {item_id}: "
            f"expected balance {expected}, found {actual}"
            + (f" ({detail})" if detail else "")
        )


# Immutability


class ImmutabilityViolationError(ProductionEngineError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit


class AuditChainBrokenError(ProductionEngineError):
    """Recomputed audit hash does not match the stored chain."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, event_id: str, expected_hash: str, actual_hash: str):
        self.event_id = event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
