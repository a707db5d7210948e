"""
Closed status and kind enumerations shared by models, services and the API.

Every enum is a ``(str, Enum)`` so values persist as plain strings and
serialize without conversion.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle of a job card."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REWORK = "REWORK"
    CANCELLED = "CANCELLED"


class QCStatus(str, Enum):
    """Inspection verdict."""

    PASS = "PASS"
    FAIL = "FAIL"
    NA = "NA"


class DefectSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ReworkStatus(str, Enum):
    """Lifecycle of a rework job."""

    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReturnStatus(str, Enum):
    """Lifecycle of a client return."""

    PENDING = "PENDING"
    INSPECTED = "INSPECTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ReturnOutcome(str, Enum):
    """Physical disposition decided at return inspection."""

    ACCEPT_RETURN = "ACCEPT_RETURN"
    REWORK = "REWORK"
    SCRAP = "SCRAP"


class TransactionType(str, Enum):
    """Stock transaction kinds and their quantity sign rule."""

    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER = "TRANSFER"


class ReferenceType(str, Enum):
    """What caused a stock transaction."""

    PURCHASE_RECEIPT = "PURCHASE_RECEIPT"
    JOB_ISSUE = "JOB_ISSUE"
    REWORK_ISSUE = "REWORK_ISSUE"
    SUBCONTRACT_ISSUE = "SUBCONTRACT_ISSUE"
    CLIENT_RETURN = "CLIENT_RETURN"
    STOCK_COUNT = "STOCK_COUNT"
    MANUAL = "MANUAL"


class SourceKind(str, Enum):
    """Discriminator for the production-job / delivery-note union."""

    PRODUCTION_JOB = "PRODUCTION_JOB"
    DELIVERY_NOTE = "DELIVERY_NOTE"


class GateDecision(str, Enum):
    """What the quality gate did with a stage completion."""

    ADVANCED = "ADVANCED"
    COMPLETED = "COMPLETED"
    REWORK = "REWORK"
    AWAITING_INSPECTION = "AWAITING_INSPECTION"
    NO_CHANGE = "NO_CHANGE"
