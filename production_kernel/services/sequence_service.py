"""
Counter rows behind every human-facing number and every audit ``seq``.

A job card number such as ``ACME-JC-20240517-0003`` needs the value 3 to
be unique for that tenant and day even when two operators create jobs at
the same moment.  Each named counter is one row in ``sequence_counters``;
allocating a value locks that row for the rest of the caller's
transaction, so a concurrent allocation waits and then sees the bumped
value.  A rolled back transaction gives its value back.

Every counter is scoped to one tenant, so writers in different tenants
never wait on each other's counter rows.  Within a tenant the audit
counter row is held until commit; appends to a tenant's hash chain are
serialized anyway, since each one extends the current chain head.

Counter names:

    audit_event:<tenant>              one per audit event
    qc_record:<tenant>                orders QC records
    job_card:<tenant>:<YYYYMMDD>      per tenant and day
    return:<tenant>:<YYYYMMDD>        per tenant and day

Never derive the next value from ``max(number) + 1`` on the target table.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from production_kernel.db.base import Base
from production_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def _daily(prefix: str, tenant_id: UUID, day: datetime) -> str:
    return f"{prefix}:{tenant_id}:{day:%Y%m%d}"


class SequenceService:
    """Allocates counter values inside the caller's transaction (flush only)."""

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def audit_sequence(tenant_id: UUID) -> str:
        return f"audit_event:{tenant_id}"

    @staticmethod
    def qc_sequence(tenant_id: UUID) -> str:
        return f"qc_record:{tenant_id}"

    @staticmethod
    def job_card_sequence(tenant_id: UUID, day: datetime) -> str:
        return _daily("job_card", tenant_id, day)

    @staticmethod
    def return_sequence(tenant_id: UUID, day: datetime) -> str:
        return _daily("return", tenant_id, day)

    def _lookup(self, name: str, *, lock: bool) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.name == name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter | None:
        """Insert a fresh counter at 1; None when another transaction won the insert."""
        nested = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=1)
        try:
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            nested.rollback()
            logger.debug("sequence_create_lost_race", extra={"sequence_name": name})
            return None
        nested.commit()
        return counter

    def next_value(self, sequence_name: str) -> int:
        """Bump the named counter and return the new value (first value is 1)."""
        counter = self._lookup(sequence_name, lock=True)
        if counter is None:
            created = self._create(sequence_name)
            if created is not None:
                value = created.current_value
                logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
                return value
            counter = self._lookup(sequence_name, lock=True)
            if counter is None:
                raise RuntimeError(f"sequence counter {sequence_name!r} vanished after insert race")

        counter.current_value += 1
        self._session.flush()
        value = counter.current_value
        logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
        return value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._lookup(sequence_name, lock=False)
        return None if counter is None else counter.current_value
