"""
ProductionEngine -- transactional entry point for every engine operation.

Responsibility:
    Turns one request into one unit of work: take the per-key locks the
    operation needs, open a session, run the flush-only services, commit,
    and hand back frozen DTOs.  Read operations go through the selectors.

Architecture position:
    Kernel > Services -- the outermost kernel layer.  The API layer and
    tests talk to the engine, never to the services directly.

Invariants enforced:
    - Per job id and per item id, mutations are linearized: the in-process
      KeyedLockRegistry is taken BEFORE the transaction opens and released
      after it commits; rows are additionally locked with SELECT ... FOR
      UPDATE for cross-process deployments.
    - Keys learned only from stored state (a rework's source job, a
      return's items) are read in a short session first; those
      relationships never change after creation.
    - One operation is one transaction: material issue, gate evaluation and
      rework spawn commit together or not at all.
    - A lost optimistic-version race (StaleDataError) or a unique constraint
      tripped by a concurrent writer surfaces as ConflictError.

Failure modes:
    - Every ProductionEngineError raised by a service propagates unchanged
      after the transaction is rolled back.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterator, Mapping, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from production_kernel.db.engine import get_session_factory, session_scope
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.dtos import (
    GateResult,
    InspectionResult,
    InventoryItemInfo,
    JobCardInfo,
    LabourEntryInfo,
    LedgerVerification,
    LogHoursResult,
    MaterialIssueInfo,
    QCRecordInfo,
    ReturnInspectionResult,
    ReturnRecordInfo,
    ReworkJobInfo,
    ReworkTransitionResult,
    StageCompletionResult,
    StageLogInfo,
    StockTransactionInfo,
    WastageInfo,
)
from production_kernel.domain.sources import (
    JobTarget,
    MaterialTarget,
    ReworkTarget,
    source_from_ids,
)
from production_kernel.domain.stage_catalog import StageCatalog
from production_kernel.domain.statuses import (
    JobStatus,
    QCStatus,
    ReferenceType,
    ReturnOutcome,
    ReturnStatus,
    ReworkStatus,
    TransactionType,
)
from production_kernel.domain.values import (
    ActorContext,
    Defect,
    MaterialLine,
    ReturnItem,
    to_decimal,
)
from production_kernel.exceptions import (
    ConflictError,
    NotFoundError,
    OptimisticLockError,
    ProductionEngineError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.selectors.base import Page
from production_kernel.selectors.job_selector import JobSelector
from production_kernel.selectors.ledger_selector import LedgerSelector
from production_kernel.selectors.quality_selector import QualitySelector
from production_kernel.selectors.return_selector import ReturnSelector
from production_kernel.services.auditor_service import AuditorService, AuditTrace
from production_kernel.services.job_service import JobService
from production_kernel.services.keyed_lock import (
    KeyedLockRegistry,
    delivery_note_key,
    item_key,
    job_key,
    qc_key,
    return_key,
    rework_key,
)
from production_kernel.services.ledger_service import LedgerService
from production_kernel.services.quality_gate import GateOutcome, QualityGate
from production_kernel.services.return_service import ReturnInspector
from production_kernel.services.rework_service import ReworkOrchestrator
from production_kernel.services.stage_catalog_service import StageCatalogService

logger = get_logger("services.engine")


class _UnitOfWork:
    """The services of one transaction, all bound to the same session."""

    def __init__(self, session: Session, clock: Clock):
        self.session = session
        self.auditor = AuditorService(session, clock)
        self.catalogs = StageCatalogService(session, self.auditor)
        self.ledger = LedgerService(session, self.auditor, clock)
        self.jobs = JobService(session, self.auditor, self.catalogs, clock)
        self.rework = ReworkOrchestrator(session, self.auditor, self.catalogs, self.jobs, clock)
        self.gate = QualityGate(
            session, self.auditor, self.catalogs, self.jobs, self.rework, clock
        )
        self.returns = ReturnInspector(
            session, self.auditor, self.catalogs, self.ledger, self.rework, clock
        )


@dataclass(frozen=True)
class _Entity:
    entity_type: str
    entity_id: object


def _gate_result(outcome: GateOutcome | None) -> GateResult | None:
    if outcome is None:
        return None
    return GateResult(
        decision=outcome.decision,
        job_id=outcome.job_id,
        stage=outcome.stage,
        next_stage=outcome.next_stage,
        qc_record_id=outcome.qc_record_id,
    )


def _material_lines(lines: Sequence[MaterialLine | Mapping[str, Any]] | None) -> list[MaterialLine]:
    result = []
    for line in lines or ():
        if isinstance(line, MaterialLine):
            result.append(line)
            continue
        result.append(
            MaterialLine(
                item_id=UUID(str(line["item_id"])),
                qty=to_decimal(line.get("qty"), "qty"),
                wastage=to_decimal(line.get("wastage") or 0, "wastage"),
                wastage_reason=line.get("wastage_reason"),
                batch_no=line.get("batch_no"),
                from_reservation=bool(line.get("from_reservation", False)),
            )
        )
    return result


def _defects(defects: Sequence[Defect | Mapping[str, Any]] | None) -> list[Defect]:
    return [d if isinstance(d, Defect) else Defect.from_dict(d) for d in defects or ()]


def _return_items(items: Sequence[ReturnItem | Mapping[str, Any]]) -> list[ReturnItem]:
    return [i if isinstance(i, ReturnItem) else ReturnItem.from_dict(i) for i in items or ()]


class ProductionEngine:
    """
    Facade over the production services.

    Contract:
        Every mutating method takes the caller's ActorContext first and
        returns a frozen DTO.  Methods are thread-safe; one engine instance
        is shared by all request handlers of a process.

    Non-goals:
        - Does NOT authenticate; the actor context is trusted as given.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        clock: Clock | None = None,
        locks: KeyedLockRegistry | None = None,
        lock_timeout_seconds: float = 10.0,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._locks = locks or KeyedLockRegistry(timeout_seconds=lock_timeout_seconds)

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def locks(self) -> KeyedLockRegistry:
        return self._locks

    # ------------------------------------------------------------------
    # Unit-of-work plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _unit(
        self,
        operation: str,
        actor: ActorContext,
        keys: Sequence[str] = (),
        *,
        entity: _Entity | None = None,
        job_id: UUID | None = None,
    ) -> Iterator[_UnitOfWork]:
        with LogContext.bind(
            tenant_id=actor.tenant_id,
            actor_id=actor.actor_id,
            operation=operation,
            job_id=job_id,
        ):
            t0 = time.monotonic()
            try:
                with self._locks.hold(*keys):
                    with session_scope(self._session_factory) as session:
                        yield _UnitOfWork(session, self._clock)
            except StaleDataError as exc:
                logger.warning("operation_conflict", extra={"reason": "stale_version"})
                raise OptimisticLockError(
                    entity.entity_type if entity else "unknown",
                    str(entity.entity_id) if entity else "unknown",
                ) from exc
            except IntegrityError as exc:
                logger.warning(
                    "operation_conflict",
                    extra={"reason": "constraint", "detail": str(exc.orig)},
                )
                raise ConflictError(
                    f"{operation} was rejected by a concurrent change; re-read and retry"
                ) from exc
            except ProductionEngineError as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.warning(
                    "operation_failed",
                    extra={"error_code": exc.code, "duration_ms": duration_ms},
                )
                raise
            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info("operation_completed", extra={"duration_ms": duration_ms})

    @contextmanager
    def _read(self) -> Iterator[Session]:
        with session_scope(self._session_factory) as session:
            yield session

    # ------------------------------------------------------------------
    # Tenant workflow
    # ------------------------------------------------------------------

    def configure_workflow(
        self,
        actor: ActorContext,
        *,
        tenant_code: str,
        stages: Sequence[str],
        non_inspected_stages: Sequence[str] = (),
        auto_resume_after_rework: bool = False,
    ) -> StageCatalog:
        with self._unit("configure_workflow", actor) as uow:
            return uow.catalogs.apply_workflow(
                tenant_id=actor.tenant_id,
                tenant_code=tenant_code,
                stages=stages,
                non_inspected_stages=non_inspected_stages,
                auto_resume_after_rework=auto_resume_after_rework,
                actor_id=actor.actor_id,
            )

    def get_catalog(self, tenant_id: UUID) -> StageCatalog:
        with self._read() as session:
            return StageCatalogService(session).get_catalog(tenant_id)

    # ------------------------------------------------------------------
    # Job state machine
    # ------------------------------------------------------------------

    def create_job(
        self,
        actor: ActorContext,
        *,
        project_id: UUID,
        sub_group_id: UUID,
        planned_qty: Decimal,
        planned_hours: Decimal | None = None,
        assigned_to: UUID | None = None,
        stage: str | None = None,
    ) -> JobCardInfo:
        with self._unit("create_job", actor) as uow:
            job = uow.jobs.create_job(
                tenant_id=actor.tenant_id,
                project_id=project_id,
                sub_group_id=sub_group_id,
                planned_qty=to_decimal(planned_qty, "planned_qty"),
                planned_hours=to_decimal(planned_hours, "planned_hours")
                if planned_hours is not None
                else None,
                assigned_to=assigned_to,
                stage=stage,
                actor_id=actor.actor_id,
            )
            return JobCardInfo.from_model(job)

    def start_stage(
        self,
        actor: ActorContext,
        job_id: UUID,
        *,
        expected_version: int | None = None,
        notes: str | None = None,
    ) -> JobCardInfo:
        with self._unit(
            "start_stage", actor, [job_key(job_id)],
            entity=_Entity("JobCard", job_id), job_id=job_id,
        ) as uow:
            job, _ = uow.jobs.start_stage(
                tenant_id=actor.tenant_id,
                job_id=job_id,
                actor_id=actor.actor_id,
                expected_version=expected_version,
                notes=notes,
            )
            return JobCardInfo.from_model(job)

    def log_hours(
        self,
        actor: ActorContext,
        job_id: UUID,
        *,
        hours: Decimal,
        output_qty: Decimal | None = None,
        notes: str | None = None,
        work_date: date | None = None,
        user_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> LogHoursResult:
        with self._unit(
            "log_hours", actor, [job_key(job_id)],
            entity=_Entity("JobCard", job_id), job_id=job_id,
        ) as uow:
            job, log, entry = uow.jobs.log_hours(
                tenant_id=actor.tenant_id,
                job_id=job_id,
                user_id=user_id or actor.actor_id,
                hours=to_decimal(hours, "hours"),
                output_qty=to_decimal(output_qty, "output_qty") if output_qty is not None else None,
                notes=notes,
                work_date=work_date,
                expected_version=expected_version,
            )
            return LogHoursResult(
                job_id=job.id,
                stage=log.stage,
                entry=LabourEntryInfo.from_model(entry),
                stage_hours_logged=log.hours_logged,
                updated_actual_hours=job.actual_hours,
                updated_actual_qty=job.actual_qty,
            )

    def complete_stage(
        self,
        actor: ActorContext,
        job_id: UUID,
        *,
        materials: Sequence[MaterialLine | Mapping[str, Any]] | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> StageCompletionResult:
        """
        Close the running stage, issue any consumed material, run the gate.

        All three happen in one transaction: a ledger failure leaves the
        job exactly as it was.
        """
        lines = _material_lines(materials)
        keys = [job_key(job_id)] + [item_key(line.item_id) for line in lines]
        with self._unit(
            "complete_stage", actor, keys,
            entity=_Entity("JobCard", job_id), job_id=job_id,
        ) as uow:
            job, log = uow.jobs.close_stage(
                tenant_id=actor.tenant_id,
                job_id=job_id,
                actor_id=actor.actor_id,
                expected_version=expected_version,
                notes=notes,
            )
            issue_info = None
            if lines:
                outcome = uow.ledger.issue_material(
                    tenant_id=actor.tenant_id,
                    target=JobTarget(job.id),
                    lines=lines,
                    actor_id=actor.actor_id,
                    remarks=f"Stage {log.stage} of {job.job_card_number}",
                )
                issue_info = MaterialIssueInfo.from_model(
                    outcome.issue, outcome.transactions, outcome.wastage
                )
            gate = uow.gate.evaluate_stage_completion(
                job=job, stage=log.stage, actor_id=actor.actor_id
            )
            return StageCompletionResult(
                job=JobCardInfo.from_model(job),
                completed_log=StageLogInfo.from_model(log),
                gate=_gate_result(gate),
                material_issue=issue_info,
            )

    def evaluate_stage_completion(
        self, actor: ActorContext, job_id: UUID, stage: str | None = None
    ) -> GateResult:
        with self._unit(
            "evaluate_stage_completion", actor, [job_key(job_id)],
            entity=_Entity("JobCard", job_id), job_id=job_id,
        ) as uow:
            job = uow.jobs.get_job(actor.tenant_id, job_id, for_update=True)
            outcome = uow.gate.evaluate_stage_completion(
                job=job, stage=stage or job.stage, actor_id=actor.actor_id
            )
            return _gate_result(outcome)

    def assign_job(
        self,
        actor: ActorContext,
        job_id: UUID,
        assigned_to: UUID | None,
        *,
        expected_version: int | None = None,
    ) -> JobCardInfo:
        with self._unit(
            "assign_job", actor, [job_key(job_id)],
            entity=_Entity("JobCard", job_id), job_id=job_id,
        ) as uow:
            job = uow.jobs.assign_job(
                tenant_id=actor.tenant_id,
                job_id=job_id,
                assigned_to=assigned_to,
                actor_id=actor.actor_id,
                expected_version=expected_version,
            )
            return JobCardInfo.from_model(job)

    def cancel_job(
        self,
        actor: ActorContext,
        job_id: UUID,
        *,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> JobCardInfo:
        with self._unit(
            "cancel_job", actor, [job_key(job_id)],
            entity=_Entity("JobCard", job_id), job_id=job_id,
        ) as uow:
            job = uow.jobs.cancel_job(
                tenant_id=actor.tenant_id,
                job_id=job_id,
                actor_id=actor.actor_id,
                reason=reason,
                expected_version=expected_version,
            )
            return JobCardInfo.from_model(job)

    # ------------------------------------------------------------------
    # Quality gate
    # ------------------------------------------------------------------

    def record_inspection(
        self,
        actor: ActorContext,
        *,
        qc_status: QCStatus,
        production_job_id: UUID | None = None,
        delivery_note_id: UUID | None = None,
        stage: str | None = None,
        defects: Sequence[Defect | Mapping[str, Any]] | None = None,
        remarks: str | None = None,
        create_rework: bool = False,
        rework_expected_hours: Decimal | None = None,
        rework_assigned_to: UUID | None = None,
        idempotency_key: str | None = None,
        inspector_id: UUID | None = None,
    ) -> InspectionResult:
        source = source_from_ids(production_job_id, delivery_note_id)
        parsed_defects = _defects(defects)
        if production_job_id is not None:
            keys = [job_key(production_job_id)]
        else:
            keys = [delivery_note_key(delivery_note_id)]
        with self._unit(
            "record_inspection", actor, keys,
            entity=_Entity("JobCard", production_job_id) if production_job_id else None,
            job_id=production_job_id,
        ) as uow:
            outcome = uow.gate.record_inspection(
                tenant_id=actor.tenant_id,
                source=source,
                inspector_id=inspector_id or actor.actor_id,
                qc_status=QCStatus(qc_status),
                stage=stage,
                defects=parsed_defects,
                remarks=remarks,
                create_rework=create_rework,
                rework_expected_hours=to_decimal(rework_expected_hours, "rework_expected_hours")
                if rework_expected_hours is not None
                else None,
                rework_assigned_to=rework_assigned_to,
                idempotency_key=idempotency_key,
            )
            return InspectionResult(
                qc_record=QCRecordInfo.from_model(outcome.record),
                gate=_gate_result(outcome.gate),
                rework_job_id=outcome.rework.id if outcome.rework is not None else None,
                replayed=outcome.replayed,
            )

    # ------------------------------------------------------------------
    # Rework
    # ------------------------------------------------------------------

    def spawn_rework(
        self,
        actor: ActorContext,
        *,
        production_job_id: UUID | None = None,
        delivery_note_id: UUID | None = None,
        expected_hours: Decimal | None = None,
        assigned_to: UUID | None = None,
        notes: str | None = None,
        material_needed: Sequence[Mapping[str, Any]] | None = None,
        source_qc_record_id: UUID | None = None,
    ) -> ReworkJobInfo:
        source = source_from_ids(production_job_id, delivery_note_id)
        keys = [qc_key(source_qc_record_id)] if source_qc_record_id else []
        if production_job_id is not None:
            keys.append(job_key(production_job_id))
        with self._unit("spawn_rework", actor, keys, job_id=production_job_id) as uow:
            rework = uow.rework.spawn(
                tenant_id=actor.tenant_id,
                source=source,
                actor_id=actor.actor_id,
                expected_hours=to_decimal(expected_hours, "expected_hours")
                if expected_hours is not None
                else None,
                assigned_to=assigned_to,
                notes=notes,
                material_needed=material_needed,
                source_qc_record_id=source_qc_record_id,
            )
            return ReworkJobInfo.from_model(rework)

    def transition_rework(
        self,
        actor: ActorContext,
        rework_id: UUID,
        new_status: ReworkStatus,
        *,
        expected_version: int | None = None,
    ) -> ReworkTransitionResult:
        with self._read() as session:
            rework = QualitySelector(session).get_rework(actor.tenant_id, rework_id)
        if rework is None:
            raise NotFoundError("ReworkJob", str(rework_id))
        keys = [rework_key(rework_id)]
        if rework.production_job_id is not None:
            keys.append(job_key(rework.production_job_id))

        with self._unit(
            "transition_rework", actor, keys,
            entity=_Entity("ReworkJob", rework_id), job_id=rework.production_job_id,
        ) as uow:
            row, resumed = uow.rework.transition_status(
                tenant_id=actor.tenant_id,
                rework_id=rework_id,
                new_status=ReworkStatus(new_status),
                actor_id=actor.actor_id,
                expected_version=expected_version,
            )
            return ReworkTransitionResult(
                rework=ReworkJobInfo.from_model(row),
                resumed_job=JobCardInfo.from_model(resumed) if resumed is not None else None,
            )

    def update_rework(
        self,
        actor: ActorContext,
        rework_id: UUID,
        *,
        assigned_to: UUID | None = None,
        actual_hours: Decimal | None = None,
        expected_hours: Decimal | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> ReworkJobInfo:
        with self._unit(
            "update_rework", actor, [rework_key(rework_id)],
            entity=_Entity("ReworkJob", rework_id),
        ) as uow:
            rework = uow.rework.update_details(
                tenant_id=actor.tenant_id,
                rework_id=rework_id,
                actor_id=actor.actor_id,
                assigned_to=assigned_to,
                actual_hours=to_decimal(actual_hours, "actual_hours")
                if actual_hours is not None
                else None,
                expected_hours=to_decimal(expected_hours, "expected_hours")
                if expected_hours is not None
                else None,
                notes=notes,
                expected_version=expected_version,
            )
            return ReworkJobInfo.from_model(rework)

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def create_return(
        self,
        actor: ActorContext,
        *,
        delivery_note_id: UUID,
        items: Sequence[ReturnItem | Mapping[str, Any]],
        client_id: UUID | None = None,
        invoice_id: UUID | None = None,
        reason: str | None = None,
    ) -> ReturnRecordInfo:
        parsed = _return_items(items)
        with self._unit("create_return", actor, [delivery_note_key(delivery_note_id)]) as uow:
            record = uow.returns.create_return(
                tenant_id=actor.tenant_id,
                delivery_note_id=delivery_note_id,
                items=parsed,
                actor_id=actor.actor_id,
                client_id=client_id,
                invoice_id=invoice_id,
                reason=reason,
            )
            return ReturnRecordInfo.from_model(record)

    def inspect_return(
        self,
        actor: ActorContext,
        return_id: UUID,
        result: ReturnOutcome,
        *,
        remarks: str | None = None,
        rework_assigned_to: UUID | None = None,
        rework_expected_hours: Decimal | None = None,
    ) -> ReturnInspectionResult:
        with self._read() as session:
            existing = ReturnSelector(session).get(actor.tenant_id, return_id)
        if existing is None:
            raise NotFoundError("ReturnRecord", str(return_id))
        keys = [return_key(return_id), delivery_note_key(existing.delivery_note_id)]
        keys += [item_key(i["item_id"]) for i in existing.items if i.get("item_id")]

        with self._unit(
            "inspect_return", actor, keys, entity=_Entity("ReturnRecord", return_id)
        ) as uow:
            record, rework, transactions, wastage = uow.returns.inspect(
                tenant_id=actor.tenant_id,
                return_id=return_id,
                inspected_by=actor.actor_id,
                result=ReturnOutcome(result),
                remarks=remarks,
                rework_assigned_to=rework_assigned_to,
                rework_expected_hours=to_decimal(rework_expected_hours, "rework_expected_hours")
                if rework_expected_hours is not None
                else None,
            )
            return ReturnInspectionResult(
                return_record=ReturnRecordInfo.from_model(record),
                rework_job_id=rework.id if rework is not None else None,
                transactions=tuple(StockTransactionInfo.from_model(t) for t in transactions),
                wastage=tuple(WastageInfo.from_model(w) for w in wastage),
            )

    def settle_return(
        self,
        actor: ActorContext,
        return_id: UUID,
        *,
        accepted: bool,
        remarks: str | None = None,
        expected_version: int | None = None,
    ) -> ReturnRecordInfo:
        with self._unit(
            "settle_return", actor, [return_key(return_id)],
            entity=_Entity("ReturnRecord", return_id),
        ) as uow:
            record = uow.returns.settle(
                tenant_id=actor.tenant_id,
                return_id=return_id,
                accepted=accepted,
                settled_by=actor.actor_id,
                remarks=remarks,
                expected_version=expected_version,
            )
            return ReturnRecordInfo.from_model(record)

    def reject_return(
        self,
        actor: ActorContext,
        return_id: UUID,
        *,
        remarks: str | None = None,
        expected_version: int | None = None,
    ) -> ReturnRecordInfo:
        with self._unit(
            "reject_return", actor, [return_key(return_id)],
            entity=_Entity("ReturnRecord", return_id),
        ) as uow:
            record = uow.returns.reject(
                tenant_id=actor.tenant_id,
                return_id=return_id,
                actor_id=actor.actor_id,
                remarks=remarks,
                expected_version=expected_version,
            )
            return ReturnRecordInfo.from_model(record)

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def create_item(
        self,
        actor: ActorContext,
        *,
        item_code: str,
        name: str,
        uom: str = "NOS",
        reorder_level: Decimal | None = None,
    ) -> InventoryItemInfo:
        with self._unit("create_item", actor) as uow:
            item = uow.ledger.create_item(
                tenant_id=actor.tenant_id,
                item_code=item_code,
                name=name,
                uom=uom,
                reorder_level=to_decimal(reorder_level, "reorder_level")
                if reorder_level is not None
                else None,
            )
            return InventoryItemInfo.from_model(item)

    def post_transaction(
        self,
        actor: ActorContext,
        item_id: UUID,
        *,
        transaction_type: TransactionType,
        qty: Decimal,
        reference_type: ReferenceType = ReferenceType.MANUAL,
        reference_id: UUID | None = None,
        remarks: str | None = None,
    ) -> StockTransactionInfo:
        with self._unit("post_transaction", actor, [item_key(item_id)]) as uow:
            txn = uow.ledger.post_transaction(
                tenant_id=actor.tenant_id,
                item_id=item_id,
                transaction_type=TransactionType(transaction_type),
                qty=to_decimal(qty, "qty"),
                reference_type=ReferenceType(reference_type),
                reference_id=reference_id,
                remarks=remarks,
                actor_id=actor.actor_id,
            )
            return StockTransactionInfo.from_model(txn)

    def issue_material(
        self,
        actor: ActorContext,
        target: MaterialTarget,
        lines: Sequence[MaterialLine | Mapping[str, Any]],
        *,
        remarks: str | None = None,
    ) -> MaterialIssueInfo:
        parsed = _material_lines(lines)
        keys = [item_key(line.item_id) for line in parsed]
        job_id = None
        if isinstance(target, JobTarget):
            keys.append(job_key(target.job_id))
            job_id = target.job_id
        elif isinstance(target, ReworkTarget):
            keys.append(rework_key(target.rework_job_id))
        with self._unit("issue_material", actor, keys, job_id=job_id) as uow:
            outcome = uow.ledger.issue_material(
                tenant_id=actor.tenant_id,
                target=target,
                lines=parsed,
                actor_id=actor.actor_id,
                remarks=remarks,
            )
            return MaterialIssueInfo.from_model(
                outcome.issue, outcome.transactions, outcome.wastage
            )

    def reserve_stock(self, actor: ActorContext, item_id: UUID, qty: Decimal) -> InventoryItemInfo:
        with self._unit("reserve_stock", actor, [item_key(item_id)]) as uow:
            item = uow.ledger.reserve(
                tenant_id=actor.tenant_id,
                item_id=item_id,
                qty=to_decimal(qty, "qty"),
                actor_id=actor.actor_id,
            )
            return InventoryItemInfo.from_model(item)

    def unreserve_stock(self, actor: ActorContext, item_id: UUID, qty: Decimal) -> InventoryItemInfo:
        with self._unit("unreserve_stock", actor, [item_key(item_id)]) as uow:
            item = uow.ledger.unreserve(
                tenant_id=actor.tenant_id,
                item_id=item_id,
                qty=to_decimal(qty, "qty"),
                actor_id=actor.actor_id,
            )
            return InventoryItemInfo.from_model(item)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _found(value, entity_type: str, entity_id: UUID):
        if value is None:
            raise NotFoundError(entity_type, str(entity_id))
        return value

    def get_job(self, tenant_id: UUID, job_id: UUID) -> JobCardInfo:
        with self._read() as session:
            return self._found(JobSelector(session).get(tenant_id, job_id), "JobCard", job_id)

    def list_jobs(
        self,
        tenant_id: UUID,
        *,
        status: JobStatus | None = None,
        stage: str | None = None,
        project_id: UUID | None = None,
        assigned_to: UUID | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[JobCardInfo]:
        with self._read() as session:
            return JobSelector(session).list(
                tenant_id,
                status=status,
                stage=stage,
                project_id=project_id,
                assigned_to=assigned_to,
                limit=limit,
                offset=offset,
            )

    def job_labour(self, tenant_id: UUID, job_id: UUID) -> list[LabourEntryInfo]:
        with self._read() as session:
            return JobSelector(session).labour_entries(tenant_id, job_id)

    def get_qc_record(self, tenant_id: UUID, qc_record_id: UUID) -> QCRecordInfo:
        with self._read() as session:
            return self._found(
                QualitySelector(session).get_record(tenant_id, qc_record_id),
                "QCRecord",
                qc_record_id,
            )

    def list_qc_records(self, tenant_id: UUID, **filters: Any) -> Page[QCRecordInfo]:
        with self._read() as session:
            return QualitySelector(session).list_records(tenant_id, **filters)

    def get_rework(self, tenant_id: UUID, rework_id: UUID) -> ReworkJobInfo:
        with self._read() as session:
            return self._found(
                QualitySelector(session).get_rework(tenant_id, rework_id), "ReworkJob", rework_id
            )

    def list_reworks(self, tenant_id: UUID, **filters: Any) -> Page[ReworkJobInfo]:
        with self._read() as session:
            return QualitySelector(session).list_reworks(tenant_id, **filters)

    def reworks_for_qc_record(self, tenant_id: UUID, qc_record_id: UUID) -> list[ReworkJobInfo]:
        with self._read() as session:
            return QualitySelector(session).reworks_for_qc_record(tenant_id, qc_record_id)

    def get_return(self, tenant_id: UUID, return_id: UUID) -> ReturnRecordInfo:
        with self._read() as session:
            return self._found(
                ReturnSelector(session).get(tenant_id, return_id), "ReturnRecord", return_id
            )

    def list_returns(
        self, tenant_id: UUID, *, status: ReturnStatus | None = None, **filters: Any
    ) -> Page[ReturnRecordInfo]:
        with self._read() as session:
            return ReturnSelector(session).list(tenant_id, status=status, **filters)

    def get_item(self, tenant_id: UUID, item_id: UUID) -> InventoryItemInfo:
        with self._read() as session:
            return self._found(
                LedgerSelector(session).get_item(tenant_id, item_id), "InventoryItem", item_id
            )

    def list_items(self, tenant_id: UUID, *, below_reorder_only: bool = False) -> list[InventoryItemInfo]:
        with self._read() as session:
            return LedgerSelector(session).list_items(
                tenant_id, below_reorder_only=below_reorder_only
            )

    def item_transactions(
        self,
        tenant_id: UUID,
        item_id: UUID,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[StockTransactionInfo]:
        with self._read() as session:
            return LedgerSelector(session).transactions(
                tenant_id, item_id, limit=limit, offset=offset
            )

    def verify_item_ledger(self, tenant_id: UUID, item_id: UUID) -> LedgerVerification:
        with self._read() as session:
            return self._found(
                LedgerSelector(session).verify_item_ledger(tenant_id, item_id),
                "InventoryItem",
                item_id,
            )

    def audit_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        with self._read() as session:
            return AuditorService(session, self._clock).get_trace(entity_type, entity_id)

    def validate_audit_chain(self, tenant_id: UUID) -> bool:
        with self._read() as session:
            return AuditorService(session, self._clock).validate_chain(tenant_id)
