"""
BaseService -- common base for the mutating kernel services.

Responsibility:
    Holds the caller's SQLAlchemy ``Session``.  Concrete services persist
    through ``session.flush()`` and never commit or roll back; the
    ProductionEngine owns transaction boundaries, so a job-stage completion
    that issues material and runs the quality gate commits or fails as one
    unit.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from production_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for flush-only services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide list/filter queries; those belong in
          ``production_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
