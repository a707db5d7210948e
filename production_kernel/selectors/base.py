"""
Module: production_kernel.selectors.base
Responsibility: Base class for read-only query selectors, the query side of
    the engine.  List endpoints of the API and the engine's detail reads go
    through selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/dtos.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Every query is scoped to a tenant_id.
    - Selectors return frozen DTOs, never ORM instances.
"""

from abc import ABC
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from production_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)
T = TypeVar("T")

DEFAULT_LIMIT = 50
MAX_LIMIT = 500


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a filtered list."""

    items: tuple[T, ...]
    total: int
    limit: int
    offset: int


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries, and
        returns DTOs.  The caller owns the session and its transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def clamp(limit: int | None, offset: int | None) -> tuple[int, int]:
        limit = DEFAULT_LIMIT if limit is None else max(1, min(limit, MAX_LIMIT))
        offset = 0 if offset is None else max(0, offset)
        return limit, offset

    def paginate(self, stmt: Select, limit: int | None, offset: int | None) -> tuple[list, int, int, int]:
        """Run ``stmt`` for one page; returns (rows, total, limit, offset)."""
        limit, offset = self.clamp(limit, offset)
        total = self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()
        rows = list(self.session.execute(stmt.limit(limit).offset(offset)).scalars().all())
        return rows, total, limit, offset
