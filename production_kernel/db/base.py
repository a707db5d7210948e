"""
ORM base classes shared by every model in the kernel.

Column conventions come from the annotation map on ``Base``: quantities
and labour hours are ``Numeric(38, 9)`` (never float), timestamps are
timezone-aware, plain ``int`` is a ``BigInteger`` and ids are uuid4 values
kept as 36-character strings so SQLite and PostgreSQL store them alike.

Models only; nothing here imports services or the domain layer.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID in a String(36) column; binds ``str`` or ``UUID``, always loads ``UUID``."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Mutable aggregate rows: job cards, rework jobs, returns, tenant workflows.

    ``updated_by_id``/``updated_at`` record the last actor to touch the row;
    services set ``updated_by_id`` on every mutation.
    """

    __abstract__ = True

    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
