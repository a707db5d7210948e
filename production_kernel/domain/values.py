"""
Value objects passed into engine operations.

All are frozen and validate themselves at construction, raising the
kernel's ValidationError so the API layer maps them to 400 like any
other input failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping
from uuid import UUID

from production_kernel.domain.statuses import DefectSeverity
from production_kernel.exceptions import ValidationError


def to_decimal(value: Any, field: str) -> Decimal:
    """Coerce numbers and numeric strings to Decimal, never through float."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    return result


@dataclass(frozen=True)
class ActorContext:
    """Identity supplied by the trusted identity layer for each request."""

    tenant_id: UUID
    actor_id: UUID
    role: str | None = None


@dataclass(frozen=True)
class Defect:
    description: str
    severity: DefectSeverity
    photo_ref: str | None = None

    def __post_init__(self) -> None:
        if not self.description or not self.description.strip():
            raise ValidationError("Defect description is required", field="defects")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Defect:
        severity = data.get("severity")
        try:
            severity = DefectSeverity(severity)
        except ValueError:
            raise ValidationError(
                f"Defect severity must be one of LOW, MEDIUM, HIGH (got {severity!r})",
                field="defects",
            )
        return cls(
            description=data.get("desc") or data.get("description") or "",
            severity=severity,
            photo_ref=data.get("photo_ref") or data.get("photoUrl"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"desc": self.description, "severity": self.severity.value}
        if self.photo_ref:
            out["photo_ref"] = self.photo_ref
        return out


@dataclass(frozen=True)
class MaterialLine:
    """One item in a material issue: qty consumed plus qty wasted."""

    item_id: UUID
    qty: Decimal
    wastage: Decimal = Decimal("0")
    wastage_reason: str | None = None
    batch_no: str | None = None
    from_reservation: bool = False

    def __post_init__(self) -> None:
        if self.qty <= 0:
            raise ValidationError("Issue quantity must be greater than zero", field="qty")
        if self.wastage < 0:
            raise ValidationError("Wastage cannot be negative", field="wastage")

    @property
    def total_qty(self) -> Decimal:
        return self.qty + self.wastage


@dataclass(frozen=True)
class ReturnItem:
    """A returned line: what came back and how much."""

    qty: Decimal
    item_id: UUID | None = None
    description: str | None = None
    dn_line_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.qty <= 0:
            raise ValidationError("Return quantity must be greater than zero", field="items")
        if self.item_id is None and not self.description:
            raise ValidationError("Return item needs an item or a description", field="items")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReturnItem:
        item_id = data.get("item_id")
        dn_line_id = data.get("dn_line_id")
        return cls(
            qty=to_decimal(data.get("qty", 0), "qty"),
            item_id=UUID(str(item_id)) if item_id else None,
            description=data.get("description"),
            dn_line_id=UUID(str(dn_line_id)) if dn_line_id else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": str(self.item_id) if self.item_id else None,
            "description": self.description,
            "qty": str(self.qty),
            "dn_line_id": str(self.dn_line_id) if self.dn_line_id else None,
        }
