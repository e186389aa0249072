"""
Module: split_kernel.models.audit_log
Responsibility: ORM persistence for the split audit trail.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - Append-only: ORM listeners in db/immutability.py reject every UPDATE
      and DELETE on this table.
    - integrity_hash = sha256(configuration_id | action | entity_type |
      entity_id | before | after | performed_by | timestamp); each row is
      independently verifiable.
    - configuration_id is a plain column, not a FK, so deleting a
      configuration never deletes its history.

Audit relevance:
    This table IS the audit trail.  Auditors recompute integrity_hash from
    the stored fields to detect tampering.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from split_kernel.db.base import Base, UUIDString, enum_column
from split_kernel.domain.dtos import AuditAction, AuditEntityType


class SplitAuditLog(Base):
    """
    One audit entry per mutating operation.

    Contract:
        Rows are written only by SplitAuditService, which computes the hash.
        ``before``/``after`` hold canonical JSON text.

    Guarantees:
        - seq is unique and increases in insertion order.
    """

    __tablename__ = "split_audit_logs"

    __table_args__ = (
        Index("idx_split_audit_config", "configuration_id"),
        Index("idx_split_audit_entity", "entity_type", "entity_id"),
        Index("idx_split_audit_timestamp", "timestamp"),
    )

    seq: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    configuration_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    action: Mapped[AuditAction] = mapped_column(enum_column(AuditAction), nullable=False)
    entity_type: Mapped[AuditEntityType] = mapped_column(
        enum_column(AuditEntityType),
        nullable=False,
    )
    entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    before: Mapped[str | None] = mapped_column(Text, nullable=True)
    after: Mapped[str | None] = mapped_column(Text, nullable=True)

    performed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    integrity_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<SplitAuditLog #{self.seq} {self.action.value} {self.entity_type.value}>"
