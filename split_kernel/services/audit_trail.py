"""
SplitAuditService -- tamper-evident audit trail for split configurations.

Responsibility:
    Writes one append-only ``SplitAuditLog`` row per mutating operation,
    in the caller's transaction, and recomputes integrity hashes to detect
    tampering of stored history.

Architecture position:
    Kernel > Services -- imperative shell, called by
    SplitConfigurationService and BillingCycleService.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - integrity_hash = sha256(configuration_id | action | entity_type |
      entity_id | before | after | performed_by | timestamp).  Each entry
      is verifiable on its own; entries are not chained.
    - Append-only: the ORM listeners in db/immutability.py reject UPDATE
      and DELETE on SplitAuditLog.
    - before/after are canonical JSON (sorted keys, Decimal as string).

Failure modes:
    - Any exception while writing the entry propagates; the caller's
      transaction rolls back, so a mutation is never committed without
      its audit entry.
    - AuditIntegrityError from verify_trail(raise_on_failure=True).

Audit relevance:
    This IS the audit service.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from split_kernel.domain.clock import Clock, SystemClock
from split_kernel.domain.dtos import AuditAction, AuditEntityType, AuditVerification
from split_kernel.exceptions import AuditIntegrityError
from split_kernel.logging_config import get_logger
from split_kernel.models.audit_log import SplitAuditLog
from split_kernel.services.sequence_service import SequenceService
from split_kernel.utils.hashing import canonicalize_json, hash_audit_entry

logger = get_logger("services.audit")


def _id_str(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


class SplitAuditService:
    """
    Service for creating and verifying audit log entries.

    Contract:
        ``record()`` is the only way rows reach ``split_audit_logs``.

    Guarantees:
        - Every entry's ``integrity_hash`` is a deterministic function of
          the entry's own stored fields, so any verifier holding the row
          can recompute it.
        - Sequence numbers come from SequenceService (locked counter row).

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT query audit history for display; see
          SplitConfigurationSelector.list_audit_logs.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def record(
        self,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: UUID | None,
        performed_by: UUID,
        configuration_id: UUID | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> SplitAuditLog:
        """
        Append one audit entry.

        Postconditions:
            - A new SplitAuditLog row is flushed with a monotonically
              increasing ``seq`` and a valid integrity hash.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_LOG)
        timestamp = self._clock.now_utc()
        before_json = canonicalize_json(before) if before is not None else None
        after_json = canonicalize_json(after) if after is not None else None

        entry = SplitAuditLog(
            seq=seq,
            configuration_id=configuration_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before_json,
            after=after_json,
            performed_by=performed_by,
            timestamp=timestamp,
            integrity_hash=hash_audit_entry(
                configuration_id=_id_str(configuration_id),
                action=action.value,
                entity_type=entity_type.value,
                entity_id=_id_str(entity_id),
                before=before_json,
                after=after_json,
                performed_by=str(performed_by),
                timestamp=timestamp,
            ),
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "seq": seq,
                "action": action.value,
                "entity_type": entity_type.value,
                "entity_id": _id_str(entity_id),
                "configuration_id": _id_str(configuration_id),
            },
        )
        return entry

    @staticmethod
    def compute_hash(entry: SplitAuditLog) -> str:
        """Recompute the integrity hash from the stored fields."""
        return hash_audit_entry(
            configuration_id=_id_str(entry.configuration_id),
            action=AuditAction(entry.action).value,
            entity_type=AuditEntityType(entry.entity_type).value,
            entity_id=_id_str(entry.entity_id),
            before=entry.before,
            after=entry.after,
            performed_by=str(entry.performed_by),
            timestamp=entry.timestamp,
        )

    def verify_entry(self, entry: SplitAuditLog) -> bool:
        return self.compute_hash(entry) == entry.integrity_hash

    def verify_trail(
        self,
        configuration_id: UUID | None = None,
        raise_on_failure: bool = False,
    ) -> AuditVerification:
        """
        Recompute the hash of every entry of a configuration, or of the
        whole table when ``configuration_id`` is None.

        Raises:
            AuditIntegrityError: a hash mismatches and ``raise_on_failure``.
        """
        stmt = select(SplitAuditLog).order_by(SplitAuditLog.seq)
        if configuration_id is not None:
            stmt = stmt.where(SplitAuditLog.configuration_id == configuration_id)
        entries = self._session.execute(stmt).scalars().all()

        tampered = tuple(entry.id for entry in entries if not self.verify_entry(entry))
        result = AuditVerification(
            configuration_id=configuration_id,
            entries_checked=len(entries),
            tampered_entry_ids=tampered,
        )

        if tampered:
            logger.critical(
                "audit_integrity_failure",
                extra={
                    "configuration_id": _id_str(configuration_id),
                    "tampered_count": len(tampered),
                    "tampered_entry_ids": [str(i) for i in tampered],
                },
            )
            if raise_on_failure:
                raise AuditIntegrityError(
                    _id_str(configuration_id), [str(i) for i in tampered]
                )
        else:
            logger.info(
                "audit_trail_verified",
                extra={
                    "configuration_id": _id_str(configuration_id),
                    "entries_checked": len(entries),
                },
            )
        return result
