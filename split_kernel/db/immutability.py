"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The audit trail is only worth something if stored history cannot be edited,
and a charge handed to the payment gateway must keep the amounts and split
the gateway was given.  SQLAlchemy fires events before UPDATE/DELETE reach
the database; these listeners intercept them:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable                        | What
----------------|---------------------------------------|----------------------------
SplitAuditLog   | ALWAYS (from creation)                | every column, and DELETE
BillingCharge   | After gateway_payment_id was attached | financial fields, and DELETE

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY CHECK "WAS ATTACHED" NOT "IS ATTACHED"?
   attach_gateway_payment() itself sets gateway_payment_id and moves the
   charge to PROCESSING in one flush.  We read the attribute history so that
   flush is allowed and every later change to a frozen field is not.

2. WHY INLINE IMPORTS?
   Models import from db, db imports from models.  Inline imports defer
   resolution until the function runs.

===============================================================================
USAGE
===============================================================================

    from split_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # called by create_tables()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from split_kernel.exceptions import ImmutabilityViolationError
from split_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

FROZEN_CHARGE_FIELDS = frozenset({
    "gross_value",
    "net_value",
    "platform_fee",
    "split_breakdown",
    "charge_type",
    "currency",
})


def _check_audit_log_immutability(mapper, connection, target):
    """Prevent any updates to SplitAuditLog records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "SplitAuditLog",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="SplitAuditLog",
        entity_id=str(target.id),
        reason="Audit log entries are immutable and cannot be modified",
    )


def _check_audit_log_delete(mapper, connection, target):
    """Prevent deletion of SplitAuditLog records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "SplitAuditLog",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="SplitAuditLog",
        entity_id=str(target.id),
        reason="Audit log entries cannot be deleted",
    )


def _gateway_was_attached(target) -> bool:
    """True if gateway_payment_id was set before the current flush."""
    history = get_history(target, "gateway_payment_id")
    if history.deleted:
        return history.deleted[0] is not None
    if history.added:
        return False
    return target.gateway_payment_id is not None


def _check_charge_immutability(mapper, connection, target):
    """
    Freeze the financial fields of a charge handed to the payment gateway.

    Status, payment and refund fields stay mutable.
    """
    if not _gateway_was_attached(target):
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key not in FROZEN_CHARGE_FIELDS and attr.key != "gateway_payment_id":
            continue
        if attr.history.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "BillingCharge",
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise ImmutabilityViolationError(
                entity_type="BillingCharge",
                entity_id=str(target.id),
                reason=(
                    f"Cannot modify field '{attr.key}' after the charge was "
                    f"sent to the payment gateway"
                ),
            )


def _check_charge_delete(mapper, connection, target):
    """Prevent deletion of a charge that was sent to the payment gateway."""
    if target.gateway_payment_id is None:
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "BillingCharge",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="BillingCharge",
        entity_id=str(target.id),
        reason="Charges sent to the payment gateway cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after models are imported and before any write.
    """
    from split_kernel.models.audit_log import SplitAuditLog
    from split_kernel.models.billing import BillingCharge

    for target, event_name, fn in _listeners(SplitAuditLog, BillingCharge):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _listeners(audit_log_cls, charge_cls):
    return (
        (audit_log_cls, "before_update", _check_audit_log_immutability),
        (audit_log_cls, "before_delete", _check_audit_log_delete),
        (charge_cls, "before_update", _check_charge_immutability),
        (charge_cls, "before_delete", _check_charge_delete),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    bypass immutability (e.g., simulating tampering).
    """
    from split_kernel.models.audit_log import SplitAuditLog
    from split_kernel.models.billing import BillingCharge

    for target, event_name, fn in _listeners(SplitAuditLog, BillingCharge):
        _safe_remove_listener(target, event_name, fn)
