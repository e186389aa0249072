"""ORM models for the split kernel."""

from split_kernel.models.audit_log import SplitAuditLog
from split_kernel.models.billing import BillingCharge, BillingCycle, UsageRecord
from split_kernel.models.sequence import SequenceCounter
from split_kernel.models.split_configuration import (
    SplitConfiguration,
    SplitReceiver,
    SplitRule,
)

__all__ = [
    "SplitConfiguration",
    "SplitReceiver",
    "SplitRule",
    "SplitAuditLog",
    "BillingCycle",
    "UsageRecord",
    "BillingCharge",
    "SequenceCounter",
]
