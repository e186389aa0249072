"""Services for the split kernel (write side)."""

from split_kernel.services.audit_trail import SplitAuditService
from split_kernel.services.billing_cycle_service import BillingCycleService
from split_kernel.services.collaborators import (
    GatewayChargeRequest,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    PlanResolver,
    StaticPlanResolver,
)
from split_kernel.services.configuration_service import SplitConfigurationService
from split_kernel.services.sequence_service import SequenceService

__all__ = [
    "BillingCycleService",
    "GatewayChargeRequest",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "PlanResolver",
    "SequenceService",
    "SplitAuditService",
    "SplitConfigurationService",
    "StaticPlanResolver",
]
