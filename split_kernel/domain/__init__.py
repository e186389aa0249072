"""
Pure domain layer.

Value objects, enums, scope keys and DTOs with NO dependencies on the ORM,
the database, or I/O (SystemClock aside).
"""

from split_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from split_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from split_kernel.domain.dtos import (
    AuditAction,
    AuditEntityType,
    AuditLogInfo,
    AuditVerification,
    BillingCycleInfo,
    BillingCycleStatus,
    BillingScope,
    ChargeInfo,
    ChargeRequest,
    ChargeStatus,
    ChargeType,
    ClosedCycle,
    ConfigurationStatus,
    Page,
    ReceiverInput,
    ReceiverType,
    RuleInput,
    RuleType,
    ScopeKey,
    SplitConfigurationInfo,
    SplitReceiverInfo,
    SplitRuleInfo,
    SplitScope,
    ValidationReport,
)
from split_kernel.domain.values import Currency, Money

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Currency",
    "Money",
    "SplitScope",
    "ConfigurationStatus",
    "ReceiverType",
    "RuleType",
    "ChargeType",
    "AuditAction",
    "AuditEntityType",
    "BillingCycleStatus",
    "ChargeStatus",
    "ScopeKey",
    "BillingScope",
    "RuleInput",
    "ReceiverInput",
    "ChargeRequest",
    "SplitRuleInfo",
    "SplitReceiverInfo",
    "SplitConfigurationInfo",
    "ValidationReport",
    "AuditLogInfo",
    "AuditVerification",
    "BillingCycleInfo",
    "ChargeInfo",
    "ClosedCycle",
    "Page",
]
