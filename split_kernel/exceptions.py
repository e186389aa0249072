"""
Typed Exception Hierarchy for the Split Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Money moves on the output of this kernel. Callers (HTTP handlers, the billing
scheduler, refund tooling) must react to failures by TYPE, never by parsing
message strings:

    try:
        service.activate(config_id, actor_id=actor)
    except ConfigurationNotValidatedError as e:
        api_response(409, code=e.code, configuration_id=e.configuration_id)
    except StateConflictError as e:
        api_response(409, code=e.code)

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a static CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SplitKernelError (base)
    |
    +-- ValidationError
    |   +-- ConfigurationValidationError   (list of reasons, all at once)
    |   +-- InvalidScopeError
    |   +-- RuleReceiverMismatchError
    |
    +-- StateConflictError
    |   +-- ActiveConfigurationMutationError
    |   +-- ArchivedConfigurationError
    |   +-- LockedReceiverError
    |   +-- InvalidStatusTransitionError
    |   +-- ConfigurationNotValidatedError
    |   +-- ConcurrentActivationError
    |   +-- ConcurrentModificationError
    |   +-- CycleAlreadyClosedError
    |   +-- ChargeStatusTransitionError
    |   +-- ImmutabilityViolationError
    |
    +-- NotFoundError
    |   +-- ConfigurationNotFoundError
    |   +-- ReceiverNotFoundError
    |   +-- RuleNotFoundError
    |   +-- BillingCycleNotFoundError
    |   +-- ChargeNotFoundError
    |
    +-- CalculationInconsistencyError
    |
    +-- AuditIntegrityError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|------------------------------------
Validation      | CONFIGURATION_INVALID         | validate() found violated checks
                | INVALID_SCOPE                 | scope ids don't fit the scope kind
                | RULE_RECEIVER_MISMATCH        | rule/receiver in different configs
----------------|-------------------------------|------------------------------------
State conflict  | ACTIVE_CONFIGURATION_LOCKED   | mutating an ACTIVE configuration
                | CONFIGURATION_ARCHIVED        | mutating an ARCHIVED configuration
                | RECEIVER_LOCKED               | updating/deleting a locked receiver
                | INVALID_STATUS_TRANSITION     | transition not in the state machine
                | CONFIGURATION_NOT_VALIDATED   | activate without validation
                | CONCURRENT_ACTIVATION         | scope already has an ACTIVE config
                | CONCURRENT_MODIFICATION       | stale row_version on write
                | CYCLE_ALREADY_CLOSED          | closing a non-OPEN billing cycle
                | CHARGE_STATUS_TRANSITION      | illegal charge status change
                | IMMUTABILITY_VIOLATION        | audit row / frozen charge touched
----------------|-------------------------------|------------------------------------
Not found       | CONFIGURATION_NOT_FOUND       | unknown configuration id
                | RECEIVER_NOT_FOUND            | unknown receiver id
                | RULE_NOT_FOUND                | unknown rule id
                | BILLING_CYCLE_NOT_FOUND       | unknown billing cycle id
                | CHARGE_NOT_FOUND              | unknown charge id / token
----------------|-------------------------------|------------------------------------
Calculation     | CALCULATION_INCONSISTENCY     | split total != gross amount
----------------|-------------------------------|------------------------------------
Audit           | AUDIT_INTEGRITY_FAILURE       | recomputed hash != stored hash

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VALIDATION ERRORS ARE LISTS:

    except ConfigurationValidationError as e:
        return {"error": e.code, "reasons": e.reasons}

2. CALCULATION INCONSISTENCY BLOCKS MONEY MOVEMENT:

    except CalculationInconsistencyError as e:
        alert_billing_team(e.computed_total, e.gross_amount)
        # never create the charge

3. STATE CONFLICTS HAVE NO PARTIAL EFFECT -- the caller's transaction is
   rolled back; retrying the same request yields the same conflict.

===============================================================================
"""


class SplitKernelError(Exception):
    """
    Base exception for all split kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SPLIT_KERNEL_ERROR"


# Validation


class ValidationError(SplitKernelError):
    """Base exception for recoverable configuration mistakes."""

    code: str = "VALIDATION_ERROR"


class ConfigurationValidationError(ValidationError):
    """
    Configuration failed one or more validation checks.

    All violated checks are reported together in ``reasons`` so the caller
    can fix the configuration in one pass.
    """

    code: str = "CONFIGURATION_INVALID"

    def __init__(self, configuration_id: str, reasons: list[str]):
        self.configuration_id = configuration_id
        self.reasons = list(reasons)
        super().__init__(
            f"Configuration {configuration_id} failed validation: "
            + "; ".join(self.reasons)
        )


class InvalidScopeError(ValidationError):
    """Scope identifiers do not match the scope kind."""

    code: str = "INVALID_SCOPE"

    def __init__(self, scope: str, reason: str):
        self.scope = scope
        self.reason = reason
        super().__init__(f"Invalid scope {scope}: {reason}")


class RuleReceiverMismatchError(ValidationError):
    """Rule references a receiver owned by a different configuration."""

    code: str = "RULE_RECEIVER_MISMATCH"

    def __init__(self, configuration_id: str, receiver_id: str):
        self.configuration_id = configuration_id
        self.receiver_id = receiver_id
        super().__init__(
            f"Receiver {receiver_id} does not belong to configuration "
            f"{configuration_id}"
        )


# State conflicts


class StateConflictError(SplitKernelError):
    """Base exception for operations rejected by the current state."""

    code: str = "STATE_CONFLICT"


class ActiveConfigurationMutationError(StateConflictError):
    """Receivers, rules and fields of an ACTIVE configuration are frozen."""

    code: str = "ACTIVE_CONFIGURATION_LOCKED"

    def __init__(self, configuration_id: str, operation: str):
        self.configuration_id = configuration_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} on active configuration {configuration_id}. "
            f"Deactivate it first or create a new version."
        )


class ArchivedConfigurationError(StateConflictError):
    """ARCHIVED is terminal."""

    code: str = "CONFIGURATION_ARCHIVED"

    def __init__(self, configuration_id: str, operation: str):
        self.configuration_id = configuration_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} on archived configuration {configuration_id}"
        )


class LockedReceiverError(StateConflictError):
    """Locked receivers reject update and delete in every state."""

    code: str = "RECEIVER_LOCKED"

    def __init__(self, receiver_id: str, operation: str):
        self.receiver_id = receiver_id
        self.operation = operation
        super().__init__(f"Cannot {operation} locked receiver {receiver_id}")


class InvalidStatusTransitionError(StateConflictError):
    """Requested lifecycle transition is not allowed from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, entity_id: str, current_status: str, target_status: str):
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot transition {entity_id} from {current_status} "
            f"to {target_status}"
        )


class ConfigurationNotValidatedError(StateConflictError):
    """Activation requires a passing validation since the last mutation."""

    code: str = "CONFIGURATION_NOT_VALIDATED"

    def __init__(self, configuration_id: str):
        self.configuration_id = configuration_id
        super().__init__(
            f"Configuration {configuration_id} must be validated before activation"
        )


class ConcurrentActivationError(StateConflictError):
    """Another configuration became ACTIVE in the same scope concurrently."""

    code: str = "CONCURRENT_ACTIVATION"

    def __init__(self, configuration_id: str, scope: str, scope_key: str):
        self.configuration_id = configuration_id
        self.scope = scope
        self.scope_key = scope_key
        super().__init__(
            f"Concurrent activation detected for scope {scope} [{scope_key}] "
            f"while activating {configuration_id}"
        )


class ConcurrentModificationError(StateConflictError):
    """Row was modified by another transaction (stale row_version)."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently; reload and retry"
        )


class CycleAlreadyClosedError(StateConflictError):
    """Billing cycle close is a one-way transition."""

    code: str = "CYCLE_ALREADY_CLOSED"

    def __init__(self, cycle_id: str, billing_month: str):
        self.cycle_id = cycle_id
        self.billing_month = billing_month
        super().__init__(
            f"Billing cycle {cycle_id} ({billing_month}) is not open"
        )


class ChargeStatusTransitionError(StateConflictError):
    """Charge status change not allowed."""

    code: str = "CHARGE_STATUS_TRANSITION"

    def __init__(self, charge_id: str, current_status: str, target_status: str):
        self.charge_id = charge_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Charge {charge_id} cannot move from {current_status} "
            f"to {target_status}"
        )


class ImmutabilityViolationError(StateConflictError):
    """Attempt to modify or delete a record that is frozen."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Not found


class NotFoundError(SplitKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class ConfigurationNotFoundError(NotFoundError):
    code: str = "CONFIGURATION_NOT_FOUND"

    def __init__(self, configuration_id: str):
        self.configuration_id = configuration_id
        super().__init__(f"Split configuration not found: {configuration_id}")


class ReceiverNotFoundError(NotFoundError):
    code: str = "RECEIVER_NOT_FOUND"

    def __init__(self, receiver_id: str):
        self.receiver_id = receiver_id
        super().__init__(f"Receiver not found: {receiver_id}")


class RuleNotFoundError(NotFoundError):
    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")


class BillingCycleNotFoundError(NotFoundError):
    code: str = "BILLING_CYCLE_NOT_FOUND"

    def __init__(self, cycle_id: str):
        self.cycle_id = cycle_id
        super().__init__(f"Billing cycle not found: {cycle_id}")


class ChargeNotFoundError(NotFoundError):
    code: str = "CHARGE_NOT_FOUND"

    def __init__(self, charge_ref: str):
        self.charge_ref = charge_ref
        super().__init__(f"Billing charge not found: {charge_ref}")


# Calculation


class CalculationInconsistencyError(SplitKernelError):
    """
    Split result does not distribute the gross amount.

    Signals a misconfigured rule set with real financial impact. Charge
    creation is blocked; the computed total and the expected gross are
    carried for debugging.
    """

    code: str = "CALCULATION_INCONSISTENCY"

    def __init__(
        self,
        computed_total: str,
        gross_amount: str,
        configuration_id: str | None = None,
        errors: list[str] | None = None,
    ):
        self.computed_total = computed_total
        self.gross_amount = gross_amount
        self.configuration_id = configuration_id
        self.errors = list(errors or [])
        super().__init__(
            f"Split of configuration {configuration_id} distributed "
            f"{computed_total} but gross amount is {gross_amount}"
        )


# Audit


class AuditIntegrityError(SplitKernelError):
    """
    Recomputed integrity hash does not match the stored hash.

    Stored history has been tampered with. Investigate immediately.
    """

    code: str = "AUDIT_INTEGRITY_FAILURE"

    def __init__(self, configuration_id: str | None, entry_ids: list[str]):
        self.configuration_id = configuration_id
        self.entry_ids = list(entry_ids)
        super().__init__(
            f"Audit integrity check failed for configuration {configuration_id}: "
            f"{len(self.entry_ids)} tampered entr"
            f"{'y' if len(self.entry_ids) == 1 else 'ies'}"
        )
