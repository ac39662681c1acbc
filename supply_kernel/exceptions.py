"""
Typed Exception Hierarchy for the Supply Kernel.

Every error raised by the kernel and its modules is a subclass of
``SupplyKernelError`` and carries:

  1. A TYPED class (catch by type, not by message)
  2. A ``code`` class attribute (machine-readable, API-safe)
  3. Structured attributes (entity id, expected vs actual status/version)

Example:
    try:
        lifecycle.send(order_id, ...)
    except StateConflictError as e:
        reload_and_retry(e.entity_id, e.actual)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SupplyKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidThresholdsError
    |   +-- InvalidQuantityError
    |   +-- ProofOfSendMissingError
    |   +-- ReasonTooShortError
    |   +-- InvalidPostponeDurationError
    |   +-- OverReceiptError
    |
    +-- NotFoundError
    |
    +-- StateConflictError
    |   +-- InvalidTransitionError
    |   +-- VersionConflictError
    |   +-- ReceivedQuantityConflictError
    |   +-- AlertAlreadyAcknowledgedError
    |   +-- StockoutPostponeError
    |   +-- MovementAlreadyDeletedError
    |
    +-- AuthorizationError
    +-- RateLimitError
    +-- ImmutabilityViolationError
    +-- AuditChainBrokenError
    +-- NotifierError

===============================================================================
RETRY SEMANTICS
===============================================================================

- ValidationError: malformed input, never auto-retried.
- NotFoundError: missing entity.
- StateConflictError: caller must reload; may retry with fresh state.
- AuthorizationError: insufficient role.
- RateLimitError: postponement cap exceeded for the trailing window.

Duplicate alerts and replayed idempotent transitions are NOT errors; the
services return the prior result instead.
"""

from typing import Any


class SupplyKernelError(Exception):
    """
    Base exception for all supply kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SUPPLY_KERNEL_ERROR"


# Validation


class ValidationError(SupplyKernelError):
    """Malformed or out-of-policy input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidThresholdsError(ValidationError):
    """Order threshold does not exceed the safety threshold."""

    code: str = "INVALID_THRESHOLDS"

    def __init__(self, safety_threshold: float, order_threshold: float):
        self.safety_threshold = safety_threshold
        self.order_threshold = order_threshold
        super().__init__(
            "order_threshold",
            f"order threshold {order_threshold} must exceed "
            f"safety threshold {safety_threshold}",
        )


class InvalidQuantityError(ValidationError):
    """Quantity is not strictly positive (or negative where zero is allowed)."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, quantity: float):
        self.quantity = quantity
        super().__init__(field, f"quantity {quantity} is not allowed")


class ProofOfSendMissingError(ValidationError):
    """Send attempted without the evidence its channel requires."""

    code: str = "PROOF_OF_SEND_MISSING"

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        super().__init__("proof", f"{channel}: {reason}")


class ReasonTooShortError(ValidationError):
    """Free-text justification below the configured minimum length."""

    code: str = "REASON_TOO_SHORT"

    def __init__(self, field: str, min_length: int, actual_length: int):
        self.min_length = min_length
        self.actual_length = actual_length
        super().__init__(
            field,
            f"must be at least {min_length} characters, got {actual_length}",
        )


class InvalidPostponeDurationError(ValidationError):
    """Postpone duration outside the allowed set."""

    code: str = "INVALID_POSTPONE_DURATION"

    def __init__(self, duration: str, allowed: tuple[str, ...]):
        self.duration = duration
        self.allowed = allowed
        super().__init__(
            "duration", f"{duration!r} not in {', '.join(allowed)}"
        )


class OverReceiptError(ValidationError):
    """Cumulative received quantity would exceed the ordered quantity."""

    code: str = "OVER_RECEIPT"

    def __init__(self, line_id: str, ordered: float, received: float):
        self.line_id = line_id
        self.ordered = ordered
        self.received = received
        super().__init__(
            "quantity_received",
            f"line {line_id} would receive {received} of {ordered} ordered",
        )


# Lookup


class NotFoundError(SupplyKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} {entity_id} not found")


# State conflicts


class StateConflictError(SupplyKernelError):
    """
    Operation conflicts with the entity's current state.

    Carries the expected and actual status (or version) so the caller can
    reload and decide whether to retry.
    """

    code: str = "STATE_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        expected: Any,
        actual: Any,
        message: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected = expected
        self.actual = actual
        super().__init__(
            message
            or f"{entity_type} {entity_id}: expected {expected}, found {actual}"
        )


class InvalidTransitionError(StateConflictError):
    """Status does not allow the requested transition."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        action: str,
        expected: tuple[str, ...],
        actual: str,
    ):
        self.action = action
        super().__init__(
            entity_type,
            entity_id,
            expected,
            actual,
            f"Cannot {action} {entity_type} {entity_id} in status {actual} "
            f"(allowed: {', '.join(expected)})",
        )


class VersionConflictError(StateConflictError):
    """Caller's version is stale; the entity was modified since it was read."""

    code: str = "VERSION_CONFLICT"

    def __init__(self, entity_type: str, entity_id: Any, expected: int, actual: int):
        super().__init__(
            entity_type,
            entity_id,
            expected,
            actual,
            f"{entity_type} {entity_id} was modified: "
            f"expected version {expected}, current version {actual}",
        )


class ReceivedQuantityConflictError(StateConflictError):
    """Order already has received quantities; cancellation is not possible."""

    code: str = "RECEIVED_QUANTITY_CONFLICT"

    def __init__(self, entity_id: Any, received_total: float):
        self.received_total = received_total
        super().__init__(
            "PurchaseOrder",
            entity_id,
            0.0,
            received_total,
            f"PurchaseOrder {entity_id} has {received_total} already received",
        )


class AlertAlreadyAcknowledgedError(StateConflictError):
    """Alert was acknowledged before."""

    code: str = "ALERT_ALREADY_ACKNOWLEDGED"

    def __init__(self, alert_id: Any, acknowledged_at: Any):
        super().__init__(
            "Alert",
            alert_id,
            "unacknowledged",
            acknowledged_at,
            f"Alert {alert_id} already acknowledged at {acknowledged_at}",
        )


class StockoutPostponeError(StateConflictError):
    """A true stockout can never be postponed."""

    code: str = "STOCKOUT_NOT_POSTPONABLE"

    def __init__(self, material_id: Any, current_stock: float):
        self.current_stock = current_stock
        super().__init__(
            "Material",
            material_id,
            "stock > 0",
            current_stock,
            f"Material {material_id} is out of stock ({current_stock}); "
            "alerts cannot be postponed",
        )


class MovementAlreadyDeletedError(StateConflictError):
    code: str = "MOVEMENT_ALREADY_DELETED"

    def __init__(self, movement_id: Any):
        super().__init__("StockMovement", movement_id, "active", "deleted")


# Authorization / rate limiting


class AuthorizationError(SupplyKernelError):
    """Actor role is insufficient for the operation."""

    code: str = "AUTHORIZATION_ERROR"

    def __init__(self, action: str, actor_role: str | None, required_role: str):
        self.action = action
        self.actor_role = actor_role
        self.required_role = required_role
        super().__init__(
            f"{action} requires role {required_role}, actor has {actor_role}"
        )


class RateLimitError(SupplyKernelError):
    """Too many operations recorded for the entity in the trailing window."""

    code: str = "RATE_LIMITED"

    def __init__(self, entity_id: Any, count: int, limit: int, window_days: int):
        self.entity_id = str(entity_id)
        self.count = count
        self.limit = limit
        self.window_days = window_days
        super().__init__(
            f"{count} operations recorded for {entity_id} in the last "
            f"{window_days} days (limit {limit})"
        )


# Integrity


class ImmutabilityViolationError(SupplyKernelError):
    """
    Attempted to modify or delete an immutable record.

    StockMovement (except its soft-delete stamp) and AuditEvent are
    immutable after creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(SupplyKernelError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# External collaborators


class NotifierError(SupplyKernelError):
    """Outbound purchase-order dispatch failed."""

    code: str = "NOTIFIER_ERROR"

    def __init__(self, order_reference: str, reason: str):
        self.order_reference = order_reference
        self.reason = reason
        super().__init__(f"Dispatch of {order_reference} failed: {reason}")
