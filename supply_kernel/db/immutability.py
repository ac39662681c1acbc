"""
ORM-Level Immutability Enforcement for append-only records.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule
----------------|------------------------------------------------------------
AuditEvent      | ALWAYS immutable, never deleted
StockMovement   | Never deleted; only the soft-delete stamp may be set, once

Models opt in by declaring class attributes, so the kernel never imports
module ORM classes:

    __append_only__ = True
    __soft_delete_flag__ = "is_deleted"            # optional
    __soft_delete_fields__ = ("deleted_at", ...)   # set with the flag

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners inspect attribute history and raise
ImmutabilityViolationError before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_append_only_update() --> ImmutabilityViolationError
    [before_delete] --> _check_append_only_delete() --> ImmutabilityViolationError

updated_at/updated_by_id are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from supply_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup (create_tables does it)
"""

from sqlalchemy import event, inspect

from supply_kernel.db.base import Base
from supply_kernel.exceptions import ImmutabilityViolationError
from supply_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _block(target, operation: str, reason: str, field: str | None = None):
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_append_only_update(mapper, connection, target):
    """
    Block updates to append-only rows.

    A soft-delete flag may flip False -> True exactly once, together with its
    companion stamp fields.  Everything else is frozen.
    """
    cls = type(target)
    if not getattr(cls, "__append_only__", False):
        return

    insp = inspect(target)
    flag = getattr(cls, "__soft_delete_flag__", None)
    allowed = set(_AUDIT_METADATA_FIELDS)

    if flag is not None:
        flag_history = insp.attrs[flag].history
        if flag_history.deleted:
            was_deleted = bool(flag_history.deleted[0])
            now_deleted = bool(flag_history.added[0]) if flag_history.added else was_deleted
            if was_deleted or not now_deleted:
                _block(target, "UPDATE", "Soft-deleted rows cannot be restored", flag)
            allowed.add(flag)
            allowed.update(getattr(cls, "__soft_delete_fields__", ()))
        elif getattr(target, flag):
            _block(target, "UPDATE", "Soft-deleted rows are frozen", flag)

    for attr in insp.attrs:
        if attr.key in allowed:
            continue
        if attr.history.has_changes():
            _block(
                target,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on append-only {cls.__name__}",
                attr.key,
            )


def _check_append_only_delete(mapper, connection, target):
    if not getattr(type(target), "__append_only__", False):
        return
    _block(
        target,
        "DELETE",
        f"{type(target).__name__} rows are append-only and cannot be deleted",
    )


_LISTENERS = (
    ("before_update", _check_append_only_update),
    ("before_delete", _check_append_only_delete),
)


def register_immutability_listeners() -> None:
    """Register the append-only listeners on every mapped model (idempotent)."""
    for identifier, fn in _LISTENERS:
        if not event.contains(Base, identifier, fn):
            event.listen(Base, identifier, fn, propagate=True)
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove the listeners. TESTS ONLY."""
    for identifier, fn in _LISTENERS:
        if event.contains(Base, identifier, fn):
            event.remove(Base, identifier, fn)
