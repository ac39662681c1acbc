"""
Module ORM Registry (``supply_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` holds its table before tables are created.

Architecture position
---------------------
**Modules layer** -- utility.  Imports sibling ``supply_modules`` packages
and ``supply_kernel.db.engine`` (allowed: modules -> kernel).  MUST NOT be
imported by ``supply_kernel``.

Usage
-----
``scripts/run_scheduled_jobs.py`` and ``tests/conftest.py`` both call
``create_all_tables()``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``supply_modules.*.orm`` module (idempotent)."""
    import supply_kernel.models  # noqa: F401
    import supply_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import supply_modules.catalog.orm  # noqa: F401
    import supply_modules.stock.orm  # noqa: F401
    import supply_modules.alerts.orm  # noqa: F401
    import supply_modules.purchasing.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """
    Create kernel and module tables.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from supply_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
