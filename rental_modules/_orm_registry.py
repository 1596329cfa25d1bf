"""
Module ORM Registry (``rental_modules._orm_registry``).

Responsibility
--------------
Ensure all module-level SQLAlchemy ORM models are imported so that
``Base.metadata`` contains their table definitions before tables are
created, and so the immutability listeners can attach to every mapped
class.

Usage
-----
``rental_kernel.db.engine.create_tables()`` and ``tests/conftest.py``
call ``create_all_tables()`` -- one orchestration function for every
consumer.
"""


def import_all_orm_models() -> None:
    """Import every ``rental_modules.*.orm`` module to register ORM models.

    Order follows foreign key dependencies.  Idempotent.
    """
    # fmt: off
    import rental_modules.directory.orm  # noqa: F401
    import rental_modules.lease.orm  # noqa: F401
    import rental_modules.billing.orm  # noqa: F401
    import rental_modules.payments.orm  # noqa: F401
    import rental_modules.maintenance.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Create every module table.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from rental_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
