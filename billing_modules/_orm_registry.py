"""
Module ORM Registry (``billing_modules._orm_registry``).

Ensures every module ORM model is imported so that ``Base.metadata``
contains its table definitions before ``create_tables()`` runs.
MUST NOT be imported by ``billing_kernel`` at module import time.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``billing_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    import billing_kernel.models  # noqa: F401
    import billing_modules.boq.orm  # noqa: F401
    import billing_modules.progress_billing.orm  # noqa: F401
