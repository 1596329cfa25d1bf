"""
BaseService -- abstract base for all flush-only services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service.  Concrete services receive a SQLAlchemy
    ``Session`` and a ``Clock`` and use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Every module
    service in ``rental_modules`` that performs writes extends this class.

Invariants enforced:
    Transaction boundaries: services flush within the caller's
    transaction and never commit or roll back themselves.  The caller
    (``PropertyManagementService`` or a test harness) owns commit/rollback,
    so a lease creation and its unit/property status updates land together.

Failure modes:
    - A subclass that calls ``session.commit()`` breaks the all-or-nothing
      guarantee of multi-step operations (payment + allocations + statuses).
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID, uuid5, NAMESPACE_URL

from sqlalchemy.orm import Session

from rental_kernel.db.base import Base
from rental_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)

# Actor recorded on rows written by automated paths (gateway ingestion,
# billing cycle) when no human actor is supplied.
SYSTEM_ACTOR_ID: UUID = uuid5(NAMESPACE_URL, "rental-kernel:system")


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all write-side services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide query-only (read) surfaces -- those belong
          in selectors.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
