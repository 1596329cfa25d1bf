"""Services for the rental kernel (write side)."""

from rental_kernel.services.base import SYSTEM_ACTOR_ID, BaseService

__all__ = [
    "BaseService",
    "SYSTEM_ACTOR_ID",
]
