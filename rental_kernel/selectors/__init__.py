"""Selectors for the rental kernel (read side)."""

from rental_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
