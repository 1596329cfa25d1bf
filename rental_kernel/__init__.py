"""
Rental Kernel

Infrastructure for the tenancy, billing and reconciliation core:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Atomic transactions with bounded retry
- Per-key locking for lease and tenant serialization
- ORM-level protection of financial history
"""

__version__ = "0.1.0"
