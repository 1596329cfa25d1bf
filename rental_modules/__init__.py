"""
Rental Modules.

Domain modules over the rental kernel and engines.  Each module contains:
- Domain models (frozen DTOs and closed enums)
- ORM models (one table per entity)
- A flush-only service
- Optional read-only selectors and workflows (state machines)

Modules:
- Directory: users, properties, units
- Lease: lease lifecycle (the ``tenants`` table)
- Billing: invoices and their derived status
- Payments: payments, allocations, gateway transactions
- Maintenance: repair requests and their workflow
"""
