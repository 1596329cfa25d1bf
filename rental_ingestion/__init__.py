"""
rental_ingestion -- boundary with the mobile-money gateway notifier.

Turns inbound gateway events into recorded gateway transactions and, when
the payer can be resolved to a lease, into payments.

Architecture:
    rental_ingestion/ is a top-level package.  Nothing in kernel/,
    engines/ or modules/ imports from ingestion.
"""
