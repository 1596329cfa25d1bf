"""
GatewayIngestionService -- gateway notifications to gateway transactions.

Responsibility:
    Records every well-formed gateway notification exactly once, decides
    whether it may fund a payment, and resolves the paying lease.  Creating
    the payment itself is left to the caller (``PropertyManagementService``),
    which takes the tenant lock first.

Architecture position:
    Ingestion > Services.  Flush-only.  Reads the directory and lease
    tables; writes only ``gateway_transactions``.

Invariants enforced:
    - One gateway transaction row per transaction id (unique constraint;
      a lost insert race re-reads the winner).
    - A replay with a different payload never changes the stored row.
    - Failed, zero-amount and unmatched transactions are kept, unlinked,
      for audit and manual reconciliation.

Failure modes:
    - None raised for bad input: malformed events, payload mismatches,
      failures and unmatched payers are logged and reported through
      ``IngestionOutcome``.
    - ValidationError from ``require_reconcilable`` for manual linking of a
      failed transaction.

Audit relevance:
    ``gateway_event_malformed``, ``gateway_transaction_recorded``,
    ``gateway_event_payload_mismatch``, ``gateway_transaction_failed`` and
    ``gateway_transaction_unmatched`` account for every inbound event.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from rental_config.schema import GatewayConfig
from rental_ingestion.adapters.mpesa import GatewayEvent, MpesaEventAdapter
from rental_kernel.domain.clock import Clock
from rental_kernel.domain.msisdn import normalize_msisdn
from rental_kernel.exceptions import (
    GatewayTransactionNotFoundError,
    MalformedGatewayEventError,
    ValidationError,
)
from rental_kernel.logging_config import get_logger
from rental_kernel.services.base import BaseService
from rental_modules.directory.orm import UserModel
from rental_modules.lease.orm import TenantModel
from rental_modules.payments.models import GatewayTransaction
from rental_modules.payments.orm import GatewayTransactionModel

logger = get_logger("ingestion.gateway")

_ADAPTER = MpesaEventAdapter()


class IngestionOutcome(str, Enum):
    READY = "ready"  # Recorded, successful, payer resolved
    ALREADY_APPLIED = "already_applied"
    FAILED = "failed"
    UNMATCHED = "unmatched"
    PAYLOAD_MISMATCH = "payload_mismatch"


@dataclass(frozen=True)
class IngestionResult:
    outcome: IngestionOutcome
    transaction: GatewayTransaction | None = None
    tenant_id: UUID | None = None


def parse_gateway_event(raw: Any) -> GatewayEvent | None:
    """Parse a raw notification; log and return None when malformed."""
    try:
        return _ADAPTER.parse(raw)
    except MalformedGatewayEventError as exc:
        logger.warning("gateway_event_malformed", extra={
            "transaction_id": exc.transaction_id,
            "field_errors": exc.field_errors,
        })
        return None


class GatewayIngestionService(BaseService[GatewayTransactionModel]):
    """
    Records gateway transactions and resolves their payer.

    Transaction boundary: flush only.  Callers commit.
    """

    def __init__(self, session, clock: Clock | None = None, config: GatewayConfig | None = None):
        super().__init__(session, clock)
        self._config = config or GatewayConfig()

    def prepare(self, event: GatewayEvent, actor_id: UUID) -> IngestionResult:
        """Record ``event`` and decide what the caller should do with it."""
        model = self._record(event, actor_id)
        if model is None:
            return IngestionResult(IngestionOutcome.PAYLOAD_MISMATCH)
        dto = model.to_dto()

        if model.payment_id is not None:
            return IngestionResult(IngestionOutcome.ALREADY_APPLIED, dto)

        if not self._fundable(model):
            logger.info("gateway_transaction_failed", extra={
                "transaction_id": model.transaction_id,
                "status": model.status,
                "response_code": model.response_code,
                "amount": str(model.amount),
            })
            return IngestionResult(IngestionOutcome.FAILED, dto)

        tenant_id = self.resolve_tenant(model)
        if tenant_id is None:
            logger.warning("gateway_transaction_unmatched", extra={
                "transaction_id": model.transaction_id,
                "reference": model.reference,
                "msisdn": model.msisdn,
                "amount": str(model.amount),
            })
            return IngestionResult(IngestionOutcome.UNMATCHED, dto)
        return IngestionResult(IngestionOutcome.READY, dto, tenant_id)

    def _record(self, event: GatewayEvent, actor_id: UUID) -> GatewayTransactionModel | None:
        existing = self._find(event.transaction_id)
        if existing is not None:
            return self._check_replay(existing, event)

        model = GatewayTransactionModel.from_dto(
            GatewayTransaction(
                id=uuid4(),
                transaction_id=event.transaction_id,
                transaction_type=event.transaction_type,
                phone_number=event.phone_number,
                msisdn=normalize_msisdn(event.phone_number, self._config.country_code),
                amount=event.amount,
                status=event.status,
                transaction_date=event.transaction_date,
                reference=event.reference,
                description=event.description,
                response_code=event.response_code,
                response_description=event.response_description,
            ),
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
        except IntegrityError:
            winner = self._find(event.transaction_id)
            if winner is None:
                raise
            return self._check_replay(winner, event)

        logger.info("gateway_transaction_recorded", extra={
            "transaction_id": event.transaction_id,
            "transaction_type": event.transaction_type.value,
            "amount": str(event.amount),
            "status": event.status,
        })
        return model

    def _check_replay(
        self,
        existing: GatewayTransactionModel,
        event: GatewayEvent,
    ) -> GatewayTransactionModel | None:
        stored = {
            "transaction_type": existing.transaction_type,
            "phone_number": existing.phone_number,
            "amount": existing.amount,
            "status": existing.status,
            "reference": existing.reference,
            "response_code": existing.response_code,
        }
        incoming = event.payload_fields()
        differing = sorted(k for k in stored if stored[k] != incoming[k])
        if differing:
            logger.warning("gateway_event_payload_mismatch", extra={
                "transaction_id": event.transaction_id,
                "fields": differing,
            })
            return None
        logger.info("gateway_event_replayed", extra={
            "transaction_id": event.transaction_id,
            "payment_id": str(existing.payment_id) if existing.payment_id else None,
        })
        return existing

    def _find(self, transaction_id: str) -> GatewayTransactionModel | None:
        return self.session.scalars(
            select(GatewayTransactionModel).where(
                GatewayTransactionModel.transaction_id == transaction_id
            )
        ).first()

    def resolve_tenant(self, model: GatewayTransactionModel) -> UUID | None:
        """The lease a recorded transaction pays for."""
        return self.resolve_payer(model.reference, model.msisdn)

    def resolve_payer(self, reference: str | None, msisdn: str | None) -> UUID | None:
        """
        ``reference`` naming a lease id wins.  Otherwise the payer's phone
        number must belong to users holding exactly one active lease.
        """
        if reference:
            try:
                reference_id = UUID(reference)
            except ValueError:
                reference_id = None
            if reference_id is not None and self.session.get(TenantModel, reference_id) is not None:
                return reference_id

        if not msisdn:
            return None
        leases = self.session.scalars(
            select(TenantModel.id)
            .join(UserModel, UserModel.id == TenantModel.user_id)
            .where(UserModel.msisdn == msisdn, TenantModel.is_active.is_(True))
            .limit(2)
        ).all()
        return leases[0] if len(leases) == 1 else None

    def require_reconcilable(self, transaction_id: str) -> GatewayTransactionModel:
        """Gateway transaction that may be linked by hand to a lease."""
        model = self.session.scalars(
            select(GatewayTransactionModel)
            .where(GatewayTransactionModel.transaction_id == transaction_id)
            .with_for_update()
        ).first()
        if model is None:
            raise GatewayTransactionNotFoundError(transaction_id)
        if not self._fundable(model):
            raise ValidationError(
                "transaction_id", f"gateway transaction {transaction_id} did not succeed"
            )
        return model

    def _fundable(self, model: GatewayTransactionModel) -> bool:
        return model.amount > 0 and self._config.is_success(model.status, model.response_code)
