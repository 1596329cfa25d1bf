"""Ingestion services."""

from rental_ingestion.services.gateway_ingestion_service import (
    GatewayIngestionService,
    IngestionOutcome,
)

__all__ = ["GatewayIngestionService", "IngestionOutcome"]
