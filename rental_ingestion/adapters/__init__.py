"""Source adapters: raw gateway payloads to typed events."""

from rental_ingestion.adapters.mpesa import GatewayEvent, MpesaEventAdapter

__all__ = ["GatewayEvent", "MpesaEventAdapter"]
