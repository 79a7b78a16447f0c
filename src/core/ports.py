"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage and transport adapters so
that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from core.models import OutboundMessage, PhoneRecord, TemplateSendRecord


class StoragePort(Protocol):
    """Persistence operations required by the core pipeline.

    ``upsert_by_canonical`` must be atomic on the canonical key so concurrent
    classify and record calls never create duplicate rows.
    """

    def exists_by_canonical(self, canonical: str) -> Optional[PhoneRecord]:
        ...

    def upsert_by_canonical(self, raw: str, canonical: str, metadata: Dict[str, Any]) -> PhoneRecord:
        ...

    def increment_send_counters(self, canonical: str) -> None:
        ...

    def append_template_send_record(
        self,
        canonical: str,
        template_sid: str,
        variables: List[str],
        message_sid: Optional[str],
        metadata: Dict[str, Any],
    ) -> Optional[TemplateSendRecord]:
        ...


class TransportPort(Protocol):
    """Delivery operations required by the dispatcher."""

    async def send(self, sender: str, recipient: str, message: OutboundMessage) -> str:
        ...

    async def validate_credentials(self) -> bool:
        ...
