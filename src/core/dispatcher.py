"""Sequential, rate-gated dispatch of one batch.

The dispatcher enforces a strict per-identifier order:
1) Stop early if the caller asked to cancel
2) Re-validate the canonical format
3) Await every rate gate (short window first)
4) Build the provider-neutral outbound message
5) Send and map any failure to an error kind

A failure for one identifier never stops the rest of the batch, and outcomes
are always returned in input order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from core.config import DEFAULT_SCOPE
from core.errors import TransportError
from core.models import (
    ERROR_INVALID_FORMAT,
    ERROR_OUTSIDE_MESSAGING_WINDOW,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    BulkDispatchSummary,
    DispatchOutcome,
    FreeformMessage,
    MessagePayload,
    OutboundMessage,
    TemplateMessage,
)
from core.normalizer import is_format_valid
from core.ports import TransportPort
from core.rate_gate import RateGate

LOGGER = logging.getLogger(__name__)

# Twilio: "Failed to send freeform message because you are outside the allowed window".
OUTSIDE_WINDOW_CODE = "63016"


def build_outbound_message(payload: MessagePayload) -> OutboundMessage:
    """Translate a payload into the transport message.

    Template variables are keyed by their 1-based position, matching the
    ``{{1}}``, ``{{2}}`` placeholders of the content template.
    """

    if isinstance(payload, TemplateMessage):
        variables = {str(index): value for index, value in enumerate(payload.variables, start=1)}
        return OutboundMessage(content_sid=payload.content_sid, content_variables=variables)
    if isinstance(payload, FreeformMessage):
        return OutboundMessage(body=payload.body)
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


class Dispatcher:
    """Send one message to many recipients through a transport port."""

    def __init__(
        self,
        transport: TransportPort,
        rate_gates: Iterable[RateGate],
        sender: str,
        scope: str = DEFAULT_SCOPE,
        send_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._transport = transport
        self._rate_gates = list(rate_gates)
        self._sender = sender
        self._scope = scope
        self._send_timeout = send_timeout_seconds

    async def dispatch(
        self,
        identifiers: Iterable[str],
        payload: MessagePayload,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkDispatchSummary:
        """Attempt every identifier in order and return the outcome summary."""

        message = build_outbound_message(payload)
        pending: List[str] = list(identifiers)
        summary = BulkDispatchSummary()

        for identifier in pending:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                LOGGER.info(
                    "Dispatch cancelled after %s of %s identifiers",
                    len(summary.outcomes),
                    len(pending),
                )
                break
            summary.add(await self._send_one(identifier, message))

        LOGGER.info("Dispatch finished: sent=%s failed=%s", summary.total_sent, summary.total_failed)
        return summary

    async def _send_one(self, identifier: str, message: OutboundMessage) -> DispatchOutcome:
        # Callers may skip classification, so the format is checked again here.
        if not is_format_valid(identifier):
            return DispatchOutcome(
                identifier=identifier,
                success=False,
                error_kind=ERROR_INVALID_FORMAT,
                error="Invalid phone number format",
            )

        for gate in self._rate_gates:
            await gate.wait_for_limit(self._scope)

        try:
            send = self._transport.send(self._sender, identifier, message)
            if self._send_timeout is not None:
                message_id = await asyncio.wait_for(send, timeout=self._send_timeout)
            else:
                message_id = await send
        except asyncio.TimeoutError:
            LOGGER.warning("Send to %s timed out after %ss", identifier, self._send_timeout)
            return DispatchOutcome(
                identifier=identifier,
                success=False,
                error_kind=ERROR_TIMEOUT,
                error=f"Send timed out after {self._send_timeout}s",
            )
        except TransportError as exc:
            return self._transport_failure(identifier, exc)
        except Exception as exc:
            LOGGER.warning("Send to %s failed: %s", identifier, exc)
            return DispatchOutcome(
                identifier=identifier,
                success=False,
                error_kind=ERROR_UNKNOWN,
                error=str(exc) or "Unknown error occurred",
            )

        return DispatchOutcome(identifier=identifier, success=True, external_message_id=message_id)

    @staticmethod
    def _transport_failure(identifier: str, exc: TransportError) -> DispatchOutcome:
        if exc.code == OUTSIDE_WINDOW_CODE:
            LOGGER.info("Send to %s rejected: outside messaging window", identifier)
            return DispatchOutcome(
                identifier=identifier,
                success=False,
                error_kind=ERROR_OUTSIDE_MESSAGING_WINDOW,
                error="Outside 24-hour window. Use a message template instead of freeform message.",
                provider_code=exc.code,
            )

        LOGGER.warning("Send to %s failed (code=%s): %s", identifier, exc.code, exc.message)
        return DispatchOutcome(
            identifier=identifier,
            success=False,
            error_kind=ERROR_UNKNOWN,
            error=exc.message,
            provider_code=exc.code,
        )
