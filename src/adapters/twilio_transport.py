"""Twilio WhatsApp transport adapter.

Uses the Twilio REST API for delivery so the core only ever sees the
TransportPort contract.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional

from core.errors import TransportError
from core.models import OutboundMessage

LOGGER = logging.getLogger(__name__)

API_BASE = "https://api.twilio.com/2010-04-01"
CONTENT_API_BASE = "https://content.twilio.com/v1"
WHATSAPP_PREFIX = "whatsapp:"


def whatsapp_address(number: str) -> str:
    if number.startswith(WHATSAPP_PREFIX):
        return number
    return f"{WHATSAPP_PREFIX}{number}"


def build_form_fields(sender: str, recipient: str, message: OutboundMessage) -> Dict[str, str]:
    """Return the Messages API form fields for one outbound message."""

    fields = {
        "From": whatsapp_address(sender),
        "To": whatsapp_address(recipient),
    }
    if message.content_sid:
        fields["ContentSid"] = message.content_sid
        if message.content_variables:
            fields["ContentVariables"] = json.dumps(message.content_variables)
    elif message.body is not None:
        fields["Body"] = message.body
    else:
        raise ValueError("Either a body or a content SID must be provided")
    return fields


def parse_error(status: int, body: str) -> TransportError:
    """Map a Twilio error response to a TransportError.

    Twilio error bodies look like ``{"code": 63016, "message": "..."}``;
    anything unparseable keeps the raw body as the message.
    """

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None

    if not isinstance(payload, dict):
        return TransportError(f"Twilio API error {status}: {body}", status=status)

    code = payload.get("code")
    message = payload.get("message") or f"Twilio API error {status}"
    return TransportError(str(message), code=str(code) if code is not None else None, status=status)


class TwilioWhatsAppTransport:
    """Transport adapter that sends WhatsApp messages via the Twilio REST API."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: float = 10.0) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self.from_number = from_number
        self._timeout = timeout

    def _auth_header(self) -> str:
        token = base64.b64encode(f"{self._account_sid}:{self._auth_token}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def _messages_endpoint(self) -> str:
        return f"{API_BASE}/Accounts/{self._account_sid}/Messages.json"

    def _request(self, url: str, fields: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        data = urllib.parse.urlencode(fields).encode("utf-8") if fields is not None else None
        request = urllib.request.Request(url, data=data, method="POST" if data is not None else "GET")
        request.add_header("Authorization", self._auth_header())
        request.add_header("Accept", "application/json")
        if data is not None:
            request.add_header("Content-Type", "application/x-www-form-urlencoded")
        # The blocking call runs in a worker thread (see send), so it never
        # stalls the event loop.
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                return json.loads(response.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise parse_error(e.code, body) from e
        except urllib.error.URLError as e:
            raise TransportError(f"Twilio API unreachable: {e.reason}") from e

    async def send(self, sender: str, recipient: str, message: OutboundMessage) -> str:
        """Send one message and return the Twilio message SID."""

        fields = build_form_fields(sender, recipient, message)
        result = await asyncio.to_thread(self._request, self._messages_endpoint(), fields)
        sid = result.get("sid")
        if not sid:
            raise TransportError("Twilio response did not include a message SID")
        LOGGER.debug("Sent message %s to %s", sid, recipient)
        return str(sid)

    async def validate_credentials(self) -> bool:
        """Return True if the account resource can be fetched."""

        url = f"{API_BASE}/Accounts/{self._account_sid}.json"
        try:
            await asyncio.to_thread(self._request, url)
        except TransportError as exc:
            LOGGER.warning("Twilio credential check failed: %s", exc)
            return False
        return True

    async def list_templates(self) -> List[Dict[str, Any]]:
        """List approved Content API templates."""

        result = await asyncio.to_thread(self._request, f"{CONTENT_API_BASE}/Content")
        templates = []
        for content in result.get("contents", []):
            templates.append(
                {
                    "sid": content.get("sid"),
                    "friendly_name": content.get("friendly_name"),
                    "language": content.get("language"),
                    "types": sorted((content.get("types") or {}).keys()),
                }
            )
        return templates
