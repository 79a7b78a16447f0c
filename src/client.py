"""Twilio transport factory for fanout.

Credentials are read once at startup and passed explicitly to the adapter,
so nothing in the core ever looks at the environment.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from adapters.twilio_transport import TwilioWhatsAppTransport
from core.errors import ConfigurationError


def build_transport(timeout: float = 10.0) -> TwilioWhatsAppTransport:
    """Create the Twilio transport from environment variables.

    We read the credentials via python-dotenv to keep secrets out of the repo.
    TWILIO_WHATSAPP_NUMBER is preferred; TWILIO_PHONE_NUMBER is the fallback.
    """

    load_dotenv()

    account_sid = os.getenv("TWILIO_ACCOUNT_SID")
    auth_token = os.getenv("TWILIO_AUTH_TOKEN")
    from_number = os.getenv("TWILIO_WHATSAPP_NUMBER") or os.getenv("TWILIO_PHONE_NUMBER")

    # Fail fast on missing credentials instead of failing on the first send.
    if not account_sid or not auth_token or not from_number:
        raise ConfigurationError("Missing required Twilio environment variables")

    logging.getLogger(__name__).info("Initializing Twilio transport")

    return TwilioWhatsAppTransport(account_sid, auth_token, from_number, timeout=timeout)
