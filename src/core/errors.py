"""Error taxonomy shared by the core and adapters.

Persistence, configuration and request validation errors are raised to
callers. Format and transport failures inside a batch are captured as data in
the results; FormatError is only raised for single-number lookups
(``normalizer.require_canonical``).
"""

from __future__ import annotations

from typing import Optional


class FormatError(ValueError):
    """Identifier does not normalize to a valid canonical form."""


class PersistenceError(RuntimeError):
    """Lookup or storage failure in the persistence adapter."""


class ConfigurationError(RuntimeError):
    """Missing or invalid configuration detected at startup."""


class BatchValidationError(ValueError):
    """Request rejected before any lookup or send was attempted."""


class TransportError(RuntimeError):
    """Provider-side failure for a single send.

    ``code`` is the provider error code (Twilio uses integers such as 63016),
    kept as a string so adapters with non-numeric codes fit the same shape.
    """

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
