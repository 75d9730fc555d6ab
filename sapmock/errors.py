"""
Error taxonomy

Every failure raised inside the registry, the resolver or a module handler is
one of these. The resolver converts them into HTTP responses; nothing here
reaches the transport layer unhandled.
"""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from sapmock.models.data_models import SAPErrorResponse


class SAPMockError(Exception):
    """Base class for all mock backend errors"""

    status_code = 500


class NotFoundError(SAPMockError):
    """Unknown system, module or endpoint"""

    status_code = 404


class SimulatedError(SAPMockError):
    """Header-triggered failure carrying its mapped status and SAP error body"""

    def __init__(self, status_code: int, response: "SAPErrorResponse"):
        super().__init__(response.message)
        self.status_code = status_code
        self.response = response


class HandlerFailure(SAPMockError):
    """The endpoint's own logic rejected the payload"""

    status_code = 400

    def __init__(self, message: str, code: str = "BAD_REQUEST", message_class: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message_class = message_class


class ProviderFailure(SAPMockError):
    """The mock data provider could not complete a read or write"""

    status_code = 500


class ConfigurationConflict(SAPMockError):
    """Duplicate or ambiguous endpoint/module definitions, found at registration"""

    status_code = 409
