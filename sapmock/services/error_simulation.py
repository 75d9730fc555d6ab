"""
ErrorSimulator Class - Header-driven failure injection

Clients force a failure by sending ``X-SAP-Mock-Error``. The value is either
an error type name (``Timeout``, ``Authorization``, ``Business``, ``System``,
case-insensitive) or a JSON object such as::

    {"ErrorType": "Business", "CustomMessage": "Credit limit exceeded",
     "SAPErrorCode": "SD042"}
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from sapmock.errors import SimulatedError
from sapmock.models.data_models import SAPErrorResponse
from sapmock.utils.helpers import header_lookup, safe_int

logger = logging.getLogger(__name__)

ERROR_HEADER = "X-SAP-Mock-Error"


class ErrorType(str, Enum):
    TIMEOUT = "Timeout"
    AUTHORIZATION = "Authorization"
    BUSINESS = "Business"
    SYSTEM = "System"

    @classmethod
    def parse(cls, value: Any) -> Optional["ErrorType"]:
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return None


STATUS_CODES: Dict[ErrorType, int] = {
    ErrorType.TIMEOUT: 408,
    ErrorType.AUTHORIZATION: 401,
    ErrorType.BUSINESS: 400,
    ErrorType.SYSTEM: 500,
}

# code, message, category, detail key, detail value
_DEFAULTS = {
    ErrorType.TIMEOUT: ("TIMEOUT", "Request timed out", "Technical", None, None),
    ErrorType.AUTHORIZATION: (
        "AUTHORIZATION_FAILED", "Authorization failed", "Authorization",
        "reason", "Invalid credentials or insufficient permissions",
    ),
    ErrorType.BUSINESS: (
        "BUSINESS_ERROR", "Business logic validation failed", "Business",
        "context", "Data validation or business rule violation",
    ),
    ErrorType.SYSTEM: (
        "SYSTEM_ERROR", "System error occurred", "System",
        "internal_error", "Internal system failure",
    ),
}


@dataclass
class ErrorSimulationConfig:
    """One requested failure"""
    error_type: ErrorType
    delay_ms: int = 0
    custom_message: Optional[str] = None
    sap_error_code: Optional[str] = None
    additional_details: Optional[Dict[str, Any]] = None

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.error_type]


class ErrorSimulator:
    """
    Turns the simulation header into a canonical failure.
    Responsibilities:
    - Parse the header (plain type name or JSON)
    - Build the SAP-style error body
    - Apply the optional timeout delay
    """

    def __init__(self, timeout_delay_ms: int = 0):
        self.timeout_delay_ms = timeout_delay_ms

    def parse_header(self, headers: Mapping[str, str]) -> Optional[ErrorSimulationConfig]:
        raw = header_lookup(headers, ERROR_HEADER)
        if not raw or not raw.strip():
            return None

        error_type = ErrorType.parse(raw)
        if error_type is not None:
            delay = self.timeout_delay_ms if error_type is ErrorType.TIMEOUT else 0
            return ErrorSimulationConfig(error_type=error_type, delay_ms=delay)

        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Failed to parse %s header: %s", ERROR_HEADER, raw)
            return None

        if not isinstance(data, dict):
            logger.warning("Ignoring %s header that is not an object: %s", ERROR_HEADER, raw)
            return None

        error_type = ErrorType.parse(data.get("ErrorType") or data.get("error_type"))
        if error_type is None:
            logger.warning("Unknown error type in %s header: %s", ERROR_HEADER, raw)
            return None

        default_delay = self.timeout_delay_ms if error_type is ErrorType.TIMEOUT else 0
        details = data.get("AdditionalDetails") or data.get("additional_details")
        return ErrorSimulationConfig(
            error_type=error_type,
            delay_ms=max(0, safe_int(data.get("DelayMs", data.get("delay_ms")), default_delay)),
            custom_message=data.get("CustomMessage") or data.get("custom_message"),
            sap_error_code=data.get("SAPErrorCode") or data.get("sap_error_code"),
            additional_details=details if isinstance(details, dict) else None,
        )

    def create_error_response(self, config: ErrorSimulationConfig, message_class: str = "") -> SAPErrorResponse:
        code, message, category, detail_key, detail_value = _DEFAULTS[config.error_type]
        if config.additional_details is not None:
            details = config.additional_details
        elif config.error_type is ErrorType.TIMEOUT:
            details = {"timeout_ms": config.delay_ms}
        else:
            details = {detail_key: detail_value}

        code = config.sap_error_code or code
        return SAPErrorResponse(
            code=code,
            message=config.custom_message or message,
            category=category,
            message_class=message_class,
            message_number=code,
            message_variables=[],
            details=details,
        )

    async def raise_if_requested(
        self,
        headers: Mapping[str, str],
        system_id: str,
        module_id: str,
        endpoint_path: str,
    ) -> None:
        """Raise SimulatedError when the request asks for a failure"""
        config = self.parse_header(headers)
        if config is None:
            return

        if config.error_type is ErrorType.TIMEOUT and config.delay_ms > 0:
            await asyncio.sleep(config.delay_ms / 1000.0)

        response = self.create_error_response(config, message_class=module_id)
        logger.warning(
            "SAP Mock Error Simulation: %s on %s/%s%s - Code: %s, Message: %s",
            config.error_type.value, system_id, module_id, endpoint_path,
            response.code, response.message,
        )
        raise SimulatedError(config.status_code, response)
