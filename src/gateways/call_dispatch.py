"""
HTTP call-dispatch action.

POSTs ``{"phoneNumber": <int>}`` to the configured endpoint and reads back
``{"success": bool, "error"?: str}``. A reported ``success: false`` is returned
as a CallResult; only an unreachable endpoint or an unreadable response
raises GatewayConnectionError.
"""

import asyncio
import json
import time

import aiohttp
import structlog

from src.directory.errors import GatewayConnectionError
from src.gateways.base import CallDispatchGateway, CallResult

logger = structlog.get_logger(__name__)


class HttpCallDispatcher(CallDispatchGateway):

    def __init__(self, url: str, timeout_ms: int = 30000):
        if not url:
            raise ValueError("Call dispatch requires a url")
        self.url = url
        self.timeout_ms = timeout_ms

    async def call_store(self, phone_number: int) -> CallResult:
        started = time.monotonic()
        timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method="POST",
                    url=self.url,
                    headers={"Content-Type": "application/json"},
                    json={"phoneNumber": int(phone_number)},
                ) as response:
                    status = response.status
                    body_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            # UnicodeDecodeError: response body is not valid text in its declared charset
            logger.warning("Call dispatch unreachable", url=self.url, error=str(e) or type(e).__name__)
            raise GatewayConnectionError("Failed to connect to calling service") from e

        try:
            data = json.loads(body_text)
        except (TypeError, ValueError) as e:
            logger.warning("Call dispatch returned unreadable body", status=status, body=(body_text or "")[:200])
            raise GatewayConnectionError("Failed to connect to calling service") from e
        if not isinstance(data, dict):
            raise GatewayConnectionError("Unexpected response from calling service")

        elapsed_ms = round((time.monotonic() - started) * 1000, 2)
        success = data.get("success") is True
        error = data.get("error")
        logger.info("Call dispatch finished", status=status, success=success, elapsed_ms=elapsed_ms)
        return CallResult(success=success, error=str(error) if error else None)
