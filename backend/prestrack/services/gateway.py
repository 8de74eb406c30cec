"""WhatsApp gateway client.

Thin async wrapper over the gateway's ``POST /send-whatsapp`` endpoint. Every
call carries an explicit timeout; timeouts raise ``UpstreamTimeoutError`` and
any other transport failure or non-2xx response raises ``UpstreamError`` with
the gateway's message attached. There are no retries.
"""

import logging
from typing import Any

import httpx

from prestrack.config import settings
from prestrack.errors import UpstreamError, UpstreamTimeoutError, ValidationError
from prestrack.services.phone import mask_phone, validate_e164

logger = logging.getLogger(__name__)

SEND_PATH = "/send-whatsapp"


class WhatsAppGateway:
    """Outbound message sender.

    Example:
        async with WhatsAppGateway() as gateway:
            await gateway.send("+23276123456", "Hello")
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        lid: str | None = None,
        timeout_seconds: float | None = None,
    ):
        """
        Args:
            client: Optional pre-configured httpx client (for testing).
            base_url: Gateway base URL. Defaults to settings.
            lid: Optional gateway session id. Defaults to settings.
            timeout_seconds: Per-call timeout. Defaults to settings.
        """
        self._base_url = (base_url or settings.whatsapp_gateway_url).rstrip("/")
        self._lid = (lid if lid is not None else settings.whatsapp_lid).strip() or None
        timeout = timeout_seconds or settings.whatsapp_timeout_seconds
        self._timeout = httpx.Timeout(timeout, connect=min(timeout, 8.0))
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    async def __aenter__(self) -> "WhatsAppGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, to_e164: str, body: str) -> dict[str, Any]:
        """Send a text message.

        Raises:
            ValidationError: Invalid phone or empty body.
            UpstreamTimeoutError: The gateway did not answer in time.
            UpstreamError: Transport failure or non-2xx response.
        """
        phone = validate_e164(to_e164)
        if phone is None:
            raise ValidationError("invalid E.164 phone")
        text = str(body or "").strip()
        if not text:
            raise ValidationError("empty message text")

        payload: dict[str, Any] = {"phoneE164": phone, "message": text}
        if self._lid:
            payload["lid"] = self._lid

        try:
            response = await self._client.post(
                f"{self._base_url}{SEND_PATH}",
                json=payload,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.error("Gateway send to %s timed out", mask_phone(phone))
            raise UpstreamTimeoutError("Gateway timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Gateway send to %s failed: %s", mask_phone(phone), exc)
            raise UpstreamError(f"Gateway unreachable: {exc}") from exc

        if response.is_error:
            raise UpstreamError(
                f"Gateway error {response.status_code}: {response.text}",
                upstream_status=response.status_code,
            )

        logger.info("Sent WhatsApp message to %s", mask_phone(phone))
        try:
            return response.json()
        except ValueError:
            return {}


async def get_gateway():
    """FastAPI dependency yielding a request-scoped gateway."""
    gateway = WhatsAppGateway()
    try:
        yield gateway
    finally:
        await gateway.close()
