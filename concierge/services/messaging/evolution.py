"""
Evolution API Messaging Service

Production WhatsApp gateway. Sends through
``POST {base}/message/sendText/{instance}`` with the ``apikey`` header.

Requirements:
    - EVOLUTION_API_KEY and EVOLUTION_INSTANCE_ID must be set
"""

import logging
from typing import Optional

import httpx

from concierge.core.config import get_settings
from concierge.core.exceptions import RetryExhaustedError
from concierge.core.retry import RetryPolicy, with_retry
from concierge.services.messaging.base import BaseMessagingService, MessageResult

logger = logging.getLogger(__name__)


class EvolutionMessagingService(BaseMessagingService):
    """WhatsApp sends through the Evolution API."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        """
        Raises:
            ValueError: If the Evolution credentials are not configured
        """
        settings = get_settings()

        if not (settings.evolution_api_key and settings.evolution_instance_id):
            raise ValueError(
                "EVOLUTION_API_KEY and EVOLUTION_INSTANCE_ID are required for production mode. "
                "Set them in your .env file or environment variables."
            )

        base_url = settings.evolution_base_url.rstrip("/")
        self._send_url = f"{base_url}/message/sendText/{settings.evolution_instance_id}"
        self._policy = RetryPolicy.from_settings(settings)
        self._client = client or httpx.AsyncClient(
            headers={
                "Content-Type": "application/json",
                "apikey": settings.evolution_api_key,
            },
            timeout=settings.request_timeout_seconds,
        )

        logger.info("EvolutionMessagingService initialized")

    @property
    def provider_name(self) -> str:
        return "evolution"

    async def _post(self, contact_id: str, text: str) -> httpx.Response:
        response = await self._client.post(
            self._send_url,
            json={"number": contact_id, "text": text},
        )
        response.raise_for_status()
        return response

    async def send_text(self, contact_id: str, text: str) -> MessageResult:
        """Send WhatsApp text via Evolution API."""
        try:
            response = await with_retry(
                lambda: self._post(contact_id, text),
                self._policy,
                operation="evolution.send_text",
                retry_on=(httpx.HTTPError,),
            )
        except RetryExhaustedError as e:
            logger.error(f"Evolution API error sending to {contact_id}: {e}")
            return MessageResult(
                success=False,
                error_message=str(e),
                provider="evolution"
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        key = payload.get("key") if isinstance(payload, dict) else None
        message_id = key.get("id") if isinstance(key, dict) else None

        logger.info(f"WhatsApp sent to {contact_id} (ID: {message_id})")
        return MessageResult(
            success=True,
            message_id=message_id,
            provider="evolution"
        )

    async def aclose(self) -> None:
        await self._client.aclose()
