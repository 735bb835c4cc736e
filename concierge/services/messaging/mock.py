"""
Mock Messaging Service

Simulates WhatsApp sends for development.
No actual messages are sent - just logged and recorded.
"""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from concierge.services.messaging.base import BaseMessagingService, MessageResult

logger = logging.getLogger(__name__)


@dataclass
class SentMessage:
    contact_id: str
    text: str
    success: bool
    time: datetime = field(default_factory=datetime.now)


class MockMessagingService(BaseMessagingService):
    """
    Mock messaging service for development and tests.

    Args:
        failure_rate: Probability of a simulated failed send
        latency: Upper bound of the simulated latency in seconds
        fail_when: Predicate on (contact_id, text); True forces a failure
        clock: Timestamp source for recorded sends (tests use a fake clock)
    """

    def __init__(
        self,
        failure_rate: float = 0.05,
        latency: float = 0.3,
        fail_when: Optional[Callable[[str, str], bool]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.failure_rate = failure_rate
        self.latency = latency
        self.fail_when = fail_when
        self.clock = clock or datetime.now
        self.sent: list[SentMessage] = []
        logger.info(f"MockMessagingService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    def _should_fail(self, contact_id: str, text: str) -> bool:
        if self.fail_when is not None and self.fail_when(contact_id, text):
            return True
        return bool(self.failure_rate) and random.random() < self.failure_rate

    async def send_text(self, contact_id: str, text: str) -> MessageResult:
        """Simulate sending a WhatsApp text."""
        if self.latency:
            await asyncio.sleep(random.uniform(0, self.latency))

        if self._should_fail(contact_id, text):
            self.sent.append(SentMessage(contact_id, text, False, self.clock()))
            logger.warning(f"Mock WhatsApp failed (simulated) to {contact_id}")
            return MessageResult(
                success=False,
                error_message="Simulated send failure",
                provider="mock"
            )

        self.sent.append(SentMessage(contact_id, text, True, self.clock()))
        message_id = f"wa_mock_{uuid.uuid4().hex[:12]}"
        logger.info(f"Mock WhatsApp sent to {contact_id}: {text[:50]}... (ID: {message_id})")

        return MessageResult(
            success=True,
            message_id=message_id,
            provider="mock"
        )

    def delivered_to(self, contact_id: str) -> list[str]:
        """Texts successfully sent to ``contact_id``, in order."""
        return [m.text for m in self.sent if m.contact_id == contact_id and m.success]
