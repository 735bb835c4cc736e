"""
Messaging Service Abstract Base Class

Defines the WhatsApp send interface used to talk to restaurants and to
notify clients. Sends report failure through MessageResult instead of
raising, so callers decide whether a failure matters.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class MessageResult:
    """Result from sending a message."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


class BaseMessagingService(ABC):
    """Abstract base class for messaging services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_text(self, contact_id: str, text: str) -> MessageResult:
        """Send a text message to a digits-only contact id."""
        pass

    async def aclose(self) -> None:
        """Release network resources, if any."""
        return None
