"""
Application exception hierarchy.

Collaborator errors are raised by the mock/real adapters and caught by the
services that own the degradation policy (template replies, fallback
restaurant list, logged-and-dropped sends).
"""

from typing import Optional


class ConciergeError(Exception):
    """Base class for all application errors."""


class CollaboratorError(ConciergeError):
    """An external collaborator failed or returned unusable output."""

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message)
        self.provider = provider


class GenerationError(CollaboratorError):
    """Text generation failed or produced output that could not be used."""


class SearchError(CollaboratorError):
    """Web search, results scraping or page fetch failed."""


class SearchUnavailableError(SearchError):
    """The structured search API is not configured."""


class MessagingError(CollaboratorError):
    """The messaging gateway rejected or dropped a message."""


class RetryExhaustedError(CollaboratorError):
    """Every attempt of a retried outbound call failed."""

    def __init__(
        self,
        operation: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
    ):
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class RestaurantUnavailableError(ConciergeError):
    """The restaurant contact is already bound to another open order."""

    def __init__(self, contact_id: str, order_id: str):
        super().__init__(f"Contact {contact_id} is already serving order {order_id}")
        self.contact_id = contact_id
        self.order_id = order_id
