"""
Pydantic Schemas for Request/Response Validation

Wire names are camelCase (the chat front-end and the Evolution API use
them); Python attributes are snake_case through aliases.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# CHAT
# =============================================================================

class ChatHistoryItem(CamelModel):
    """One message of the history the front-end keeps."""
    role: str
    content: str = ""


class ChatRequest(CamelModel):
    """
    Chat message from the front-end.

    ``session_id`` and ``message`` are checked by the endpoint so a missing
    value answers 400 instead of FastAPI's 422.
    """
    session_id: Optional[str] = Field(None, alias="sessionId")
    message: Optional[str] = None
    messages: list[ChatHistoryItem] = Field(default_factory=list)


class ChatResponse(CamelModel):
    message: str
    session_id: str = Field(..., alias="sessionId")


# =============================================================================
# POLL
# =============================================================================

class PollRequest(CamelModel):
    session_id: Optional[str] = Field(None, alias="sessionId")


class PollResponse(CamelModel):
    has_new_message: bool = Field(..., alias="hasNewMessage")
    message: Optional[str] = None
    timestamp: Optional[datetime] = None
    restaurants: Optional[list[dict[str, Any]]] = None


# =============================================================================
# RESTAURANTS
# =============================================================================

class RestaurantSearchRequest(CamelModel):
    food: str = Field(..., min_length=1, max_length=300, examples=["pizza calabresa grande"])
    address: str = Field(..., min_length=1, max_length=300, examples=["Rua das Flores, 123, Niterói"])


class RestaurantOut(CamelModel):
    name: str
    contact_id: str = Field(..., alias="contactId")
    specialty: str = ""
    estimated_time: str = Field("", alias="estimatedTime")
    price_range: str = Field("", alias="priceRange")
    rating: Optional[float] = None
    provenance: str
    source_url: Optional[str] = Field(None, alias="sourceUrl")


class RestaurantSearchResponse(CamelModel):
    success: bool = True
    restaurants: list[RestaurantOut]


# =============================================================================
# EVOLUTION API WEBHOOK
# =============================================================================

class WebhookKey(CamelModel):
    remote_jid: str = Field(..., alias="remoteJid")
    from_me: bool = Field(False, alias="fromMe")


class ExtendedTextMessage(CamelModel):
    text: Optional[str] = None


class WebhookMessageBody(CamelModel):
    conversation: Optional[str] = None
    extended_text_message: Optional[ExtendedTextMessage] = Field(None, alias="extendedTextMessage")


class WebhookData(CamelModel):
    key: Optional[WebhookKey] = None
    message: Optional[WebhookMessageBody] = None


class EvolutionWebhookPayload(CamelModel):
    """``messages.upsert`` event posted by the Evolution API."""
    event: Optional[str] = None
    data: Optional[WebhookData] = None

    @property
    def text(self) -> str:
        body = self.data.message if self.data else None
        if body is None:
            return ""
        if body.conversation:
            return body.conversation
        if body.extended_text_message and body.extended_text_message.text:
            return body.extended_text_message.text
        return ""

    @property
    def is_inbound_text(self) -> bool:
        """A message someone else sent us, with a text body."""
        return (
            (self.event or "").lower().replace("_", ".") == "messages.upsert"
            and self.data is not None
            and self.data.key is not None
            and not self.data.key.from_me
            and bool(self.text.strip())
        )


class WebhookAck(CamelModel):
    success: bool = True


# =============================================================================
# MISC
# =============================================================================

class ErrorResponse(CamelModel):
    error: str


class HealthResponse(CamelModel):
    status: str
    environment: str
    text_generator: str
    search: str
    messaging: str
    sessions: int
    orders: int
    pending_tasks: int
    timestamp: datetime
