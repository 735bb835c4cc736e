"""
Domain Models

In-memory state of the concierge:
    - Session: one end-user chat and the order fields extracted from it
    - Order: the chosen restaurant plus the negotiation transcript
    - RestaurantCandidate: a discovered restaurant with a usable contact

Stage tracks the Session side (information collection and discovery);
OrderStatus tracks the Order side (negotiation and fulfillment).
"""

import enum
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional


class Stage(str, enum.Enum):
    """Session progress. Transitions are strictly linear."""
    INITIAL = "initial"
    SEARCHING_RESTAURANT = "searching_restaurant"
    RESTAURANTS_PRESENTED = "restaurants_presented"
    AWAITING_SELECTION = "awaiting_selection"
    ORDER_SENT = "order_sent"


STAGE_SEQUENCE = list(Stage)


class OrderStatus(str, enum.Enum):
    """Order negotiation and fulfillment workflow."""
    RESTAURANTS_FOUND = "restaurants_found"
    ORDER_SENT = "order_sent"
    WAITING_CLIENT_RESPONSE = "waiting_client_response"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"


# Milestones only move forward
MILESTONE_RANK = {
    OrderStatus.RESTAURANTS_FOUND: 0,
    OrderStatus.ORDER_SENT: 1,
    OrderStatus.CONFIRMED: 2,
    OrderStatus.PREPARING: 3,
    OrderStatus.OUT_FOR_DELIVERY: 4,
}


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    PIX = "pix"
    UNSET = "unset"

    @property
    def label(self) -> str:
        """Portuguese label used in messages."""
        return PAYMENT_LABELS[self]


PAYMENT_LABELS = {
    PaymentMethod.CASH: "Dinheiro",
    PaymentMethod.CARD: "Cartão",
    PaymentMethod.PIX: "Pix",
    PaymentMethod.UNSET: "A definir",
}


class ChatRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationRole(str, enum.Enum):
    CLIENT_PROXY = "client_proxy"
    RESTAURANT = "restaurant"


class Provenance(str, enum.Enum):
    """Where a restaurant candidate came from."""
    GENERATED = "generated"
    SCRAPED = "scraped"
    FALLBACK = "fallback"


class DiscoveryState(str, enum.Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FALLBACK = "fallback"
    FAILED = "failed"


# The user said no change is needed
NO_CHANGE = "0"


@dataclass
class ChatTurn:
    role: ChatRole
    text: str
    time: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class OrderData:
    """
    Structured order fields extracted from the chat.

    Immutable: extraction returns a new instance, so a snapshot copied into
    an Order never changes behind its back.
    """
    food: Optional[str] = None
    address: Optional[str] = None
    contact_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.UNSET
    change_amount: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        """Food, address, contact and payment set; cash also needs the change amount."""
        if not (self.food and self.address and self.contact_id):
            return False
        if self.payment_method == PaymentMethod.UNSET:
            return False
        return self.payment_method != PaymentMethod.CASH or self.change_amount is not None

    def missing_fields(self) -> list[str]:
        """Fields still needed, in the order the concierge asks for them."""
        missing = []
        if not self.food:
            missing.append("food")
        if not self.address:
            missing.append("address")
        if not self.contact_id:
            missing.append("contact_id")
        if self.payment_method == PaymentMethod.UNSET:
            missing.append("payment_method")
        elif self.payment_method == PaymentMethod.CASH and self.change_amount is None:
            missing.append("change_amount")
        return missing

    def with_changes(self, **changes: Any) -> "OrderData":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "food": self.food,
            "address": self.address,
            "contact_id": self.contact_id,
            "payment_method": self.payment_method.value,
            "change_amount": self.change_amount,
            "notes": self.notes,
            "is_complete": self.is_complete,
        }


@dataclass
class RestaurantCandidate:
    """
    A discovered restaurant with a normalized WhatsApp contact id.

    Attributes:
        name: Display name
        contact_id: Digits only, country-prefixed ("5521999999999")
        specialty: Short description shown to the user
        estimated_time: Delivery estimate, e.g. "40-50 min"
        price_range: e.g. "R$ 30-60"
        rating: 1.0-5.0, display only
        provenance: generated, scraped or fallback
        source_url: Page the contact was scraped from
    """
    name: str
    contact_id: str
    specialty: str = ""
    estimated_time: str = ""
    price_range: str = ""
    rating: Optional[float] = None
    provenance: Provenance = Provenance.SCRAPED
    source_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "contact_id": self.contact_id,
            "specialty": self.specialty,
            "estimated_time": self.estimated_time,
            "price_range": self.price_range,
            "rating": self.rating,
            "provenance": self.provenance.value,
            "source_url": self.source_url,
        }


@dataclass
class DiscoveryOutcome:
    """Recorded result of the background discovery task of a session."""
    state: DiscoveryState = DiscoveryState.NOT_STARTED
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    candidate_count: int = 0
    error: Optional[str] = None


@dataclass
class Session:
    id: str
    turns: list[ChatTurn] = field(default_factory=list)
    order_data: OrderData = field(default_factory=OrderData)
    stage: Stage = Stage.INITIAL
    candidates: list[RestaurantCandidate] = field(default_factory=list)
    discovery: DiscoveryOutcome = field(default_factory=DiscoveryOutcome)
    order_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    last_active: datetime = field(default_factory=datetime.now)

    def advance_to(self, target: Stage) -> None:
        """
        Move one step forward in the stage sequence.

        Raises:
            ValueError: If ``target`` is not the next stage
        """
        current = STAGE_SEQUENCE.index(self.stage)
        if STAGE_SEQUENCE.index(target) != current + 1:
            raise ValueError(f"Illegal stage transition {self.stage.value} -> {target.value}")
        self.stage = target

    def add_turn(self, role: ChatRole, text: str) -> ChatTurn:
        turn = ChatTurn(role=role, text=text)
        self.turns.append(turn)
        self.last_active = turn.time
        return turn

    def user_text(self) -> str:
        """All user messages joined, oldest first."""
        return "\n".join(t.text for t in self.turns if t.role == ChatRole.USER)


@dataclass
class RestaurantConversationTurn:
    role: ConversationRole
    text: str
    time: datetime = field(default_factory=datetime.now)


@dataclass
class Order:
    """
    A session's chosen restaurant and the negotiation with it.

    ``milestone`` holds the last status outside ``waiting_client_response``
    so it can be restored once the user's answer is relayed.
    """
    session_id: str
    restaurant: RestaurantCandidate
    order_data: OrderData
    id: str = field(default_factory=lambda: f"ord_{uuid.uuid4().hex[:12]}")
    status: OrderStatus = OrderStatus.RESTAURANTS_FOUND
    milestone: OrderStatus = OrderStatus.RESTAURANTS_FOUND
    conversation: list[RestaurantConversationTurn] = field(default_factory=list)
    pending_question: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def log(self, role: ConversationRole, text: str) -> RestaurantConversationTurn:
        turn = RestaurantConversationTurn(role=role, text=text)
        self.conversation.append(turn)
        self.updated_at = turn.time
        return turn

    def set_milestone(self, status: OrderStatus) -> bool:
        """
        Advance the milestone. Returns False when ``status`` would move backwards.

        While a question is pending the visible status stays
        ``waiting_client_response``.
        """
        if MILESTONE_RANK[status] <= MILESTONE_RANK[self.milestone]:
            return False
        self.milestone = status
        if self.status != OrderStatus.WAITING_CLIENT_RESPONSE:
            self.status = status
        self.updated_at = datetime.now()
        return True

    def wait_for_client(self, question: str) -> None:
        self.status = OrderStatus.WAITING_CLIENT_RESPONSE
        self.pending_question = question
        self.updated_at = datetime.now()

    def resume(self) -> None:
        """Clear the pending question and return to the last milestone."""
        self.pending_question = None
        self.status = self.milestone
        self.updated_at = datetime.now()

    def __repr__(self):
        return f"<Order {self.id} - {self.restaurant.name} - {self.status.value}>"
