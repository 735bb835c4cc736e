"""
Order Orchestrator

Joins the two channels of an order:
    - the chat with the end user (sessions, stage machine)
    - the WhatsApp conversation with the restaurant (orders, status machine)

Locking:
    Chat events hold the session lock and may take the order lock inside
    it. Restaurant events hold only the order lock. Background tasks take
    one lock at a time. The order is therefore always session, then order.

Hand-off:
    While an order waits for the client (a restaurant question that only
    the user can answer), the user's next chat message is relayed to the
    restaurant and the order returns to its last milestone.
"""

import asyncio
import logging
import random
import re
from dataclasses import replace
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Awaitable, Callable, Optional

from concierge.core.config import Settings, get_settings
from concierge.core.exceptions import RestaurantUnavailableError
from concierge.core.tasks import TaskSupervisor
from concierge.models import (
    ChatRole,
    ConversationRole,
    DiscoveryOutcome,
    DiscoveryState,
    Order,
    OrderStatus,
    RestaurantCandidate,
    Session,
    Stage,
)
from concierge.services.classifier import ReplyType, classify
from concierge.services.conversation import ClientProxyResponder, ConversationEngine
from concierge.services.discovery import FALLBACK_RESTAURANTS, DiscoveryReport, RestaurantDiscovery
from concierge.services.dispatcher import OrderDispatcher
from concierge.services.extraction import extract
from concierge.services.fanout import NotificationFanout
from concierge.services.llm import BaseTextGenerator, get_text_generator
from concierge.services.messaging import BaseMessagingService, get_messaging_service
from concierge.services.search import BaseSearchService, get_search_service
from concierge.stores import Mailbox, MailboxMessage, OrderStore, SessionStore

logger = logging.getLogger(__name__)

MILESTONES = {
    ReplyType.CONFIRMED: OrderStatus.CONFIRMED,
    ReplyType.PREPARING: OrderStatus.PREPARING,
    ReplyType.OUT_FOR_DELIVERY: OrderStatus.OUT_FOR_DELIVERY,
}

MILESTONE_CHAT_MESSAGES = {
    OrderStatus.CONFIRMED: "🎉 O {name} confirmou seu pedido!{eta}",
    OrderStatus.PREPARING: "👨‍🍳 O {name} já está preparando seu pedido.",
    OrderStatus.OUT_FOR_DELIVERY: "🛵 Seu pedido do {name} saiu para entrega!",
}

ORDINALS = [("primeir", 0), ("segund", 1), ("terceir", 2)]


def contact_from_jid(remote_jid: str) -> str:
    """``5521999999999@s.whatsapp.net`` -> ``5521999999999``."""
    return re.sub(r"\D", "", remote_jid.split("@", 1)[0])


def parse_selection(message: str, candidates: list[RestaurantCandidate]) -> Optional[int]:
    """Index of the restaurant the user picked, by number, ordinal or name."""
    if not candidates:
        return None
    lowered = message.lower()

    number = re.search(r"(?<!\d)([1-9])(?!\d)", lowered)
    if number:
        index = int(number.group(1)) - 1
        return index if index < len(candidates) else None

    for index, candidate in enumerate(candidates):
        if candidate.name.lower() in lowered:
            return index

    for word, index in ORDINALS:
        if re.search(r"(?<!\w)" + word, lowered) and index < len(candidates):
            return index
    return None


def format_options(candidates: list[RestaurantCandidate]) -> str:
    lines = ["Encontrei estas opções para você: 🍽️", ""]
    for number, candidate in enumerate(candidates, start=1):
        rating = f" ⭐ {candidate.rating:.1f}" if candidate.rating else ""
        details = " · ".join(p for p in (candidate.specialty, candidate.estimated_time, candidate.price_range) if p)
        lines.append(f"{number}. {candidate.name}{rating}")
        if details:
            lines.append(f"   {details}")
    lines.extend(["", "Qual você prefere? Responda com o número da opção."])
    return "\n".join(lines)


class Orchestrator:
    """
    Entry point for chat, poll and restaurant webhook events.

    Args:
        generator: Text generation collaborator
        search: Search collaborator
        messaging: WhatsApp collaborator
        settings: Application settings
        sleep: Replacement for ``asyncio.sleep`` in every human-like delay
        rng: Randomness for delays and metadata (tests pass a seeded one)
    """

    def __init__(
        self,
        generator: BaseTextGenerator,
        search: BaseSearchService,
        messaging: BaseMessagingService,
        settings: Optional[Settings] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or get_settings()
        self.messaging = messaging
        self.sleep = sleep or asyncio.sleep
        self.rng = rng or random.Random()

        self.sessions = SessionStore()
        self.orders = OrderStore()
        self.mailbox = Mailbox(ttl=timedelta(minutes=self.settings.mailbox_ttl_minutes))
        self.supervisor = TaskSupervisor()

        self.engine = ConversationEngine(generator, self.settings)
        self.proxy = ClientProxyResponder(generator, self.settings)
        self.discovery = RestaurantDiscovery(generator, search, self.settings, self.rng)
        self.dispatcher = OrderDispatcher(messaging, self.supervisor, self.settings, self.sleep, self.rng)
        self.fanout = NotificationFanout(messaging, self.supervisor, self.settings, self.sleep)

    # ==========================================================================
    # CHAT CHANNEL
    # ==========================================================================

    async def handle_chat(
        self,
        session_id: str,
        message: str,
        history: Optional[list[dict]] = None,
    ) -> str:
        """
        Process one chat message and return the reply.

        Raises:
            GenerationError: If the reply could not be generated and the
                template fallback is disabled
        """
        async with self.sessions.lock(session_id):
            session = self.sessions.get_or_create(session_id)
            if not session.turns and history:
                self._seed_history(session, history)
            session.add_turn(ChatRole.USER, message)

            reply = await self._route_chat(session, message)

            session.add_turn(ChatRole.ASSISTANT, reply)
            return reply

    async def _route_chat(self, session: Session, message: str) -> str:
        order = self.orders.get_by_session(session.id)
        if order is not None and order.status == OrderStatus.WAITING_CLIENT_RESPONSE:
            relayed = await self._relay_answer(order, message)
            if relayed is not None:
                return relayed

        if session.stage in (Stage.RESTAURANTS_PRESENTED, Stage.AWAITING_SELECTION):
            if session.stage == Stage.RESTAURANTS_PRESENTED:
                session.advance_to(Stage.AWAITING_SELECTION)
            return await self._handle_selection(session, message)

        session.order_data = extract(session.order_data, session.user_text(), message)
        if session.stage == Stage.INITIAL and session.order_data.is_complete:
            self._start_discovery(session)

        return await self.engine.reply(session)

    def _seed_history(self, session: Session, history: list[dict]) -> None:
        """Rebuild a session the server lost from the history the client kept."""
        for item in history:
            role, content = item.get("role"), item.get("content")
            if role not in (ChatRole.USER.value, ChatRole.ASSISTANT.value) or not content:
                continue
            session.add_turn(ChatRole(role), content)
            if role == ChatRole.USER.value:
                session.order_data = extract(session.order_data, session.user_text(), content)
        logger.info(f"Session {session.id} seeded with {len(session.turns)} client turn(s)")

    async def _relay_answer(self, order: Order, message: str) -> Optional[str]:
        async with self.orders.lock(order.id):
            if order.status != OrderStatus.WAITING_CLIENT_RESPONSE:
                return None
            question = order.pending_question
            order.log(ConversationRole.CLIENT_PROXY, message)
            order.resume()
            self.supervisor.spawn(order.id, self._deliver(order, message), name="relay_answer")

        logger.info(f"Order {order.id}: client answer relayed for question '{question}'")
        return (
            f"Perfeito! Já repassei sua resposta para o {order.restaurant.name}. "
            "Te aviso assim que eles responderem. 👍"
        )

    async def _handle_selection(self, session: Session, message: str) -> str:
        index = parse_selection(message, session.candidates)
        if index is None:
            return (
                f"Qual restaurante você prefere? Responda com o número da opção "
                f"(1 a {len(session.candidates)}).\n\n{format_options(session.candidates)}"
            )

        candidate = session.candidates[index]
        try:
            order = self.orders.create(session.id, replace(candidate), session.order_data)
        except RestaurantUnavailableError as e:
            logger.warning(f"Session {session.id}: {e}")
            if all(self.orders.get_by_contact(c.contact_id) for c in session.candidates):
                logger.warning(f"Session {session.id}: every presented restaurant is busy")
                return (
                    "Todos os restaurantes que encontrei estão atendendo outros pedidos nossos "
                    "agora. 😕 Tente escolher de novo daqui a alguns minutos."
                )
            return (
                f"O {candidate.name} está atendendo outro pedido nosso agora. "
                "Pode escolher outra opção?"
            )

        async with self.orders.lock(order.id):
            self.dispatcher.dispatch(order)
        session.order_id = order.id
        session.advance_to(Stage.ORDER_SENT)

        return (
            f"Ótima escolha! 🎉 Estou enviando seu pedido para o {candidate.name} agora. "
            "Te aviso aqui e no seu WhatsApp assim que o restaurante responder."
        )

    # ==========================================================================
    # DISCOVERY
    # ==========================================================================

    def _start_discovery(self, session: Session) -> None:
        """Must run under the session lock, which makes it fire once."""
        session.advance_to(Stage.SEARCHING_RESTAURANT)
        session.discovery = DiscoveryOutcome(state=DiscoveryState.PENDING, started_at=datetime.now())
        data = session.order_data
        self.supervisor.spawn(session.id, self._run_discovery(session.id, data.food, data.address), name="discovery")
        logger.info(f"Session {session.id}: order data complete, discovery started")

    async def _run_discovery(self, session_id: str, food: Optional[str], address: Optional[str]) -> None:
        error = None
        try:
            report = await self.discovery.run(food, address)
        except Exception as e:
            logger.exception(f"Discovery task failed for {session_id}: {e}")
            error = str(e)
            report = DiscoveryReport([replace(c) for c in FALLBACK_RESTAURANTS], DiscoveryState.FAILED)

        async with self.sessions.lock(session_id):
            session = self.sessions.get(session_id)
            if session is None or session.stage != Stage.SEARCHING_RESTAURANT:
                return
            session.candidates = report.candidates
            session.discovery.state = report.state
            session.discovery.finished_at = datetime.now()
            session.discovery.candidate_count = len(report.candidates)
            session.discovery.error = error
            session.advance_to(Stage.RESTAURANTS_PRESENTED)
            self.mailbox.push(
                session_id,
                format_options(report.candidates),
                restaurants=[c.to_dict() for c in report.candidates],
            )
        logger.info(f"Session {session_id}: {len(report.candidates)} option(s) presented ({report.state.value})")

    async def search_restaurants(self, food: str, address: str) -> list[RestaurantCandidate]:
        return await self.discovery.discover(food, address)

    # ==========================================================================
    # POLL
    # ==========================================================================

    async def poll(self, session_id: str) -> Optional[MailboxMessage]:
        """Pop the next chat notification, at most once."""
        message = self.mailbox.pop(session_id)
        if message is not None and message.restaurants:
            async with self.sessions.lock(session_id):
                session = self.sessions.get(session_id)
                if session is not None and session.stage == Stage.RESTAURANTS_PRESENTED:
                    session.advance_to(Stage.AWAITING_SELECTION)
        return message

    # ==========================================================================
    # RESTAURANT CHANNEL
    # ==========================================================================

    async def handle_restaurant_message(self, remote_jid: str, text: str) -> bool:
        """
        Route an inbound WhatsApp message. Returns False when no open order
        matches the sender.
        """
        contact = contact_from_jid(remote_jid)
        order = self.orders.get_by_contact(contact)
        if order is None:
            logger.info(f"Ignoring message from {contact}: no open order")
            return False

        async with self.orders.lock(order.id):
            order.log(ConversationRole.RESTAURANT, text)
            classification = classify(text)
            logger.info(
                f"Order {order.id}: restaurant said [{classification.type.value}"
                f"{', needs client' if classification.needs_client_input else ''}]: {text[:80]}"
            )

            if classification.needs_client_input:
                order.wait_for_client(text)
                self.mailbox.push(
                    order.session_id,
                    f"🍽️ O {order.restaurant.name} perguntou: \"{text}\"\n\n"
                    "Me responda aqui que eu repasso para o restaurante.",
                )
                self.fanout.forward_question(order, text)
            else:
                self.supervisor.spawn(order.id, self._proxy_reply(order.id), name="proxy_reply")

            milestone = MILESTONES.get(classification.type)
            if milestone is not None and order.set_milestone(milestone):
                self._announce_milestone(order, milestone)
        return True

    def _announce_milestone(self, order: Order, milestone: OrderStatus) -> None:
        eta = f" Previsão: {order.restaurant.estimated_time}." if order.restaurant.estimated_time else ""
        template = MILESTONE_CHAT_MESSAGES[milestone]
        self.mailbox.push(order.session_id, template.format(name=order.restaurant.name, eta=eta))
        self.fanout.notify_milestone(order, milestone)
        logger.info(f"Order {order.id}: milestone {milestone.value}")

    def _reply_delay(self) -> float:
        low = self.settings.proxy_reply_delay_min_seconds
        high = max(low, self.settings.proxy_reply_delay_max_seconds)
        return self.rng.uniform(low, high)

    async def _proxy_reply(self, order_id: str) -> None:
        async with self.orders.lock(order_id):
            order = self.orders.get(order_id)
            reply = await self.proxy.reply(order)
            order.log(ConversationRole.CLIENT_PROXY, reply)
        await self._deliver(order, reply)

    async def _deliver(self, order: Order, text: str) -> None:
        await self.sleep(self._reply_delay())
        result = await self.messaging.send_text(order.restaurant.contact_id, text)
        if not result.success:
            logger.error(f"Order {order.id}: message to restaurant failed: {result.error_message}")

    # ==========================================================================
    # INSPECTION / LIFECYCLE
    # ==========================================================================

    def describe_session(self, session_id: str) -> Optional[dict]:
        session = self.sessions.get(session_id)
        if session is None:
            return None
        order = self.orders.get(session.order_id) if session.order_id else None
        return {
            "sessionId": session.id,
            "stage": session.stage.value,
            "orderData": session.order_data.to_dict(),
            "missingFields": session.order_data.missing_fields(),
            "discovery": {
                "state": session.discovery.state.value,
                "startedAt": session.discovery.started_at,
                "finishedAt": session.discovery.finished_at,
                "candidateCount": session.discovery.candidate_count,
                "error": session.discovery.error,
            },
            "restaurants": [c.to_dict() for c in session.candidates],
            "order": None if order is None else {
                "id": order.id,
                "restaurant": order.restaurant.name,
                "status": order.status.value,
                "pendingQuestion": order.pending_question,
                "conversation": [
                    {"role": t.role.value, "text": t.text, "time": t.time} for t in order.conversation
                ],
            },
            "createdAt": session.created_at,
            "lastActive": session.last_active,
        }

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()


@lru_cache()
def get_orchestrator() -> Orchestrator:
    """Get the process-wide orchestrator wired to the configured collaborators."""
    return Orchestrator(
        generator=get_text_generator(),
        search=get_search_service(),
        messaging=get_messaging_service(),
    )


def reset_orchestrator() -> None:
    """Clear the cached orchestrator instance."""
    get_orchestrator.cache_clear()
