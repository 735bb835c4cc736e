"""
Client Notification Fan-out

WhatsApp messages to the user's own number as the order progresses.
Every sequence runs as a supervised task owned by the order id. Inside a
sequence each send stands alone: a failure is logged, not retried, and
never stops the messages after it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from concierge.core.config import Settings, get_settings
from concierge.core.tasks import TaskSupervisor
from concierge.models import Order, OrderStatus
from concierge.services.discovery import normalize_contact
from concierge.services.messaging import BaseMessagingService, MessageResult

logger = logging.getLogger(__name__)


def confirmation_messages(order: Order, chat_url: str) -> list[str]:
    """The four reassurance messages sent when the restaurant confirms."""
    restaurant = order.restaurant
    eta = f" Previsão: {restaurant.estimated_time}." if restaurant.estimated_time else ""
    return [
        f"🎉 Seu pedido foi confirmado pelo {restaurant.name}!",
        f"👨‍🍳 O restaurante já recebeu todos os detalhes do seu pedido.{eta}",
        "📲 Eu sigo acompanhando e te aviso aqui a cada novidade.",
        f"💬 Se precisar de algo, é só falar comigo no chat: {chat_url}",
    ]


STATUS_MESSAGES = {
    OrderStatus.PREPARING: "👨‍🍳 Boa notícia: o {name} já está preparando o seu pedido!",
    OrderStatus.OUT_FOR_DELIVERY: "🛵 Seu pedido do {name} saiu para entrega! Já já chega aí.",
}


class NotificationFanout:
    """
    Sends order updates to the client.

    Args:
        messaging: WhatsApp gateway
        supervisor: Owner of the notification tasks
        settings: Gaps between confirmation messages and the chat URL
        sleep: Replacement for ``asyncio.sleep`` (tests)
    """

    def __init__(
        self,
        messaging: BaseMessagingService,
        supervisor: TaskSupervisor,
        settings: Optional[Settings] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.messaging = messaging
        self.supervisor = supervisor
        self.settings = settings or get_settings()
        self.sleep = sleep or asyncio.sleep

    async def _send(self, contact_id: str, text: str, label: str) -> Optional[MessageResult]:
        try:
            result = await self.messaging.send_text(contact_id, text)
        except Exception as e:
            logger.error(f"Notification '{label}' to {contact_id} raised: {e}")
            return None
        if not result.success:
            logger.warning(f"Notification '{label}' to {contact_id} failed: {result.error_message}")
        return result

    async def send_confirmation_sequence(self, contact_id: str, order: Order) -> list[Optional[MessageResult]]:
        """Four messages separated by the configured gaps."""
        messages = confirmation_messages(order, self.settings.app_base_url)
        gaps = self.settings.fanout_delays_list
        results = []
        for index, text in enumerate(messages):
            if index:
                await self.sleep(gaps[index - 1])
            results.append(await self._send(contact_id, text, f"confirmation {index + 1}/4"))
        logger.info(
            f"Confirmation sequence for {order.id}: "
            f"{sum(1 for r in results if r and r.success)}/{len(results)} delivered"
        )
        return results

    async def send_status_update(self, contact_id: str, status: OrderStatus, order: Order) -> Optional[MessageResult]:
        template = STATUS_MESSAGES.get(status)
        if template is None:
            logger.debug(f"No client message for status {status.value}")
            return None
        return await self._send(contact_id, template.format(name=order.restaurant.name), status.value)

    async def send_question(self, contact_id: str, question: str) -> Optional[MessageResult]:
        text = (
            f"🍕 O restaurante perguntou: \"{question}\"\n\n"
            f"Por favor, responda no chat: {self.settings.app_base_url}"
        )
        return await self._send(contact_id, text, "question")

    # ------------------------------------------------------------------
    # Supervised entry points
    # ------------------------------------------------------------------

    def client_contact(self, order: Order) -> Optional[str]:
        """The user's number as a country-prefixed WhatsApp id."""
        raw = order.order_data.contact_id
        return normalize_contact(raw, self.settings.country_code) or raw

    def notify_milestone(self, order: Order, status: OrderStatus) -> Optional[asyncio.Task]:
        contact = self.client_contact(order)
        if not contact:
            logger.warning(f"Order {order.id} has no client contact; skipping {status.value} notice")
            return None
        if status == OrderStatus.CONFIRMED:
            coro = self.send_confirmation_sequence(contact, order)
        elif status in STATUS_MESSAGES:
            coro = self.send_status_update(contact, status, order)
        else:
            return None
        return self.supervisor.spawn(order.id, coro, name=f"notify:{status.value}")

    def forward_question(self, order: Order, question: str) -> Optional[asyncio.Task]:
        contact = self.client_contact(order)
        if not contact:
            return None
        return self.supervisor.spawn(order.id, self.send_question(contact, question), name="notify:question")
