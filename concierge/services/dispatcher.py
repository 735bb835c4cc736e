"""
Order Dispatcher

Formats an order and sends it to the chosen restaurant after a short,
randomized pause that mimics a person typing. The send runs inside a
supervised task owned by the order, so shutdown can cancel it.

A failed send is logged and left alone: the order stays created and no
compensating action is taken.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from concierge.core.config import Settings, get_settings
from concierge.core.tasks import TaskSupervisor
from concierge.models import NO_CHANGE, ConversationRole, Order, OrderData, OrderStatus, PaymentMethod
from concierge.services.messaging import BaseMessagingService, MessageResult

logger = logging.getLogger(__name__)


def format_summary(order_data: OrderData) -> str:
    """
    Portuguese order summary sent to the restaurant.

    The change line appears only for cash; the notes line only when there
    are notes.
    """
    lines = [
        "Olá! Gostaria de fazer um pedido para entrega. 😊",
        "",
        f"🍽️ Pedido: {order_data.food}",
        f"📍 Endereço: {order_data.address}",
        f"📱 Contato: {order_data.contact_id}",
        f"💳 Pagamento: {order_data.payment_method.label}",
    ]
    if order_data.payment_method == PaymentMethod.CASH:
        if order_data.change_amount == NO_CHANGE or not order_data.change_amount:
            lines.append("💵 Troco: não precisa")
        else:
            lines.append(f"💵 Troco para: R$ {order_data.change_amount}")
    if order_data.notes:
        lines.append(f"📝 Observações: {order_data.notes}")
    lines.extend(["", "Pode confirmar, por favor? Obrigado!"])
    return "\n".join(lines)


class OrderDispatcher:
    """
    Sends new orders to restaurants.

    Args:
        messaging: WhatsApp gateway
        supervisor: Owner of the delayed send tasks
        settings: Delay bounds
        sleep: Replacement for ``asyncio.sleep`` (tests)
    """

    def __init__(
        self,
        messaging: BaseMessagingService,
        supervisor: TaskSupervisor,
        settings: Optional[Settings] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.messaging = messaging
        self.supervisor = supervisor
        self.settings = settings or get_settings()
        self.sleep = sleep or asyncio.sleep
        self.rng = rng or random.Random()

    def typing_delay(self) -> float:
        low = self.settings.dispatch_delay_min_seconds
        high = max(low, self.settings.dispatch_delay_max_seconds)
        return self.rng.uniform(low, high)

    def dispatch(self, order: Order) -> asyncio.Task:
        """
        Record the summary, mark the order sent and schedule the send.

        Must be called while holding the order's lock. Returns the
        supervised task performing the send.
        """
        summary = format_summary(order.order_data)
        order.log(ConversationRole.CLIENT_PROXY, summary)
        order.set_milestone(OrderStatus.ORDER_SENT)
        return self.supervisor.spawn(order.id, self._send(order, summary), name="dispatch")

    async def _send(self, order: Order, summary: str) -> MessageResult:
        await self.sleep(self.typing_delay())
        contact = order.restaurant.contact_id
        result = await self.messaging.send_text(contact, summary)
        if result.success:
            logger.info(f"Order {order.id} sent to {order.restaurant.name} ({contact})")
        else:
            logger.error(
                f"Order {order.id} could not be sent to {order.restaurant.name} "
                f"({contact}): {result.error_message}"
            )
        return result
