import asyncio

from concierge.core.tasks import TaskSupervisor
from concierge.models import NO_CHANGE, ConversationRole, Order, OrderStatus, PaymentMethod
from concierge.services.dispatcher import OrderDispatcher, format_summary
from concierge.services.messaging import MockMessagingService

from tests.conftest import make_settings


def test_pix_summary_has_no_change_line(complete_order_data):
    summary = format_summary(complete_order_data)

    assert "🍽️ Pedido: quero uma pizza calabresa grande" in summary
    assert "📍 Endereço: Rua das Flores, 123" in summary
    assert "📱 Contato: 21999999999" in summary
    assert "💳 Pagamento: Pix" in summary
    assert "Troco" not in summary
    assert "Observações" not in summary


def test_cash_summary_shows_change(complete_order_data):
    cash = complete_order_data.with_changes(payment_method=PaymentMethod.CASH, change_amount="50")
    assert "💵 Troco para: R$ 50" in format_summary(cash)

    exact = cash.with_changes(change_amount=NO_CHANGE)
    assert "💵 Troco: não precisa" in format_summary(exact)


def test_notes_line_only_with_notes(complete_order_data):
    summary = format_summary(complete_order_data.with_changes(notes="sem cebola"))
    assert "📝 Observações: sem cebola" in summary


def test_dispatch_sends_after_typing_delay(candidate, complete_order_data, clock, messaging):
    order = Order(session_id="s1", restaurant=candidate, order_data=complete_order_data)
    supervisor = TaskSupervisor()
    settings = make_settings(dispatch_delay_min_seconds=2.0, dispatch_delay_max_seconds=5.0)
    dispatcher = OrderDispatcher(messaging, supervisor, settings, sleep=clock.sleep)

    async def scenario():
        return await dispatcher.dispatch(order)

    result = asyncio.run(scenario())

    assert result.success
    assert 2.0 <= clock.sleeps[0] <= 5.0
    assert order.status == OrderStatus.ORDER_SENT
    assert order.conversation[0].role == ConversationRole.CLIENT_PROXY
    assert messaging.delivered_to(candidate.contact_id) == [format_summary(complete_order_data)]


def test_failed_send_keeps_the_order(candidate, complete_order_data, clock):
    order = Order(session_id="s1", restaurant=candidate, order_data=complete_order_data)
    supervisor = TaskSupervisor()
    messaging = MockMessagingService(failure_rate=0, latency=0, fail_when=lambda contact, text: True)
    dispatcher = OrderDispatcher(messaging, supervisor, make_settings(), sleep=clock.sleep)

    async def scenario():
        return await dispatcher.dispatch(order)

    result = asyncio.run(scenario())

    assert not result.success
    assert order.status == OrderStatus.ORDER_SENT
    assert not supervisor.failed
