"""
End-to-end flows through the orchestrator with mock collaborators.

Background tasks are awaited with ``supervisor.drain`` so every
assertion sees the state after the delayed sends.
"""

import asyncio

import pytest

from concierge.core.exceptions import GenerationError
from concierge.models import DiscoveryState, OrderStatus, Provenance, Stage
from concierge.services.discovery import FALLBACK_RESTAURANTS
from concierge.services.llm import MockTextGenerator
from concierge.services.orchestrator import contact_from_jid, parse_selection

CLIENT = "21999999999"
CLIENT_WHATSAPP = "5521999999999"
RESTAURANT_JID = "5524999999999@s.whatsapp.net"
ORDER_MESSAGES = [
    "quero uma pizza calabresa grande",
    "Rua das Flores, 123",
    "meu whatsapp é 21999999999",
    "pix",
]


async def collect_order_fields(orchestrator, session_id):
    for message in ORDER_MESSAGES:
        await orchestrator.handle_chat(session_id, message)
    await orchestrator.supervisor.drain(session_id)


async def place_order(orchestrator, session_id="s1", choice="1"):
    await collect_order_fields(orchestrator, session_id)
    await orchestrator.poll(session_id)
    reply = await orchestrator.handle_chat(session_id, choice)
    order = orchestrator.orders.get_by_session(session_id)
    if order is not None:
        await orchestrator.supervisor.drain(order.id)
    return reply, order


@pytest.fixture
def degraded(make_orchestrator):
    """Generator and search both fail; chat answers from templates."""
    return make_orchestrator(
        generator=MockTextGenerator(failure_rate=1.0, latency=0),
        chat_fallback_on_generation_error=True,
    )


# =============================================================================
# HELPERS
# =============================================================================

def test_contact_from_jid():
    assert contact_from_jid("5521999999999@s.whatsapp.net") == "5521999999999"


@pytest.mark.parametrize(
    "message,expected",
    [
        ("1", 0),
        ("quero o 2", 1),
        ("pizza express", 1),
        ("a terceira", 2),
        ("9", None),
        ("nenhum deles", None),
    ],
)
def test_parse_selection(message, expected):
    assert parse_selection(message, list(FALLBACK_RESTAURANTS)) == expected


# =============================================================================
# CHAT -> DISCOVERY -> ORDER
# =============================================================================

def test_pix_order_reaches_restaurant_when_collaborators_fail(degraded):
    orchestrator = degraded

    async def scenario():
        await collect_order_fields(orchestrator, "s1")
        session = orchestrator.sessions.get("s1")
        assert session.stage == Stage.RESTAURANTS_PRESENTED
        assert session.discovery.state == DiscoveryState.FALLBACK

        notification = await orchestrator.poll("s1")
        assert session.stage == Stage.AWAITING_SELECTION

        reply = await orchestrator.handle_chat("s1", "1")
        order = orchestrator.orders.get_by_session("s1")
        await orchestrator.supervisor.drain(order.id)
        return session, notification, reply, order

    session, notification, reply, order = asyncio.run(scenario())

    assert [r["provenance"] for r in notification.restaurants] == [Provenance.FALLBACK.value] * 3
    assert "1. Pizzaria Dom José" in notification.text
    assert "Pizzaria Dom José" in reply
    assert session.stage == Stage.ORDER_SENT
    assert order.status == OrderStatus.ORDER_SENT

    [summary] = orchestrator.messaging.delivered_to("5524999999999")
    assert "quero uma pizza calabresa grande" in summary
    assert "Rua das Flores, 123" in summary
    assert CLIENT in summary
    assert "Pix" in summary
    assert "Troco" not in summary


def test_chat_reply_while_collecting(degraded):
    reply = asyncio.run(degraded.handle_chat("s1", "quero uma pizza"))
    assert "endereço" in reply
    assert degraded.sessions.get("s1").stage == Stage.INITIAL


def test_discovery_starts_once_under_concurrent_messages(make_orchestrator):
    orchestrator = make_orchestrator(generator=MockTextGenerator(latency=0.01))

    async def scenario():
        for message in ORDER_MESSAGES[:3]:
            await orchestrator.handle_chat("s1", message)
        await asyncio.gather(
            orchestrator.handle_chat("s1", "pix"),
            orchestrator.handle_chat("s1", "pode ser no pix"),
        )
        await orchestrator.supervisor.drain()

    asyncio.run(scenario())

    assert orchestrator.supervisor.launched["discovery"] == 1
    assert orchestrator.sessions.get("s1").stage == Stage.RESTAURANTS_PRESENTED
    assert orchestrator.mailbox.pending("s1") == 1


def test_discovery_crash_still_presents_fallback(degraded):
    async def crash(food, address):
        raise RuntimeError("boom")

    degraded.discovery.run = crash

    async def scenario():
        await collect_order_fields(degraded, "s1")
        return await degraded.poll("s1")

    notification = asyncio.run(scenario())

    session = degraded.sessions.get("s1")
    assert session.discovery.state == DiscoveryState.FAILED
    assert session.discovery.error == "boom"
    assert len(notification.restaurants) == 3


def test_invalid_selection_reprompts(degraded):
    async def scenario():
        await collect_order_fields(degraded, "s1")
        await degraded.poll("s1")
        return await degraded.handle_chat("s1", "tanto faz")

    reply = asyncio.run(scenario())

    assert "Responda com o número" in reply
    assert degraded.sessions.get("s1").stage == Stage.AWAITING_SELECTION
    assert len(degraded.orders) == 0


def test_busy_restaurant_asks_for_another_option(degraded):
    async def scenario():
        await place_order(degraded, "s1")
        busy_reply, busy_order = await place_order(degraded, "s2")
        second_reply = await degraded.handle_chat("s2", "2")
        return busy_reply, busy_order, second_reply

    busy_reply, busy_order, second_reply = asyncio.run(scenario())

    assert "atendendo outro pedido" in busy_reply
    assert busy_order is None
    assert "Pizza Express" in second_reply
    assert degraded.orders.get_by_session("s2").restaurant.contact_id == "5524888888888"


def test_every_option_busy_gets_its_own_answer(degraded):
    async def scenario():
        for number, choice in enumerate(["1", "2", "3"], start=1):
            await place_order(degraded, f"s{number}", choice)
        return await place_order(degraded, "s4", "2")

    reply, order = asyncio.run(scenario())

    assert order is None
    assert "Todos os restaurantes" in reply
    assert "atendendo outro pedido" not in reply
    assert degraded.sessions.get("s4").stage == Stage.AWAITING_SELECTION


def test_generation_failure_surfaces(make_orchestrator):
    orchestrator = make_orchestrator(generator=MockTextGenerator(failure_rate=1.0, latency=0))
    with pytest.raises(GenerationError):
        asyncio.run(orchestrator.handle_chat("s1", "quero uma pizza"))


def test_lost_session_is_rebuilt_from_client_history(degraded):
    history = [
        {"role": "user", "content": "quero uma pizza"},
        {"role": "assistant", "content": "Qual o endereço?"},
        {"role": "user", "content": "Rua A, 10"},
        {"role": "system", "content": "ignored"},
    ]
    asyncio.run(degraded.handle_chat("s9", "21999999999", history))

    state = degraded.describe_session("s9")
    assert state["orderData"]["food"] == "quero uma pizza"
    assert state["orderData"]["address"] == "Rua A, 10"
    assert state["orderData"]["contact_id"] == CLIENT
    assert state["missingFields"] == ["payment_method"]
    assert degraded.describe_session("unknown") is None


# =============================================================================
# RESTAURANT CHANNEL
# =============================================================================

def test_unknown_sender_is_ignored(degraded):
    assert asyncio.run(degraded.handle_restaurant_message("5511000000000@s.whatsapp.net", "oi")) is False


def test_question_waits_for_client_and_answer_is_relayed(degraded):
    orchestrator = degraded

    async def scenario():
        _, order = await place_order(orchestrator)
        await orchestrator.handle_restaurant_message(RESTAURANT_JID, "Qual a forma de pagamento? Precisa de troco?")
        await orchestrator.supervisor.drain(order.id)
        waiting_status = order.status
        question = await orchestrator.poll("s1")

        reply = await orchestrator.handle_chat("s1", "vou pagar no pix mesmo")
        await orchestrator.supervisor.drain(order.id)
        return order, waiting_status, question, reply

    order, waiting_status, question, reply = asyncio.run(scenario())

    assert waiting_status == OrderStatus.WAITING_CLIENT_RESPONSE
    assert "perguntou" in question.text
    [forwarded] = orchestrator.messaging.delivered_to(CLIENT_WHATSAPP)
    assert "Precisa de troco?" in forwarded

    assert "repassei" in reply
    assert order.status == OrderStatus.ORDER_SENT
    assert order.pending_question is None
    assert orchestrator.messaging.delivered_to("5524999999999")[-1] == "vou pagar no pix mesmo"


def test_confirmation_notifies_client_and_proxy_answers(degraded):
    orchestrator = degraded

    async def scenario():
        _, order = await place_order(orchestrator)
        await orchestrator.handle_restaurant_message(RESTAURANT_JID, "Pedido confirmado! Chega em 40 minutos")
        await orchestrator.supervisor.drain(order.id)
        return order, await orchestrator.poll("s1")

    order, notification = asyncio.run(scenario())

    assert order.status == OrderStatus.CONFIRMED
    assert "confirmou seu pedido" in notification.text
    assert len(orchestrator.messaging.delivered_to(CLIENT_WHATSAPP)) == 4
    restaurant_messages = orchestrator.messaging.delivered_to("5524999999999")
    assert restaurant_messages[-1] == "Perfeito, muito obrigado! Mais ou menos quanto tempo para a entrega?"


def test_milestones_never_move_backwards(degraded):
    orchestrator = degraded

    async def scenario():
        _, order = await place_order(orchestrator)
        await orchestrator.handle_restaurant_message(RESTAURANT_JID, "Já estamos preparando")
        await orchestrator.supervisor.drain(order.id)
        notices = len(orchestrator.messaging.delivered_to(CLIENT_WHATSAPP))

        await orchestrator.handle_restaurant_message(RESTAURANT_JID, "Pedido confirmado")
        await orchestrator.supervisor.drain(order.id)
        return order, notices

    order, notices = asyncio.run(scenario())

    assert notices == 1
    assert order.status == OrderStatus.PREPARING
    assert len(orchestrator.messaging.delivered_to(CLIENT_WHATSAPP)) == 1
    assert order.conversation[-2].text == "Pedido confirmado"


def test_shutdown_cancels_pending_work(make_orchestrator):
    orchestrator = make_orchestrator()

    async def scenario():
        orchestrator.supervisor.spawn("s1", asyncio.sleep(10), name="slow")
        await asyncio.sleep(0)
        await orchestrator.shutdown()
        return orchestrator.supervisor.pending()

    assert asyncio.run(scenario()) == 0
