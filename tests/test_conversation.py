import asyncio

import pytest

from concierge.core.exceptions import GenerationError
from concierge.models import ChatRole, ConversationRole, Order, OrderData, Session, Stage
from concierge.services.conversation import (
    MISSING_FIELD_PROMPTS,
    STAGE_FALLBACKS,
    ClientProxyResponder,
    ConversationEngine,
    truncate_at_sentence,
    truncate_at_word,
)
from concierge.services.llm import MockTextGenerator

from tests.conftest import make_settings


def session_with(text="quero pizza", **order_fields):
    session = Session(id="s1", order_data=OrderData(**order_fields))
    session.add_turn(ChatRole.USER, text)
    return session


# =============================================================================
# TRUNCATION
# =============================================================================

def test_short_text_is_untouched():
    assert truncate_at_sentence("  Olá!  ", 50) == "Olá!"


def test_cut_at_the_first_sentence_end():
    text = "Primeira frase. Segunda frase bem mais longa que não cabe no limite."
    assert truncate_at_sentence(text, 30) == "Primeira frase."

    text = "Primeira frase. Segunda frase. " + "x" * 700
    assert truncate_at_sentence(text, 600) == "Primeira frase."
    assert truncate_at_sentence("Oi! Tudo bem? " + "y" * 100, 60) == "Oi!"


def test_hard_cut_with_ellipsis_when_no_sentence_fits():
    result = truncate_at_sentence("a" * 100, 50)
    assert len(result) == 50
    assert result.endswith("…")


def test_truncate_at_word():
    assert truncate_at_word("um dois tres quatro", 10) == "um dois"
    assert truncate_at_word("curto", 10) == "curto"


# =============================================================================
# CHAT ENGINE
# =============================================================================

def test_prompt_carries_history_and_missing_fields():
    engine = ConversationEngine(MockTextGenerator(latency=0), make_settings())
    prompt = engine.build_prompt(session_with("quero pizza", food="quero pizza"))

    assert "Cliente: quero pizza" in prompt
    assert "address" in prompt
    assert "Etapa: initial" in prompt


def test_reply_is_truncated():
    generator = MockTextGenerator(responses=["Frase curta. " + "x" * 200], latency=0)
    engine = ConversationEngine(generator, make_settings(chat_reply_max_chars=50))
    assert asyncio.run(engine.reply(session_with())) == "Frase curta."


def test_generation_failure_surfaces_by_default(failing_generator):
    engine = ConversationEngine(failing_generator, make_settings())
    with pytest.raises(GenerationError):
        asyncio.run(engine.reply(session_with()))


def test_empty_reply_is_a_failure():
    engine = ConversationEngine(MockTextGenerator(responses=["   "], latency=0), make_settings())
    with pytest.raises(GenerationError):
        asyncio.run(engine.reply(session_with()))


def test_template_fallback_asks_for_first_missing_field(failing_generator):
    engine = ConversationEngine(failing_generator, make_settings(chat_fallback_on_generation_error=True))

    reply = asyncio.run(engine.reply(session_with(food="pizza")))
    assert reply == MISSING_FIELD_PROMPTS["address"]


def test_template_fallback_by_stage(failing_generator):
    engine = ConversationEngine(failing_generator, make_settings(chat_fallback_on_generation_error=True))
    session = session_with()
    session.advance_to(Stage.SEARCHING_RESTAURANT)

    assert asyncio.run(engine.reply(session)) == STAGE_FALLBACKS[Stage.SEARCHING_RESTAURANT]


# =============================================================================
# CLIENT PROXY
# =============================================================================

@pytest.fixture
def order(candidate, complete_order_data):
    return Order(session_id="s1", restaurant=candidate, order_data=complete_order_data)


@pytest.mark.parametrize(
    "restaurant_text,expected",
    [
        ("Pedido confirmado!", "Perfeito, muito obrigado! Mais ou menos quanto tempo para a entrega?"),
        ("Olá, boa noite", "Olá, tudo bem? Gostaria de fazer um pedido para entrega, por favor."),
        ("O total fica em R$ 45", "Tudo certo, pode ser esse valor. Obrigado!"),
        ("Quer refrigerante?", "Pode sim, obrigado!"),
        ("Estamos verificando", "Obrigado! Aguardo mais informações."),
    ],
)
def test_template_reply(restaurant_text, expected):
    assert ClientProxyResponder.template_reply(restaurant_text) == expected


def test_proxy_falls_back_to_template(order, failing_generator):
    order.log(ConversationRole.RESTAURANT, "Pedido anotado")
    proxy = ClientProxyResponder(failing_generator, make_settings())

    reply = asyncio.run(proxy.reply(order))
    assert reply == "Perfeito, muito obrigado! Mais ou menos quanto tempo para a entrega?"


def test_proxy_sees_only_recent_turns(order):
    for i in range(8):
        role = ConversationRole.RESTAURANT if i % 2 else ConversationRole.CLIENT_PROXY
        order.log(role, f"mensagem-{i}")
    proxy = ClientProxyResponder(MockTextGenerator(latency=0), make_settings(proxy_history_turns=6))

    prompt = proxy.build_prompt(order)
    assert "mensagem-0" not in prompt
    assert "mensagem-1" not in prompt
    assert "mensagem-2" in prompt
    assert "mensagem-7" in prompt


def test_proxy_reply_is_cut_at_a_word(order):
    generator = MockTextGenerator(responses=["palavra " * 100], latency=0)
    proxy = ClientProxyResponder(generator, make_settings(proxy_reply_max_chars=50))

    reply = asyncio.run(proxy.reply(order))
    assert len(reply) <= 50
    assert reply.endswith("palavra")
