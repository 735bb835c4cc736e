import pytest

from concierge.services.classifier import ReplyType, classify


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Pedido confirmado! Chega em 40 minutos", ReplyType.CONFIRMED),
        ("Anotado, obrigado", ReplyType.CONFIRMED),
        ("Já estamos preparando sua pizza", ReplyType.PREPARING),
        ("Está no forno", ReplyType.PREPARING),
        ("Saiu para entrega!", ReplyType.OUT_FOR_DELIVERY),
        ("O motoboy já está a caminho", ReplyType.OUT_FOR_DELIVERY),
        ("Obrigado pela preferência", ReplyType.GENERAL),
        ("", ReplyType.GENERAL),
    ],
)
def test_reply_type(text, expected):
    assert classify(text).type == expected


def test_confirmed_takes_priority_over_preparing():
    assert classify("Pedido confirmado, já estamos preparando").type == ReplyType.CONFIRMED


def test_matching_ignores_case():
    assert classify("PEDIDO CONFIRMADO").type == ReplyType.CONFIRMED


def test_needs_client_input():
    result = classify("Qual a forma de pagamento?")
    assert result.needs_client_input
    assert result.is_question
    assert result.type == ReplyType.GENERAL


def test_flags_are_independent_of_type():
    result = classify("Pedido confirmado! Precisa de troco?")
    assert result.type == ReplyType.CONFIRMED
    assert result.needs_client_input


def test_question_by_opener_without_question_mark():
    result = classify("quando posso mandar o motoboy")
    assert result.is_question
    assert not result.needs_client_input


def test_greeting_detection():
    assert classify("Olá, boa noite!").is_greeting
    assert classify("oi").is_greeting
    assert not classify("oito minutos").is_greeting
