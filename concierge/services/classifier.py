"""
Restaurant Reply Classification

Case-insensitive keyword matching over inbound restaurant messages.
The reply type is decided by priority (confirmed, preparing,
out_for_delivery, general); the flags are computed independently.
"""

import enum
from dataclasses import dataclass

CONFIRMED_KEYWORDS = [
    "pedido confirmado",
    "confirmado",
    "confirmamos",
    "pedido anotado",
    "anotado",
    "tempo de entrega",
    "chega em",
    "fica pronto em",
    "previsão de entrega",
]

PREPARING_KEYWORDS = [
    "preparando",
    "vamos preparar",
    "em preparo",
    "em produção",
    "no forno",
    "na cozinha",
]

DELIVERY_KEYWORDS = [
    "saiu para entrega",
    "saiu pra entrega",
    "saiu para a entrega",
    "a caminho",
    "motoboy",
    "entregador",
]

CLIENT_INPUT_KEYWORDS = [
    "forma de pagamento",
    "precisa de troco",
    "quanto de troco",
    "troco para quanto",
    "cartão ou dinheiro",
    "pix ou dinheiro",
    "observações",
    "sem cebola",
    "sem tomate",
    "ponto da carne",
    "bebida gelada",
    "refrigerante",
    "qual sabor",
    "qual tamanho",
    "confirma o endereço",
    "qual o complemento",
    "apartamento",
    "bloco",
    "referência",
]

QUESTION_OPENERS = ("qual", "quais", "quanto", "quantos", "quando", "como", "onde", "pode", "posso", "vai", "quer")

GREETING_KEYWORDS = ["olá", "ola", "oi", "bom dia", "boa tarde", "boa noite", "tudo bem"]


class ReplyType(str, enum.Enum):
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    GENERAL = "general"


@dataclass(frozen=True)
class Classification:
    type: ReplyType
    needs_client_input: bool
    is_question: bool
    is_greeting: bool


_TYPE_PRIORITY = [
    (ReplyType.CONFIRMED, CONFIRMED_KEYWORDS),
    (ReplyType.PREPARING, PREPARING_KEYWORDS),
    (ReplyType.OUT_FOR_DELIVERY, DELIVERY_KEYWORDS),
]


def _contains_any(text: str, keywords) -> bool:
    return any(k in text for k in keywords)


def _is_greeting(text: str) -> bool:
    words = text.replace(",", " ").replace("!", " ").split()
    for keyword in GREETING_KEYWORDS:
        if " " in keyword:
            if keyword in text:
                return True
        elif keyword in words:
            return True
    return False


def classify(text: str) -> Classification:
    """
    Classify one restaurant message.

    >>> classify("Pedido confirmado, já estamos preparando").type
    <ReplyType.CONFIRMED: 'confirmed'>
    """
    lowered = (text or "").lower().strip()

    reply_type = ReplyType.GENERAL
    for candidate, keywords in _TYPE_PRIORITY:
        if _contains_any(lowered, keywords):
            reply_type = candidate
            break

    first_word = lowered.split(" ", 1)[0].strip(",.!:") if lowered else ""
    return Classification(
        type=reply_type,
        needs_client_input=_contains_any(lowered, CLIENT_INPUT_KEYWORDS),
        is_question="?" in lowered or first_word in QUESTION_OPENERS,
        is_greeting=_is_greeting(lowered),
    )
