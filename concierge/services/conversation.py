"""
Conversation Engines

Two voices built on the text generator:
    - ConversationEngine talks to the end user in the chat
    - ClientProxyResponder talks to the restaurant on the user's behalf

Both own their length ceilings. The chat engine surfaces generation
failures (the chat endpoint answers 500) unless
CHAT_FALLBACK_ON_GENERATION_ERROR is set; the proxy always degrades to a
template.
"""

import logging
from typing import Optional

from concierge.core.config import Settings, get_settings
from concierge.core.exceptions import GenerationError
from concierge.models import (
    NO_CHANGE,
    ChatRole,
    ConversationRole,
    Order,
    OrderData,
    PaymentMethod,
    Session,
    Stage,
)
from concierge.services.classifier import classify
from concierge.services.llm import BaseTextGenerator

logger = logging.getLogger(__name__)

PERSONA_PROMPT = """\
Você é o concierge de delivery: um assistente que faz pedidos de comida por \
WhatsApp em nome do cliente. Seja atencioso, direto e simpático, como um \
concierge de hotel.

Para fazer o pedido você precisa de: o que o cliente quer comer, o endereço \
de entrega (rua, número, bairro, cidade), o WhatsApp do cliente com DDD e a \
forma de pagamento (dinheiro, cartão ou Pix). Se for dinheiro, pergunte se \
precisa de troco e para quanto.

Regras:
- Fale sempre em português e mantenha o foco em comida e delivery.
- Pergunte só o que ainda falta, no máximo duas coisas por vez.
- Nunca invente restaurantes, preços ou prazos.
- Responda em poucas frases.
"""

STAGE_HINTS = {
    Stage.INITIAL: "Colete as informações que faltam.",
    Stage.SEARCHING_RESTAURANT: "Você já tem tudo e está buscando restaurantes; avise que as opções chegam em instantes.",
    Stage.RESTAURANTS_PRESENTED: "As opções de restaurante já foram enviadas; peça para o cliente escolher uma pelo número.",
    Stage.AWAITING_SELECTION: "Peça para o cliente escolher um dos restaurantes apresentados pelo número.",
    Stage.ORDER_SENT: "O pedido já foi enviado ao restaurante; tranquilize o cliente e diga que avisará sobre cada novidade.",
}

CLIENT_PROXY_PROMPT = """\
Você é um cliente fazendo um pedido de delivery pelo WhatsApp. Responda ao \
restaurante de forma natural, educada e objetiva, em uma ou duas frases. \
Use apenas os dados do pedido abaixo. Se perguntarem algo que você não sabe, \
diga que vai verificar e responde em seguida.
"""

MISSING_FIELD_PROMPTS = {
    "food": "O que você gostaria de pedir hoje? 🍕",
    "address": "Qual o endereço completo para entrega (rua, número, bairro e cidade)? 📍",
    "contact_id": "Qual o seu WhatsApp com DDD, para eu te manter atualizado? 📱",
    "payment_method": "Como prefere pagar: dinheiro, cartão ou Pix? 💳",
    "change_amount": "Vai precisar de troco? Se sim, para quanto? 💵",
}

STAGE_FALLBACKS = {
    Stage.SEARCHING_RESTAURANT: "Perfeito! Já estou buscando os melhores restaurantes da sua região. 🔎",
    Stage.RESTAURANTS_PRESENTED: "Qual restaurante você prefere? Responda com o número da opção.",
    Stage.AWAITING_SELECTION: "Qual restaurante você prefere? Responda com o número da opção.",
    Stage.ORDER_SENT: "Seu pedido já está com o restaurante. Te aviso assim que houver novidades! 🛵",
}

CONFIRMATION_WORDS = ("confirmado", "anotado", "certo", "ok", "beleza", "perfeito", "combinado")
PRICE_WORDS = ("r$", "valor", "preço", "preco", "total", "fica em", "custa")

_SENTENCE_ENDS = (". ", "! ", "? ", ".\n", "!\n", "?\n", "\n\n")


def truncate_at_sentence(text: str, limit: int) -> str:
    """
    Fit ``text`` under ``limit`` characters.

    Cuts after the first sentence that ends inside the limit; when none
    does, cuts hard and appends an ellipsis.
    """
    text = text.strip()
    if len(text) <= limit:
        return text

    window = text[:limit]
    ends = [i for i in (window.find(end) for end in _SENTENCE_ENDS) if i > 0]
    if ends:
        return window[:min(ends) + 1].rstrip()
    if window[-1] in ".!?":
        return window
    return window[:limit - 1].rstrip() + "…"


def truncate_at_word(text: str, limit: int) -> str:
    """Fit ``text`` under ``limit`` characters without splitting a word."""
    text = text.strip()
    if len(text) <= limit:
        return text
    window = text[:limit]
    cut = window.rfind(" ")
    if cut <= 0:
        return window
    return window[:cut].rstrip(" ,;:-")


def describe_order(order_data: OrderData) -> str:
    lines = [
        f"- Comida: {order_data.food or 'a definir'}",
        f"- Endereço: {order_data.address or 'a definir'}",
        f"- WhatsApp: {order_data.contact_id or 'a definir'}",
        f"- Pagamento: {order_data.payment_method.label}",
    ]
    if order_data.payment_method == PaymentMethod.CASH:
        if order_data.change_amount == NO_CHANGE:
            lines.append("- Troco: não precisa")
        elif order_data.change_amount:
            lines.append(f"- Troco para: R$ {order_data.change_amount}")
    if order_data.notes:
        lines.append(f"- Observações: {order_data.notes}")
    return "\n".join(lines)


class ConversationEngine:
    """Produces the next chat reply for a session."""

    def __init__(self, generator: BaseTextGenerator, settings: Optional[Settings] = None):
        self.generator = generator
        self.settings = settings or get_settings()

    def build_prompt(self, session: Session) -> str:
        history = "\n".join(
            f"{'Cliente' if turn.role == ChatRole.USER else 'Concierge'}: {turn.text}"
            for turn in session.turns
        )
        missing = session.order_data.missing_fields()
        return (
            f"{PERSONA_PROMPT}\n"
            f"Dados do pedido até agora:\n{describe_order(session.order_data)}\n"
            f"Ainda falta: {', '.join(missing) if missing else 'nada'}\n"
            f"Etapa: {session.stage.value}. {STAGE_HINTS[session.stage]}\n\n"
            f"Conversa:\n{history}\nConcierge:"
        )

    async def reply(self, session: Session) -> str:
        """
        Generate the next reply.

        Raises:
            GenerationError: If generation fails and the template fallback
                is disabled
        """
        try:
            text = await self.generator.generate(self.build_prompt(session))
            if not text.strip():
                raise GenerationError("Empty reply", provider=self.generator.provider_name)
        except GenerationError as e:
            if not self.settings.chat_fallback_on_generation_error:
                raise
            logger.warning(f"Chat generation failed for {session.id}, using template: {e}")
            return self.fallback_reply(session)

        return truncate_at_sentence(text, self.settings.chat_reply_max_chars)

    @staticmethod
    def fallback_reply(session: Session) -> str:
        missing = session.order_data.missing_fields()
        if session.stage == Stage.INITIAL and missing:
            return MISSING_FIELD_PROMPTS[missing[0]]
        return STAGE_FALLBACKS.get(session.stage, STAGE_FALLBACKS[Stage.SEARCHING_RESTAURANT])


class ClientProxyResponder:
    """Replies to a restaurant as if it were the client. Never raises."""

    def __init__(self, generator: BaseTextGenerator, settings: Optional[Settings] = None):
        self.generator = generator
        self.settings = settings or get_settings()

    def build_prompt(self, order: Order) -> str:
        recent = order.conversation[-self.settings.proxy_history_turns:]
        history = "\n".join(
            f"{'Restaurante' if turn.role == ConversationRole.RESTAURANT else 'Eu'}: {turn.text}"
            for turn in recent
        )
        return (
            f"{CLIENT_PROXY_PROMPT}\n"
            f"Meus dados do pedido:\n{describe_order(order.order_data)}\n\n"
            f"Conversa com o restaurante:\n{history}\nEu:"
        )

    async def reply(self, order: Order) -> str:
        try:
            text = await self.generator.generate(self.build_prompt(order))
            if text.strip():
                return truncate_at_word(text, self.settings.proxy_reply_max_chars)
            logger.warning(f"Empty proxy reply for {order.id}, using template")
        except GenerationError as e:
            logger.warning(f"Proxy generation failed for {order.id}, using template: {e}")
        return self.template_reply(self._last_restaurant_text(order))

    @staticmethod
    def _last_restaurant_text(order: Order) -> str:
        for turn in reversed(order.conversation):
            if turn.role == ConversationRole.RESTAURANT:
                return turn.text
        return ""

    @staticmethod
    def template_reply(restaurant_text: str) -> str:
        lowered = restaurant_text.lower()
        classification = classify(restaurant_text)

        if any(word in lowered for word in CONFIRMATION_WORDS):
            return "Perfeito, muito obrigado! Mais ou menos quanto tempo para a entrega?"
        if classification.is_greeting:
            return "Olá, tudo bem? Gostaria de fazer um pedido para entrega, por favor."
        if any(word in lowered for word in PRICE_WORDS):
            return "Tudo certo, pode ser esse valor. Obrigado!"
        if classification.is_question:
            return "Pode sim, obrigado!"
        return "Obrigado! Aguardo mais informações."
