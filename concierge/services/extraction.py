"""
Order Field Extraction

Turns free chat text into OrderData, one message at a time.

Rules:
    - A field, once set, is never overwritten (first write wins), so a
      later ambiguous mention cannot corrupt an earlier answer.
    - Food and address keep the user's own wording: the whole latest
      message is stored, not just the matched keyword.
    - Nothing here raises. No match leaves the field unset.

Usage:
    data = extract(session.order_data, session.user_text(), latest)
"""

import re
from typing import Optional

from concierge.models import NO_CHANGE, OrderData, PaymentMethod

FOOD_KEYWORDS = [
    "pizza", "pizzas", "calabresa", "margherita", "hamburguer", "hambúrguer",
    "hamburger", "burger", "lanche", "lanches", "sanduíche", "sanduiche",
    "hot dog", "cachorro-quente", "sushi", "temaki", "sashimi", "japonês",
    "japonesa", "chinês", "chinesa", "yakisoba", "italiana", "massa",
    "macarrão", "lasanha", "esfiha", "esfirra", "árabe", "kebab", "açaí",
    "churrasco", "espetinho", "marmita", "marmitex", "pastel", "coxinha",
    "salgado", "salgados", "frango", "feijoada", "comida", "prato",
    "brasileira", "mexicana", "taco", "burrito", "poke", "tapioca",
    "sobremesa", "bolo", "sorvete", "peixe", "frutos do mar", "vegano",
    "vegetariano", "salada",
]

_FOOD_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(k) for k in FOOD_KEYWORDS) + r")(?!\w)",
    re.IGNORECASE,
)

# Street-type word, then a house number somewhere in the same line
_ADDRESS_RE = re.compile(
    r"(?<!\w)(?:rua|r\.|avenida|av\.?|travessa|tv\.|alameda|al\.|estrada|"
    r"rodovia|praça|praca|largo|vila|quadra|qd\.)(?!\w)[^\n]*?\d+",
    re.IGNORECASE,
)

_CONTACT_RES = [
    re.compile(r"(?<!\d)(?:55)?\d{10,11}(?!\d)"),
    re.compile(r"(?<!\d)\(?\d{2}\)?\s*9?\d{4}[-\s]?\d{4}(?!\d)"),
]

PAYMENT_KEYWORDS = [
    (PaymentMethod.CASH, ["dinheiro", "espécie", "especie", "cash", "em mãos"]),
    (PaymentMethod.CARD, ["cartão", "cartao", "crédito", "credito", "débito",
                          "debito", "maquininha"]),
    (PaymentMethod.PIX, ["pix"]),
]

_NO_CHANGE_RE = re.compile(
    r"sem troco|não preciso de troco|nao preciso de troco|não precisa de troco|"
    r"nao precisa de troco|troco não|dinheiro trocado|valor exato",
    re.IGNORECASE,
)

_CHANGE_RES = [
    re.compile(r"r\$\s*(\d+(?:[.,]\d{1,2})?)", re.IGNORECASE),
    re.compile(r"(\d+(?:[.,]\d{1,2})?)\s*(?:reais|real|conto|contos)(?!\w)", re.IGNORECASE),
    re.compile(r"troco\s+(?:pra|para|de)\s+(\d+(?:[.,]\d{1,2})?)", re.IGNORECASE),
]

_NOTES_RES = [
    re.compile(r"(?:observaç(?:ão|ões)|observac(?:ao|oes)|obs)\s*:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"((?:sem|com pouco|com bastante|bem passad[ao]|mal passad[ao])\s+"
               r"(?!troco)[a-zà-ú]+(?:\s+(?:e|nem)\s+[a-zà-ú]+)*)", re.IGNORECASE),
]


def _contains_word(text: str, word: str) -> bool:
    return re.search(r"(?<!\w)" + re.escape(word) + r"(?!\w)", text, re.IGNORECASE) is not None


def detect_food(latest: str) -> Optional[str]:
    if _FOOD_RE.search(latest):
        return latest.strip()
    return None


def detect_address(latest: str) -> Optional[str]:
    if _ADDRESS_RE.search(latest):
        return latest.strip()
    return None


def detect_contact(*texts: str) -> Optional[str]:
    """First phone-looking run in the first text that has one, digits only."""
    for text in texts:
        for pattern in _CONTACT_RES:
            match = pattern.search(text)
            if match:
                digits = re.sub(r"\D", "", match.group(0))
                if len(digits) >= 10:
                    return digits
    return None


def detect_payment(*texts: str) -> PaymentMethod:
    """Cash, then card, then pix. The first text with any match decides."""
    for text in texts:
        for method, keywords in PAYMENT_KEYWORDS:
            if any(_contains_word(text, k) for k in keywords):
                return method
    return PaymentMethod.UNSET


def detect_change(latest: str) -> Optional[str]:
    if _NO_CHANGE_RE.search(latest):
        return NO_CHANGE
    for pattern in _CHANGE_RES:
        match = pattern.search(latest)
        if match:
            return match.group(1).replace(",", ".")
    return None


def detect_notes(latest: str) -> Optional[str]:
    for pattern in _NOTES_RES:
        match = pattern.search(latest)
        if match:
            return match.group(1).strip().rstrip(".!")
    return None


def extract(order_data: OrderData, full_history: str, latest: str) -> OrderData:
    """
    Fill unset fields of ``order_data`` from the chat text.

    Args:
        order_data: Current fields; returned unchanged where already set
        full_history: Every user message so far, used as a second source
            for contact and payment
        latest: The message being processed

    Returns:
        A new OrderData (or the same one when nothing new was found)
    """
    latest = latest or ""
    full_history = full_history or ""
    changes = {}

    if not order_data.food:
        food = detect_food(latest)
        if food:
            changes["food"] = food

    if not order_data.address:
        address = detect_address(latest)
        if address:
            changes["address"] = address

    if not order_data.contact_id:
        contact = detect_contact(latest, full_history)
        if contact:
            changes["contact_id"] = contact

    payment = order_data.payment_method
    if payment == PaymentMethod.UNSET:
        payment = detect_payment(latest, full_history)
        if payment != PaymentMethod.UNSET:
            changes["payment_method"] = payment

    if payment == PaymentMethod.CASH and order_data.change_amount is None:
        change = detect_change(latest)
        if change is not None:
            changes["change_amount"] = change

    if not order_data.notes:
        notes = detect_notes(latest)
        if notes:
            changes["notes"] = notes

    if not changes:
        return order_data
    return order_data.with_changes(**changes)
