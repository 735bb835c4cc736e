"""
Keyed In-Memory Stores

Process-wide state behind small interfaces:
    - SessionStore: chat sessions by session id
    - OrderStore: orders by id, by session id and by restaurant contact id
    - Mailbox: chat notifications waiting for the front-end to poll

Every read-modify-write on a session or an order must run inside
``store.lock(key)``. Locks are per key, so two sessions never wait on
each other.

Version: 1.0.0
"""

import asyncio
import logging
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

from concierge.core.exceptions import RestaurantUnavailableError
from concierge.models import Order, OrderData, RestaurantCandidate, Session

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, created on first use."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self.get(key):
            yield

    def __len__(self) -> int:
        return len(self._locks)


class SessionStore:
    """Chat sessions keyed by the id the client channel supplies."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._locks = KeyedLocks()

    def lock(self, session_id: str):
        return self._locks.hold(session_id)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = self._sessions[session_id] = Session(id=session_id)
            logger.info(f"Session created: {session_id}")
        return session

    def __len__(self) -> int:
        return len(self._sessions)


class OrderStore:
    """
    Placed orders.

    The restaurant contact index is what routes inbound webhook messages,
    so a contact can be bound to at most one open order. Orders have no
    terminal status yet, so every stored order counts as open.
    """

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._by_session: dict[str, str] = {}
        self._by_contact: dict[str, str] = {}
        self._locks = KeyedLocks()

    def lock(self, order_id: str):
        return self._locks.hold(order_id)

    def create(
        self,
        session_id: str,
        restaurant: RestaurantCandidate,
        order_data: OrderData,
    ) -> Order:
        """
        Create and index a new order.

        Raises:
            RestaurantUnavailableError: If the restaurant contact already
                serves another open order
        """
        existing_id = self._by_contact.get(restaurant.contact_id)
        if existing_id is not None:
            raise RestaurantUnavailableError(restaurant.contact_id, existing_id)

        order = Order(session_id=session_id, restaurant=restaurant, order_data=order_data)
        self._orders[order.id] = order
        self._by_session[session_id] = order.id
        self._by_contact[restaurant.contact_id] = order.id
        logger.info(f"Order created: {order.id} ({restaurant.name}, session={session_id})")
        return order

    def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def get_by_session(self, session_id: str) -> Optional[Order]:
        order_id = self._by_session.get(session_id)
        return self._orders.get(order_id) if order_id else None

    def get_by_contact(self, contact_id: str) -> Optional[Order]:
        order_id = self._by_contact.get(contact_id)
        return self._orders.get(order_id) if order_id else None

    def __len__(self) -> int:
        return len(self._orders)


@dataclass
class MailboxMessage:
    """A chat notification produced outside a chat request."""
    text: str
    timestamp: datetime = field(default_factory=datetime.now)
    restaurants: Optional[list[dict]] = None


class Mailbox:
    """
    Per-session FIFO of chat notifications.

    ``pop`` removes what it returns, so each message is delivered at most
    once. Messages older than ``ttl`` are dropped unread.
    """

    def __init__(self, ttl: timedelta = timedelta(minutes=30)):
        self.ttl = ttl
        self._queues: dict[str, deque[MailboxMessage]] = defaultdict(deque)

    def push(
        self,
        session_id: str,
        text: str,
        restaurants: Optional[list[dict]] = None,
    ) -> MailboxMessage:
        message = MailboxMessage(text=text, restaurants=restaurants)
        self._queues[session_id].append(message)
        logger.info(f"Mailbox: queued message for {session_id}: {text[:50]}...")
        return message

    def pop(self, session_id: str, now: Optional[datetime] = None) -> Optional[MailboxMessage]:
        queue = self._queues.get(session_id)
        if not queue:
            return None

        now = now or datetime.now()
        while queue:
            message = queue.popleft()
            if now - message.timestamp <= self.ttl:
                break
            logger.info(f"Mailbox: expired message dropped for {session_id}")
        else:
            message = None

        if not queue:
            self._queues.pop(session_id, None)
        return message

    def pending(self, session_id: str) -> int:
        return len(self._queues.get(session_id, ()))
