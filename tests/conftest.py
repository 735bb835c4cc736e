import asyncio
from datetime import datetime, timedelta

import pytest

from concierge.core.config import Settings
from concierge.models import OrderData, PaymentMethod, RestaurantCandidate
from concierge.services.llm import MockTextGenerator
from concierge.services.messaging import MockMessagingService
from concierge.services.orchestrator import Orchestrator
from concierge.services.search import MockSearchService


def make_settings(**overrides) -> Settings:
    """Development settings without delays, retries backoff or random failures."""
    values = dict(
        env_mode="development",
        retry_backoff_seconds=0.0,
        request_timeout_seconds=5.0,
        dispatch_delay_min_seconds=0.0,
        dispatch_delay_max_seconds=0.0,
        proxy_reply_delay_min_seconds=0.0,
        proxy_reply_delay_max_seconds=0.0,
        mock_failure_rate=0.0,
        app_base_url="https://concierge.test",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClock:
    """Virtual time: ``sleep`` advances ``now`` instantly."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)
        await asyncio.sleep(0)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def generator():
    return MockTextGenerator(latency=0)


@pytest.fixture
def failing_generator():
    return MockTextGenerator(failure_rate=1.0, latency=0)


@pytest.fixture
def messaging(clock):
    return MockMessagingService(failure_rate=0.0, latency=0, clock=clock)


@pytest.fixture
def failing_search():
    return MockSearchService(fail_all=True)


@pytest.fixture
def complete_order_data():
    return OrderData(
        food="quero uma pizza calabresa grande",
        address="Rua das Flores, 123",
        contact_id="21999999999",
        payment_method=PaymentMethod.PIX,
    )


@pytest.fixture
def candidate():
    return RestaurantCandidate(
        name="Pizzaria Teste",
        contact_id="5521911112222",
        specialty="Pizza",
        estimated_time="30-40 min",
        price_range="R$ 30-60",
        rating=4.6,
    )


@pytest.fixture
def make_orchestrator(clock):
    """Orchestrator over mock collaborators; delays run on the fake clock."""

    def factory(generator=None, search=None, messaging=None, **setting_overrides):
        return Orchestrator(
            generator=generator or MockTextGenerator(latency=0),
            search=search or MockSearchService(fail_all=True),
            messaging=messaging or MockMessagingService(failure_rate=0.0, latency=0, clock=clock),
            settings=make_settings(**setting_overrides),
            sleep=clock.sleep,
        )

    return factory
