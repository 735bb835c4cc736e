import asyncio
import random

import pytest

from concierge.models import DiscoveryState, Provenance
from concierge.services.discovery import (
    DEFAULT_SPECIALTY,
    FALLBACK_RESTAURANTS,
    RestaurantDiscovery,
    derive_locality,
    find_contact,
    food_category,
    normalize_contact,
    template_query,
)
from concierge.services.llm import MockTextGenerator
from concierge.services.search import MockSearchService, SearchResult

from tests.conftest import make_settings

ADDRESS = "Rua das Flores, 123, Niterói"


def build(search, generator=None, **overrides):
    return RestaurantDiscovery(
        generator or MockTextGenerator(latency=0),
        search,
        make_settings(**overrides),
        random.Random(7),
    )


def scripted_search(**kwargs):
    results = [
        SearchResult("Pizzaria Alfa | iFood", "https://alfa.test", "Delivery em Niterói"),
        SearchResult("Pizzaria Beta - Niterói", "https://beta.test", "Peça pelo (21) 97777-2222"),
        SearchResult("Pizzaria Gama", "https://gama.test", "Centro de Niterói"),
        SearchResult("Pizzaria Delta", "https://delta.test", "São Paulo, (11) 95555-4444"),
    ]
    pages = {"https://alfa.test": "<html><p>WhatsApp: (21) 98888-1111</p></html>"}
    return MockSearchService(results=results, pages=pages, **kwargs)


# =============================================================================
# HELPERS
# =============================================================================

@pytest.mark.parametrize(
    "raw,expected",
    [
        ("(21) 99999-9999", "5521999999999"),
        ("21 3333-4444", "552133334444"),
        ("+55 21 99999-9999", "5521999999999"),
        ("5521999999999", "5521999999999"),
        ("992345678", None),
        ("12345678901234", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_contact(raw, expected):
    assert normalize_contact(raw) == expected


@pytest.mark.parametrize(
    "address,expected",
    [
        ("Rua das Flores, 123, Niterói", "Niterói"),
        ("Rua das Flores, 123", "Rio de Janeiro"),
        ("Rua A", "Rio de Janeiro"),
        (None, "Rio de Janeiro"),
    ],
)
def test_derive_locality(address, expected):
    assert derive_locality(address, "Rio de Janeiro") == expected


def test_template_query_uses_food_category():
    assert template_query("pizza calabresa", "Rio de Janeiro") == "pizzaria delivery whatsapp Rio de Janeiro"
    assert food_category("feijoada") == ("feijoada", DEFAULT_SPECIALTY)


def test_recognizers_run_in_order():
    text = "ligue (21) 3333-4444 ou https://wa.me/5521988887777"
    assert find_contact(text) == "5521988887777"


def test_labeled_number_wins():
    text = "https://wa.me/5521988887777 Telefone: (21) 96666-5555"
    assert find_contact(text) == "5521966665555"


def test_api_whatsapp_link():
    text = '<a href="https://api.whatsapp.com/send?phone=5521966665555&text=oi">Pedir</a>'
    assert find_contact(text) == "5521966665555"


def test_short_numbers_are_rejected():
    assert find_contact("WhatsApp: 9234-5678") is None
    assert find_contact("") is None


# =============================================================================
# DISCOVERY
# =============================================================================

def test_discovery_keeps_results_with_contacts_in_order():
    search = scripted_search()
    report = asyncio.run(build(search).run("pizza calabresa", ADDRESS))

    assert report.state == DiscoveryState.SUCCEEDED
    assert report.locality == "Niterói"
    assert report.query == "pizzaria delivery whatsapp Niterói"
    assert [c.name for c in report.candidates] == ["Pizzaria Alfa", "Pizzaria Beta"]
    assert [c.contact_id for c in report.candidates] == ["5521988881111", "5521977772222"]
    assert all(c.provenance == Provenance.SCRAPED for c in report.candidates)
    # results outside the locality are never fetched
    assert "https://delta.test" not in search.fetched


def test_randomized_metadata_stays_in_range():
    candidates = asyncio.run(build(scripted_search()).discover("pizza calabresa", ADDRESS))

    for candidate in candidates:
        assert 4.0 <= candidate.rating <= 4.9
        assert candidate.estimated_time.endswith("min")
        assert candidate.price_range.startswith("R$ ")
        assert candidate.specialty == "Pizzas tradicionais e especiais"


def test_generated_metadata_is_used_when_valid():
    search = MockSearchService(results=[
        SearchResult("Pizzaria Alfa", "https://alfa.test", "Niterói WhatsApp: (21) 98888-1111"),
    ])
    generator = MockTextGenerator(
        responses=[
            "pizzaria whatsapp Niterói",
            'Claro! {"rating": 4.7, "estimated_time": "30-40 min", '
            '"price_range": "R$ 40-70", "specialty": "Pizza napolitana"}',
        ],
        latency=0,
    )
    candidates = asyncio.run(build(search, generator).discover("pizza", ADDRESS))

    assert search.queries[0] == "pizzaria whatsapp Niterói"
    assert len(candidates) == 1
    assert candidates[0].rating == 4.7
    assert candidates[0].specialty == "Pizza napolitana"


def test_invalid_generated_metadata_is_randomized():
    search = MockSearchService(results=[
        SearchResult("Pizzaria Alfa", "https://alfa.test", "Niterói (21) 98888-1111"),
    ])
    generator = MockTextGenerator(
        responses=["", '{"rating": 9, "estimated_time": "x", "price_range": "y", "specialty": "z"}'],
        latency=0,
    )
    candidates = asyncio.run(build(search, generator).discover("pizza", ADDRESS))
    assert 4.0 <= candidates[0].rating <= 4.9


def test_never_more_than_three_and_no_duplicates():
    results = [
        SearchResult(f"Restaurante {i}", "", f"Niterói (21) 9{i}{i}{i}{i}-000{i}")
        for i in range(1, 6)
    ]
    results.insert(1, SearchResult("Restaurante 1 Filial", "", "Niterói (21) 91111-0001"))
    candidates = asyncio.run(build(MockSearchService(results=results)).discover("pizza", ADDRESS))

    assert [c.name for c in candidates] == ["Restaurante 1", "Restaurante 2", "Restaurante 3"]
    assert len({c.contact_id for c in candidates}) == 3


class BrokenPageSearch(MockSearchService):
    """Raises an unexpected error for one URL."""

    def __init__(self, broken_url, **kwargs):
        super().__init__(**kwargs)
        self.broken_url = broken_url

    async def fetch_page(self, url):
        if url == self.broken_url:
            raise ValueError(f"bad url {url}")
        return await super().fetch_page(url)


class BrokenGenerator(MockTextGenerator):
    """Fails every prompt with an error outside the generator contract."""

    async def generate(self, prompt):
        raise IndexError("list index out of range")


def test_one_failing_result_keeps_the_others():
    search = BrokenPageSearch(
        "https://quebrada.test",
        results=[
            SearchResult("Pizzaria Quebrada", "https://quebrada.test", "Niterói"),
            SearchResult("Pizzaria Boa", "https://boa.test", "Niterói"),
        ],
        pages={"https://boa.test": "WhatsApp: (21) 99999-1111"},
    )
    report = asyncio.run(build(search).run("pizza", ADDRESS))

    assert report.state == DiscoveryState.SUCCEEDED
    assert [c.name for c in report.candidates] == ["Pizzaria Boa"]
    assert report.candidates[0].contact_id == "5521999991111"


def test_unexpected_generator_errors_degrade_to_templates():
    search = MockSearchService(results=[
        SearchResult("Pizzaria Alfa", "", "Niterói WhatsApp: (21) 98888-1111"),
    ])
    report = asyncio.run(build(search, BrokenGenerator(latency=0)).run("pizza", ADDRESS))

    assert report.state == DiscoveryState.SUCCEEDED
    assert report.query == "pizzaria delivery whatsapp Niterói"
    assert 4.0 <= report.candidates[0].rating <= 4.9
    assert report.candidates[0].specialty == "Pizzas tradicionais e especiais"


def test_scrape_used_when_api_unavailable():
    search = scripted_search(api_available=False)
    candidates = asyncio.run(build(search).discover("pizza", ADDRESS))

    assert len(search.queries) == 2
    assert len(candidates) == 2


def test_fallback_list_when_everything_fails(failing_search, failing_generator):
    report = asyncio.run(build(failing_search, failing_generator).run("pizza", ADDRESS))

    assert report.state == DiscoveryState.FALLBACK
    assert [c.name for c in report.candidates] == [c.name for c in FALLBACK_RESTAURANTS]
    assert all(c.provenance == Provenance.FALLBACK for c in report.candidates)

    # callers get copies
    report.candidates[0].rating = 1.0
    assert FALLBACK_RESTAURANTS[0].rating == 4.5


def test_fallback_when_no_result_has_a_contact():
    search = MockSearchService(results=[SearchResult("Pizzaria Sem Número", "", "Niterói, ligue já")])
    report = asyncio.run(build(search).run("pizza", ADDRESS))
    assert report.state == DiscoveryState.FALLBACK
    assert len(report.candidates) == 3


def test_generated_candidates_before_fallback(failing_search):
    generator = MockTextGenerator(
        responses=[
            "",
            '{"restaurants": [{"name": "Pizzaria Gerada", "whatsapp": "(21) 94444-3333", '
            '"specialty": "Pizza", "estimated_time": "30-40 min", "price_range": "R$ 30-60", "rating": 4.3}]}',
        ],
        latency=0,
    )
    report = asyncio.run(build(failing_search, generator, discovery_allow_generated=True).run("pizza", ADDRESS))

    assert report.state == DiscoveryState.SUCCEEDED
    assert report.candidates[0].name == "Pizzaria Gerada"
    assert report.candidates[0].contact_id == "5521944443333"
    assert report.candidates[0].provenance == Provenance.GENERATED
