"""
Restaurant Discovery

Finds up to three restaurants with a reachable WhatsApp number for a
food description and a delivery address.

Pipeline:
    1. Locality from the address (or the default city)
    2. Search query, generated or from a template
    3. Structured search API, else a scraped results page
    4. Keep results that mention the locality
    5. Fetch each page (at most DISCOVERY_MAX_RESULTS) and look for a number
    6. Drop results without a contact id
    7. Display metadata, generated or randomized within fixed ranges
    8. First three in discovery order

``discover`` never raises. When nothing survives the user still gets the
fixed fallback list.

Usage:
    discovery = RestaurantDiscovery(get_text_generator(), get_search_service())
    candidates = await discovery.discover("pizza calabresa", "Rua A, 10, Niterói")
"""

import asyncio
import html
import logging
import random
import re
from dataclasses import dataclass, field, replace
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from concierge.core.config import Settings, get_settings
from concierge.core.exceptions import GenerationError, SearchError
from concierge.models import DiscoveryState, Provenance, RestaurantCandidate
from concierge.services.llm import BaseTextGenerator, parse_json_object
from concierge.services.search import BaseSearchService, SearchResult

logger = logging.getLogger(__name__)

# Substring of the food text -> (search category, specialty shown to the user)
FOOD_CATEGORIES = [
    ("pizza", "pizzaria", "Pizzas tradicionais e especiais"),
    ("calabresa", "pizzaria", "Pizzas tradicionais e especiais"),
    ("hambúrguer", "hamburgueria", "Hambúrgueres artesanais"),
    ("hamburguer", "hamburgueria", "Hambúrgueres artesanais"),
    ("burger", "hamburgueria", "Hambúrgueres artesanais"),
    ("lanche", "lanchonete", "Lanches e sanduíches"),
    ("sushi", "restaurante japonês", "Culinária japonesa"),
    ("temaki", "restaurante japonês", "Culinária japonesa"),
    ("japon", "restaurante japonês", "Culinária japonesa"),
    ("chin", "restaurante chinês", "Culinária chinesa"),
    ("yakisoba", "restaurante chinês", "Culinária chinesa"),
    ("esfiha", "restaurante árabe", "Esfihas e culinária árabe"),
    ("árabe", "restaurante árabe", "Esfihas e culinária árabe"),
    ("massa", "cantina italiana", "Massas artesanais"),
    ("lasanha", "cantina italiana", "Massas artesanais"),
    ("italian", "cantina italiana", "Massas artesanais"),
    ("açaí", "açaiteria", "Açaí e sobremesas"),
    ("churrasco", "churrascaria", "Carnes na brasa"),
    ("marmita", "restaurante marmitex", "Comida caseira"),
    ("pastel", "pastelaria", "Pastéis e salgados"),
    ("mexican", "restaurante mexicano", "Culinária mexicana"),
]

DEFAULT_SPECIALTY = "Culinária variada"

# Contact-channel keyword of the query template
CHANNEL_KEYWORD = "whatsapp"

STREET_MARKERS = (
    "rua ", "r. ", "avenida ", "av. ", "av ", "travessa ", "alameda ", "estrada ",
    "rodovia ", "praça ", "praca ", "largo ", "quadra ",
)

FALLBACK_RESTAURANTS = [
    RestaurantCandidate(
        name="Pizzaria Dom José",
        contact_id="5524999999999",
        specialty="Pizza tradicional",
        estimated_time="40-50 min",
        price_range="R$ 35-70",
        rating=4.5,
        provenance=Provenance.FALLBACK,
    ),
    RestaurantCandidate(
        name="Pizza Express",
        contact_id="5524888888888",
        specialty="Pizza gourmet",
        estimated_time="35-45 min",
        price_range="R$ 40-80",
        rating=4.2,
        provenance=Provenance.FALLBACK,
    ),
    RestaurantCandidate(
        name="Cantina Bella Napoli",
        contact_id="5524777777777",
        specialty="Massas e pizzas",
        estimated_time="45-55 min",
        price_range="R$ 30-65",
        rating=4.4,
        provenance=Provenance.FALLBACK,
    ),
]

_DIGIT_RUN = r"\+?\(?\d[\d\s().-]{8,18}\d"

# Ordered: the first recognizer with a plausible number wins
PHONE_RECOGNIZERS = [
    ("label", re.compile(
        r"(?<!\w)(?:whats\s?app|wpp|zap|contato|telefone|tel\.?|fone|celular)\s*[:\-]?\s*(" + _DIGIT_RUN + ")",
        re.IGNORECASE,
    )),
    ("wa.me", re.compile(r"wa\.me/\+?(\d{10,15})", re.IGNORECASE)),
    ("api.whatsapp", re.compile(
        r"api\.whatsapp\.com/send/?\?(?:[^\"'\s]*?&)?phone=\+?(\d{10,15})",
        re.IGNORECASE,
    )),
    ("generic", re.compile(r"(?<!\d)(\(?\d{2}\)?\s*9?\d{4}[-\s]?\d{4})(?!\d)")),
]

_TAG_RE = re.compile(r"<[^>]+>")
_HREF_RE = re.compile(r'href="([^"]+)"', re.IGNORECASE)


def normalize_contact(raw: Optional[str], country_code: str = "55") -> Optional[str]:
    """
    Digits-only, country-prefixed WhatsApp id, or None when implausible.

    >>> normalize_contact("(21) 99999-9999")
    '5521999999999'
    >>> normalize_contact("992345678") is None
    True
    """
    if not raw:
        return None
    digits = re.sub(r"\D", "", raw)
    if len(digits) in (10, 11):
        return country_code + digits
    if len(digits) in (12, 13) and digits.startswith(country_code):
        return digits
    return None


def derive_locality(address: Optional[str], default_city: str) -> str:
    """Last comma-separated segment when it names a place, else the default city."""
    if not address:
        return default_city
    segment = address.strip().rstrip(".").split(",")[-1].strip()
    segment = segment.split(" - ")[0].strip()
    lowered = segment.lower() + " "
    if not re.search(r"[a-zA-ZÀ-ÿ]", segment) or lowered.startswith(STREET_MARKERS):
        return default_city
    return segment


def food_category(food: Optional[str]) -> tuple[str, str]:
    """(search category, specialty) for a food description."""
    text = (food or "").lower()
    for needle, category, specialty in FOOD_CATEGORIES:
        if needle in text:
            return category, specialty
    return (food or "").strip(), DEFAULT_SPECIALTY


def template_query(food: Optional[str], locality: str) -> str:
    category, _ = food_category(food)
    return f"{category} delivery {CHANNEL_KEYWORD} {locality}"


def page_text(page: str) -> str:
    """Visible text of a page plus its link targets, entity-decoded."""
    links = " ".join(_HREF_RE.findall(page))
    return html.unescape(links + "\n" + _TAG_RE.sub(" ", page))


def find_contact(text: str, country_code: str = "55") -> Optional[str]:
    """Run the recognizers in order over ``text``."""
    if not text:
        return None
    for name, pattern in PHONE_RECOGNIZERS:
        for match in pattern.finditer(text):
            digits = re.sub(r"\D", "", match.group(1))
            if len(digits) > 13:
                # A label followed by two numbers; keep the first
                inner = PHONE_RECOGNIZERS[-1][1].search(match.group(1))
                digits = re.sub(r"\D", "", inner.group(1)) if inner else ""
            if len(digits) < 10:
                continue
            contact = normalize_contact(digits, country_code)
            if contact:
                logger.debug(f"Contact found by '{name}' recognizer: {contact}")
                return contact
    return None


def _clean_name(title: str) -> str:
    """Search titles often carry a site suffix ("Pizzaria X | iFood")."""
    name = re.split(r"\s[|\-–]\s", title, maxsplit=1)[0].strip()
    return name or title.strip()


class CandidateMetadata(BaseModel):
    """Display metadata produced by the text generator."""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    rating: float = Field(ge=1.0, le=5.0)
    estimated_time: str = Field(min_length=3, max_length=30)
    price_range: str = Field(min_length=3, max_length=30)
    specialty: str = Field(min_length=3, max_length=80)


class GeneratedRestaurant(CandidateMetadata):
    name: str = Field(min_length=2, max_length=80)
    whatsapp: str = Field(min_length=10, max_length=20)


class GeneratedRestaurantList(BaseModel):
    restaurants: list[GeneratedRestaurant] = Field(min_length=1)


@dataclass
class DiscoveryReport:
    """Candidates plus how they were obtained."""
    candidates: list[RestaurantCandidate]
    state: DiscoveryState
    query: Optional[str] = None
    locality: Optional[str] = None
    notes: list[str] = field(default_factory=list)


class RestaurantDiscovery:
    """
    Restaurant search over the text and search collaborators.

    Args:
        generator: Builds queries and metadata
        search: Search API, results scraping and page fetch
        settings: Limits, default city and feature flags
        rng: Source of the randomized metadata
    """

    def __init__(
        self,
        generator: BaseTextGenerator,
        search: BaseSearchService,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.generator = generator
        self.search = search
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()

    async def discover(self, food: Optional[str], address: Optional[str]) -> list[RestaurantCandidate]:
        """At most three candidates, each with a contact id. Never raises."""
        report = await self.run(food, address)
        return report.candidates

    async def run(self, food: Optional[str], address: Optional[str]) -> DiscoveryReport:
        locality = derive_locality(address, self.settings.default_city)
        limit = self.settings.discovery_max_candidates

        try:
            query = await self._build_query(food, address, locality)
            results = await self._search(query)
            candidates = await self._collect(food, results, locality)
        except Exception as e:
            logger.exception(f"Discovery failed for '{food}' in {locality}: {e}")
            query, candidates = None, []

        if candidates:
            logger.info(f"Discovery found {len(candidates)} restaurant(s) in {locality}")
            return DiscoveryReport(candidates[:limit], DiscoveryState.SUCCEEDED, query, locality)

        if self.settings.discovery_allow_generated:
            generated = await self._generate_candidates(food, locality)
            if generated:
                logger.info(f"Discovery using {len(generated)} generated restaurant(s)")
                return DiscoveryReport(generated[:limit], DiscoveryState.SUCCEEDED, query, locality)

        logger.warning(f"Discovery found nothing usable in {locality}; using fallback list")
        fallback = [replace(c) for c in FALLBACK_RESTAURANTS[:limit]]
        return DiscoveryReport(fallback, DiscoveryState.FALLBACK, query, locality)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _build_query(self, food: Optional[str], address: Optional[str], locality: str) -> str:
        prompt = (
            "Gere uma consulta de busca curta (no máximo 10 palavras) para encontrar "
            "restaurantes com delivery e WhatsApp.\n"
            f"Comida: {food}\nEndereço: {address}\nCidade: {locality}\n"
            "Responda apenas com a consulta, sem aspas."
        )
        try:
            generated = await self.generator.generate(prompt)
        except Exception as e:
            logger.warning(f"Query generation failed, using template: {e!r}")
            generated = ""

        lines = (generated or "").strip().splitlines()
        query = lines[0].strip(" \"'") if lines else ""
        if not query or len(query) > 120:
            query = template_query(food, locality)
        logger.info(f"Discovery query: {query}")
        return query

    async def _search(self, query: str) -> list[SearchResult]:
        try:
            results = await self.search.search(query)
            if results:
                return results
            logger.info("Search API returned no results; scraping results page")
        except SearchError as e:
            logger.warning(f"Search API unavailable ({e}); scraping results page")

        try:
            return await self.search.scrape_search(query)
        except SearchError as e:
            logger.error(f"Results page scrape failed: {e}")
            return []

    async def _collect(
        self,
        food: Optional[str],
        results: list[SearchResult],
        locality: str,
    ) -> list[RestaurantCandidate]:
        relevant = [r for r in results if r.mentions(locality)]
        logger.info(f"{len(relevant)}/{len(results)} result(s) mention {locality}")
        relevant = relevant[:self.settings.discovery_max_results]
        if not relevant:
            return []

        contacts = await asyncio.gather(
            *(self._resolve_contact(r) for r in relevant), return_exceptions=True
        )

        seen = set()
        candidates = []
        for result, contact in zip(relevant, contacts):
            if isinstance(contact, Exception):
                logger.warning(f"Contact lookup failed for {result.title!r}: {contact!r}")
                continue
            if contact is None or contact in seen:
                continue
            seen.add(contact)
            candidates.append(RestaurantCandidate(
                name=_clean_name(result.title),
                contact_id=contact,
                provenance=Provenance.SCRAPED,
                source_url=result.link or None,
            ))
            if len(candidates) >= self.settings.discovery_max_candidates:
                break

        metadata = await asyncio.gather(
            *(self._metadata(c, food) for c in candidates), return_exceptions=True
        )
        for candidate, item in zip(candidates, metadata):
            if isinstance(item, Exception):
                logger.warning(f"Metadata failed for {candidate.name}, randomizing: {item!r}")
                item = self._random_metadata(food)
            candidate.rating = round(item.rating, 1)
            candidate.estimated_time = item.estimated_time
            candidate.price_range = item.price_range
            candidate.specialty = item.specialty
        return candidates

    async def _resolve_contact(self, result: SearchResult) -> Optional[str]:
        country_code = self.settings.country_code
        if result.link:
            try:
                page = await self.search.fetch_page(result.link)
                contact = find_contact(page_text(page), country_code)
                if contact:
                    return contact
            except SearchError as e:
                logger.info(f"Page fetch failed for {result.link}, scanning snippet: {e}")
        return find_contact(f"{result.title}\n{result.snippet}", country_code)

    async def _metadata(self, candidate: RestaurantCandidate, food: Optional[str]) -> CandidateMetadata:
        prompt = (
            "Responda somente com um objeto JSON com as chaves rating (número de 3.5 a 5.0), "
            "estimated_time (ex.: \"30-40 min\"), price_range (ex.: \"R$ 30-60\") e specialty "
            "(até 6 palavras).\n"
            f"Restaurante: {candidate.name}\nComida pedida: {food}\n"
        )
        try:
            text = await self.generator.generate(prompt)
            metadata = parse_json_object(text, CandidateMetadata, self.generator.provider_name)
        except GenerationError as e:
            logger.info(f"Metadata generation failed for {candidate.name}, randomizing: {e}")
            metadata = self._random_metadata(food)
        return metadata

    def _random_metadata(self, food: Optional[str]) -> CandidateMetadata:
        start = self.rng.choice([25, 30, 35, 40, 45])
        low = self.rng.choice([25, 30, 35, 40])
        _, specialty = food_category(food)
        return CandidateMetadata(
            rating=round(self.rng.uniform(4.0, 4.9), 1),
            estimated_time=f"{start}-{start + 10} min",
            price_range=f"R$ {low}-{low + 30}",
            specialty=specialty,
        )

    async def _generate_candidates(self, food: Optional[str], locality: str) -> list[RestaurantCandidate]:
        prompt = (
            "Responda somente com JSON no formato {\"restaurants\": [{\"name\", \"whatsapp\", "
            "\"specialty\", \"estimated_time\", \"price_range\", \"rating\"}]} listando até 3 "
            f"restaurantes reais com delivery em {locality} para: {food}."
        )
        try:
            text = await self.generator.generate(prompt)
            parsed = parse_json_object(text, GeneratedRestaurantList, self.generator.provider_name)
        except Exception as e:
            logger.warning(f"Restaurant generation failed: {e!r}")
            return []

        candidates = []
        for item in parsed.restaurants:
            contact = normalize_contact(item.whatsapp, self.settings.country_code)
            if contact is None:
                continue
            candidates.append(RestaurantCandidate(
                name=item.name,
                contact_id=contact,
                specialty=item.specialty,
                estimated_time=item.estimated_time,
                price_range=item.price_range,
                rating=round(item.rating, 1),
                provenance=Provenance.GENERATED,
            ))
        return candidates
