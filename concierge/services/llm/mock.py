"""
Mock Text Generator

Canned Portuguese replies for development. Responses can be scripted
(tests) or chosen from keywords in the prompt.
"""

import asyncio
import logging
import random
from collections import deque
from typing import Iterable, Optional

from concierge.core.exceptions import GenerationError
from concierge.services.llm.base import BaseTextGenerator

logger = logging.getLogger(__name__)


class MockTextGenerator(BaseTextGenerator):
    """
    Mock generator for development and tests.

    Args:
        responses: Scripted replies returned in order before falling back
            to the keyword replies
        failure_rate: Probability of a simulated GenerationError
        latency: Upper bound of the simulated latency in seconds
    """

    def __init__(
        self,
        responses: Optional[Iterable[str]] = None,
        failure_rate: float = 0.0,
        latency: float = 0.2,
    ):
        self.responses = deque(responses or [])
        self.failure_rate = failure_rate
        self.latency = latency
        self.prompts: list[str] = []
        logger.info(f"MockTextGenerator initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.latency:
            await asyncio.sleep(random.uniform(0, self.latency))

        if self.failure_rate and random.random() < self.failure_rate:
            logger.warning("Mock generation failed (simulated)")
            raise GenerationError("Simulated generation failure", provider="mock")

        if self.responses:
            return self.responses.popleft()
        return self._canned_reply(prompt)

    def _canned_reply(self, prompt: str) -> str:
        lowered = prompt.lower()
        if "consulta de busca" in lowered:
            # Discovery falls back to its own query template
            return ""
        if "json" in lowered:
            return "Não consigo gerar dados estruturados no modo de desenvolvimento."
        if "restaurante:" in lowered:
            return "Perfeito, obrigado! Pode seguir com o pedido."
        return (
            "Perfeito! Para encontrar as melhores opções preciso do seu endereço "
            "de entrega, do seu WhatsApp e da forma de pagamento."
        )
