"""
Offer-narrative generator.

WHAT: Persuasive vendor prose accompanying a below-floor counter-offer
WHY: The state machine decides prices; the customer still deserves a human-sounding answer
HOW: One LLM call in the vendor's language, cleaned and truncated, with a templated fallback
"""

from typing import Optional

from ..llm.provider import LLMProvider
from ..utils.llm_output import clean_generated_text
from ..utils.logger import get_logger
from .external_call import ExternalCallPolicy
from .prompts import fallback_counter_narrative, render_counter_narrative_prompt

logger = get_logger(__name__)


class NarrativeGenerator:
    """Stateless counter-narrative source. Never supplies a number."""

    def __init__(self, provider: LLMProvider, policy: Optional[ExternalCallPolicy] = None):
        self.provider = provider
        self.policy = policy or ExternalCallPolicy()

    async def _generate(self, product_name, customer_offer, market_price, suggested_range, round_number, language, is_final) -> str:
        result = await self.provider.generate(
            render_counter_narrative_prompt(
                product_name, customer_offer, market_price, suggested_range, round_number, language, is_final
            ),
            temperature=0.8,
            max_tokens=200,
        )
        text = clean_generated_text(result.text)
        if not text:
            raise ValueError("Empty narrative")
        return text

    async def generate_counter_narrative(
        self,
        customer_offer: float,
        floor_price: float,
        market_price: float,
        product_name: str,
        round_number: int,
        language: str,
        suggested_range: tuple[int, int],
        is_final: bool = False,
    ) -> str:
        """
        Narrative body for a counter-offer (closing statement not included).

        floor_price is accepted to keep the collaborator contract but is never
        sent to the model.
        """
        def fallback() -> str:
            logger.info(f"Templated narrative for {product_name} (round {round_number})")
            return fallback_counter_narrative(product_name, customer_offer, market_price, suggested_range, is_final)

        return await self.policy.run(
            lambda: self._generate(
                product_name, customer_offer, market_price, suggested_range, round_number, language, is_final
            ),
            fallback,
            label="offer narrative",
        )
