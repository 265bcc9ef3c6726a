"""
Prompt templates for the marketplace oracles.

WHAT: Prompts for market pricing, counter-offer narratives, polite rewrites and translation
WHY: Consistent tone and output format across LLM backends
HOW: Template strings with context injection, return ChatMessage lists
"""

from typing import List

from ..core.languages import language_name
from ..llm.types import ChatMessage

# Appended to the last narrative once the round limit is reached
CLOSING_STATEMENTS = {
    "en": "This negotiation is now closed for this product.",
    "hi": "इस उत्पाद के लिए यह मोलभाव अब समाप्त हो गया है।",
    "ta": "இந்த பொருளுக்கான பேரம் இப்போது முடிவடைந்தது.",
}

NO_REASONING = """Important Instructions:
- Do NOT reveal your chain-of-thought or internal reasoning
- NEVER output <think>...</think> tags or similar reasoning blocks
- Respond ONLY with the requested output"""


def closing_statement(language: str) -> str:
    return CLOSING_STATEMENTS.get(language, CLOSING_STATEMENTS["en"])


def render_market_price_prompt(product_names: List[str], location: str) -> List[ChatMessage]:
    """
    Ask for current retail prices per kilogram as strict JSON.

    WHAT: Batch pricing prompt for the pricing oracle
    WHY: One call prices a whole category
    HOW: System message fixes the JSON shape, user message lists the products
    """
    example = '{"Tomato": {"price": 45, "trend": "stable"}, "Onion": {"price": 30, "trend": "down"}}'
    system_prompt = f"""Act like a rule based bot that does not express thoughts.
You report current retail market prices per kilogram in Indian markets.

Rules:
- Start the response with {{ and end it with }}
- No explanatory text before or after the JSON
- Use the exact product names as keys
- Prices are numbers in rupees, trend is one of "up", "down", "stable"

Format:
{{"ProductName": {{"price": number, "trend": "up|down|stable"}}}}

Example for Tomato, Onion:
{example}

{NO_REASONING}"""

    user_prompt = f"""Location: {location}, India
Products: {", ".join(product_names)}

Return the JSON now."""

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt}
    ]


def render_counter_narrative_prompt(
    product_name: str,
    customer_offer: float,
    market_price: float,
    suggested_range: tuple[int, int],
    round_number: int,
    language: str,
    is_final: bool,
) -> List[ChatMessage]:
    """
    Render the vendor's counter-offer narrative prompt.

    The floor price is never put into the prompt; the model only sees the
    suggested range the state machine already computed.
    """
    low, high = suggested_range
    if is_final:
        task = (
            f"This is round {round_number}, the last one. Politely explain that you cannot sell "
            f"at ₹{customer_offer:g} and thank the customer. Do not invite another offer."
        )
    else:
        task = (
            f"This is round {round_number}. Politely suggest a price between ₹{low} and ₹{high} per kg "
            f"and invite the customer to make another offer."
        )

    system_prompt = f"""You are a polite vegetable vendor in an Indian market (mandi).

Requirements:
- Use warm, respectful language
- Explain value naturally (freshness, quality)
- Culturally appropriate for Indian markets
- Do NOT mention any minimum price
- Write in {language_name(language)}
- Be concise (under 60 words)

{NO_REASONING}"""

    user_prompt = f"""Product: {product_name}
Customer offered: ₹{customer_offer:g} per kg
Market price: ₹{market_price:g} per kg

{task}

Respond with only the message to the customer."""

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt}
    ]


def render_polite_prompt(text: str, sender_role: str, language: str) -> List[ChatMessage]:
    """Rewrite a message as polite third-person marketplace speech, with a sentiment label."""
    name = language_name(language)
    system_prompt = f"""You convert marketplace messages to polite third-person speech for an Indian marketplace.

Examples:
English: "I cannot go below 40 rupees" -> "The vendor respectfully explains that the current market conditions do not allow pricing below 40 rupees"
Hindi: "मैं 40 रुपये से नीचे नहीं जा सकता" -> "विक्रेता ने विनम्रता से बताया कि बाजार की स्थिति 40 रुपये से कम दाम की अनुमति नहीं देती"

Return ONLY JSON in this format:
{{"polite": "<polite {name} version>", "sentiment": "positive|neutral|negative"}}

{NO_REASONING}"""

    user_prompt = f"""Speaker: {sender_role}
Original {name} message: "{text}"

Make it polite and indirect in {name}."""

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt}
    ]


def render_translation_prompt(text: str, source_language: str, target_language: str) -> List[ChatMessage]:
    """Translate a (already polite) text between two supported languages."""
    source = language_name(source_language)
    target = language_name(target_language)
    return [
        {
            "role": "system",
            "content": f"You translate marketplace messages from {source} to {target}.\n\n{NO_REASONING}",
        },
        {
            "role": "user",
            "content": f'Translate this polite {source} text to {target}: "{text}"\n\nProvide only the complete translation, nothing else.',
        },
    ]


def fallback_counter_narrative(
    product_name: str,
    customer_offer: float,
    market_price: float,
    suggested_range: tuple[int, int],
    is_final: bool,
) -> str:
    """Templated narrative used whenever generation fails."""
    low, high = suggested_range
    if is_final:
        return (
            f"I truly appreciate your interest in {product_name}, but I cannot sell at ₹{customer_offer:g} per kg. "
            f"Thank you for understanding."
        )
    return (
        f"I understand your budget, but fresh {product_name} is selling around ₹{market_price:g} per kg today. "
        f"Could we meet somewhere between ₹{low} and ₹{high} per kg?"
    )
