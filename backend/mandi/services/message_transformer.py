"""
Message transformer.

WHAT: Polite third-person rewrite of a party's message, translated for the other party
WHY: Vendor and customer may not share a language or a register
HOW: Two LLM steps (rewrite, then translate when languages differ), each degrading to the text it received
"""

from dataclasses import dataclass
from typing import Optional

from ..core.languages import language_name, normalize_language
from ..llm.provider import LLMProvider
from ..utils.exceptions import ValidationError
from ..utils.llm_output import clean_generated_text, extract_json_object
from ..utils.logger import get_logger
from .external_call import ExternalCallPolicy
from .prompts import render_polite_prompt, render_translation_prompt

logger = get_logger(__name__)

VALID_SENTIMENTS = {"positive", "neutral", "negative"}
MAX_MESSAGE_LENGTH = 1000


def validate_message_text(text, label: str = "Message") -> str:
    """
    Check free text before it is stored or relayed.

    Returns:
        The stripped text

    Raises:
        ValidationError: Empty, or longer than MAX_MESSAGE_LENGTH
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(f"{label} text is required")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"{label} is longer than {MAX_MESSAGE_LENGTH} characters")
    return text.strip()


@dataclass
class TransformedMessage:
    """Result of transform()."""
    original_text: str
    rendered_text: str
    sentiment: str
    cultural_note: str
    source_language: str
    target_language: str
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "original_text": self.original_text,
            "rendered_text": self.rendered_text,
            "sentiment": self.sentiment,
            "cultural_note": self.cultural_note,
            "source_language": self.source_language,
            "target_language": self.target_language,
            "fallback": self.fallback,
        }


class MessageTransformer:
    """Language oracle used by the message relay and the negotiation narratives."""

    def __init__(self, provider: LLMProvider, policy: Optional[ExternalCallPolicy] = None):
        self.provider = provider
        self.policy = policy or ExternalCallPolicy()

    async def _polite(self, text: str, sender_role: str, language: str) -> tuple[str, str]:
        result = await self.provider.generate(
            render_polite_prompt(text, sender_role, language),
            temperature=0.8,
            max_tokens=400,
        )
        data = extract_json_object(result.text)
        if data and isinstance(data.get("polite"), str) and data["polite"].strip():
            sentiment = data.get("sentiment") if data.get("sentiment") in VALID_SENTIMENTS else "neutral"
            return clean_generated_text(data["polite"], max_words=None), sentiment
        polite = clean_generated_text(result.text, max_words=None)
        if not polite:
            raise ValueError("Empty polite rewrite")
        return polite, "neutral"

    async def _translate(self, text: str, source_language: str, target_language: str) -> str:
        result = await self.provider.generate(
            render_translation_prompt(text, source_language, target_language),
            temperature=0.7,
            max_tokens=600,
        )
        translated = clean_generated_text(result.text, max_words=None)
        if not translated:
            raise ValueError("Empty translation")
        return translated

    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        """Translate text; same language or any failure returns it unchanged."""
        if not text or source_language == target_language:
            return text
        return await self.policy.run(
            lambda: self._translate(text, source_language, target_language),
            text,
            label=f"translation {source_language}->{target_language}",
        )

    async def transform(
        self,
        text: str,
        sender_role: str,
        source_language: str,
        target_language: str,
    ) -> TransformedMessage:
        """
        Rewrite text politely and translate it for the recipient.

        Raises:
            ValidationError: Empty or oversized text, unsupported language
        """
        original = validate_message_text(text)
        source = normalize_language(source_language)
        target = normalize_language(target_language)

        polite_failed = False

        def polite_fallback():
            nonlocal polite_failed
            polite_failed = True
            return original, "neutral"

        polite, sentiment = await self.policy.run(
            lambda: self._polite(original, sender_role, source),
            polite_fallback,
            label="polite rewrite",
        )

        if source == target:
            rendered = polite
            note = f"Polite {language_name(source)} marketplace communication (no translation needed)"
        else:
            rendered = await self.translate(polite, source, target)
            note = f"Respectful {language_name(source)} to {language_name(target)} marketplace communication"

        logger.info(f"Transformed {sender_role} message ({source}->{target}, sentiment={sentiment})")
        return TransformedMessage(
            original_text=original,
            rendered_text=rendered,
            sentiment=sentiment,
            cultural_note=note,
            source_language=source,
            target_language=target,
            fallback=polite_failed,
        )
