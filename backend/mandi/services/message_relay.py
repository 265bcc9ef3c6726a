"""
Message relay.

WHAT: Free-text messages between vendor and customer, rendered for the recipient
WHY: Parties speak different languages; the log is display-only
HOW: Transform (awaited), re-check the session, append an immutable Message, then emit
"""

from typing import Iterable, Optional

from ..core.session_store import SessionStore
from ..models.session import Message, Role, Session
from ..realtime.hub import Broadcaster
from ..utils.exceptions import SessionNotLiveError, ValidationError
from ..utils.logger import get_logger
from .message_transformer import MessageTransformer

logger = get_logger(__name__)

MAX_REQUESTED_PRODUCTS = 20


class MessageRelay:
    """Routes messages through the message transformer to the other party."""

    def __init__(self, store: SessionStore, transformer: MessageTransformer, broadcaster: Broadcaster):
        self.store = store
        self.transformer = transformer
        self.broadcaster = broadcaster

    async def send_message(self, code: str, token: str, role: Role, text: str) -> Message:
        session = self.store.require_live(code)
        self.store.authorize(session, role, token)
        return await self.deliver(session, role, text)

    async def deliver(self, session: Session, sender: Role, text: str, context: Optional[dict] = None) -> Message:
        """
        Transform and deliver a message from an already authorized sender.

        Args:
            context: Extra fields attached to the recipient's event (e.g. negotiation ids)
        """
        recipient = sender.counterpart
        source = session.language_for(sender)
        target = session.language_for(recipient)

        transformed = await self.transformer.transform(text, sender.value, source, target)

        if not session.is_live:
            logger.warning(f"[{session.code}] Dropping message from {sender.value}: session closed meanwhile")
            raise SessionNotLiveError(session.code, session.status.value)

        message = Message(
            sender_role=sender,
            text=transformed.original_text,
            source_language=transformed.source_language,
            target_language=transformed.target_language,
            rendered_text=transformed.rendered_text,
            sentiment=transformed.sentiment,
            cultural_note=transformed.cultural_note,
        )
        session.messages.append(message)
        logger.info(f"[{session.code}] Message {message.id} relayed {sender.value} -> {recipient.value}")

        payload = {"message": message.model_dump(mode="json"), "notification": True}
        if context:
            payload.update(context)
        self.broadcaster.publish(session.code, "custom-message-received", payload, recipient.value)
        self.broadcaster.publish(
            session.code,
            "message-sent",
            {"message_id": message.id, "rendered_text": message.rendered_text},
            sender.value,
        )
        return message

    def request_products(self, code: str, token: str, product_names: Iterable[str]) -> list[str]:
        """Relay a customer's request for products the vendor does not list yet."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.CUSTOMER, token)

        names = []
        for name in product_names or []:
            if isinstance(name, str) and name.strip() and name.strip() not in names:
                names.append(name.strip())
        if not names:
            raise ValidationError("At least one product name is required")
        if len(names) > MAX_REQUESTED_PRODUCTS:
            raise ValidationError(f"At most {MAX_REQUESTED_PRODUCTS} products can be requested at once")

        logger.info(f"[{session.code}] Customer requested products: {', '.join(names)}")
        self.broadcaster.publish(
            session.code,
            "products-requested",
            {"products": names, "customer_language": session.customer_language},
            "vendor",
        )
        return names
