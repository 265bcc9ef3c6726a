"""
Marketplace runtime container.

WHAT: Builds and owns every long-lived collaborator of the service
WHY: Routes and the realtime gateway share one store, one hub and one set of services
HOW: Plain object created in the FastAPI lifespan and stored on app.state; tests pass fakes in
"""

from typing import Optional

from ..llm import LLMProvider, get_provider
from ..models.session import Role
from ..realtime.gateway import RealtimeGateway
from ..realtime.hub import SessionEventHub
from ..services.cart_reconciler import CartReconciler
from ..services.external_call import ExternalCallPolicy
from ..services.inventory_ledger import InventoryLedger
from ..services.message_relay import MessageRelay
from ..services.message_transformer import MessageTransformer
from ..services.narrative_generator import NarrativeGenerator
from ..services.negotiation_engine import NegotiationEngine
from ..services.payment_gateway import PaymentGateway, build_payment_gateway
from ..services.pricing_oracle import PricingOracle
from ..services.settlement import SettlementCoordinator
from ..utils.exceptions import SettlementPendingError
from ..utils.logger import get_logger
from .session_store import SessionStore

logger = get_logger(__name__)


class MarketplaceRuntime:
    """Wiring of store, event hub, external collaborators and core services."""

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        policy: Optional[ExternalCallPolicy] = None,
        store: Optional[SessionStore] = None,
    ):
        self.store = store or SessionStore()
        self.hub = SessionEventHub()
        self.policy = policy or ExternalCallPolicy()
        self.provider = provider or get_provider()
        self.payment_gateway = payment_gateway or build_payment_gateway()

        self.pricing = PricingOracle(self.provider, self.policy)
        self.narratives = NarrativeGenerator(self.provider, self.policy)
        self.transformer = MessageTransformer(self.provider, self.policy)

        self.ledger = InventoryLedger(self.store, self.hub)
        self.cart = CartReconciler(self.store, self.ledger, self.hub)
        self.relay = MessageRelay(self.store, self.transformer, self.hub)
        self.negotiation = NegotiationEngine(
            self.store,
            self.ledger,
            self.cart,
            self.narratives,
            self.transformer,
            self.relay,
            self.hub,
        )
        self.settlement = SettlementCoordinator(
            self.store,
            self.ledger,
            self.cart,
            self.payment_gateway,
            self.hub,
            self.policy,
        )
        self.gateway = RealtimeGateway(self)

        logger.info(
            f"Runtime ready (llm={getattr(self.provider, 'name', type(self.provider).__name__)}, "
            f"payments={getattr(self.payment_gateway, 'name', type(self.payment_gateway).__name__)})"
        )

    def end_session(self, code: str, token: str) -> str:
        """
        Vendor closes a session for good.

        Both parties get `session-ended`, then the session and its event
        history are forgotten.

        Raises:
            SettlementPendingError: A payment is still awaiting confirmation
        """
        session = self.store.get(code)
        self.store.authorize(session, Role.VENDOR, token)
        if session.pending_settlements:
            raise SettlementPendingError(next(iter(session.pending_settlements)))

        self.negotiation.clear_session(session)
        self.hub.publish(session.code, "session-ended", {"session_code": session.code}, "all")
        self.store.delete(session.code)
        self.hub.drop_session(session.code)
        logger.info(f"[{session.code}] Session ended by vendor")
        return session.code

    async def close(self):
        """Release HTTP clients held by the external collaborators."""
        await self.provider.close()
        await self.payment_gateway.close()
        logger.info("Runtime closed")
