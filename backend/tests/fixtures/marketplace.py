"""
Marketplace test data.

WHAT: Sample inventory and a helper that opens a joined session
WHY: Most tests start from the same stocked, two-party session
HOW: Drive the real store and ledger; no shortcuts around validation
"""

# Tomato from the negotiation scenarios: floor 30, market 50
SAMPLE_PRODUCTS = [
    {
        "id": "tomato",
        "name": "Tomato",
        "category": "vegetables",
        "market_price": 50,
        "vendor_price": 50,
        "floor_price": 30,
        "stock": 10,
    },
    {
        "id": "onion",
        "name": "Onion",
        "category": "vegetables",
        "market_price": 60,
        "vendor_price": 55,
        "floor_price": 40,
        "stock": 5,
    },
]


class LiveSession:
    """A created and joined session with both role tokens."""

    def __init__(self, runtime, session):
        self.runtime = runtime
        self.session = session
        self.code = session.code
        self.vendor_token = session.vendor_token
        self.customer_token = session.customer_token

    def events(self, role=None):
        return self.runtime.hub.events_for(self.code, role)

    def names(self, role=None, since: int = 0):
        return [e.event for e in self.events(role) if e.seq > since]


def open_session(runtime, products=None, vendor_language="en", customer_language="en") -> LiveSession:
    """Create a session, stock it and join the customer."""
    session = runtime.store.create(vendor_language=vendor_language, location="Mumbai")
    runtime.ledger.set_inventory(session.code, session.vendor_token, products or SAMPLE_PRODUCTS)
    runtime.store.join(session.code, customer_language=customer_language)
    return LiveSession(runtime, session)
