"""
Session store.

WHAT: In-memory registry of marketplace sessions keyed by a short shareable code
WHY: Every core operation resolves its session and checks the caller's role here
HOW: Explicit store object (create/get/join/delete) injected into services; role tokens issued at create/join
"""

import secrets
import string
from datetime import datetime
from typing import Dict, Optional

from ..models.session import Role, Session, SessionStatus
from ..utils.exceptions import (
    SessionFullError,
    SessionNotFoundError,
    SessionNotLiveError,
    UnauthorizedRoleError,
    ValidationError,
)
from ..utils.logger import get_logger
from .config import settings
from .languages import normalize_language

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 50


class SessionStore:
    """
    Manage session lifecycle.

    WHAT: Create, join, look up, disconnect and delete sessions
    WHY: Single owner of the session map so the core stays testable without a transport
    HOW: Plain dict of code -> Session; the event loop is single threaded so no lock is taken
    """

    def __init__(self, code_length: Optional[int] = None):
        self._sessions: Dict[str, Session] = {}
        self.code_length = code_length or settings.SESSION_CODE_LENGTH

    def _generate_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(self.code_length))
            if code not in self._sessions:
                return code
        raise RuntimeError("Could not allocate a unique session code")

    @staticmethod
    def _issue_token() -> str:
        return secrets.token_urlsafe(16)

    def create(
        self,
        vendor_language: str = "en",
        location: Optional[str] = None,
        vendor_connection: Optional[str] = None,
    ) -> Session:
        """
        Create a session for a vendor.

        Args:
            vendor_language: Vendor's working language code
            location: Market location used for pricing
            vendor_connection: Transport handle of the vendor, if any

        Returns:
            The new Session (its vendor_token is the vendor's credential)
        """
        session = Session(
            code=self._generate_code(),
            vendor_token=self._issue_token(),
            vendor_language=normalize_language(vendor_language),
            location=location or settings.DEFAULT_LOCATION,
            vendor_connection=vendor_connection,
        )
        self._sessions[session.code] = session
        logger.info(f"Session created: {session.code} (vendor language={session.vendor_language})")
        return session

    def join(
        self,
        code: str,
        customer_language: str = "en",
        customer_connection: Optional[str] = None,
    ) -> Session:
        """
        Attach the customer to a session. Succeeds exactly once per session.

        Raises:
            SessionNotFoundError: Unknown code
            SessionNotLiveError: Session was disconnected
            SessionFullError: A customer already joined
        """
        session = self.require_live(code)
        if session.customer_token is not None:
            logger.warning(f"Rejected second customer for session {code}")
            raise SessionFullError(code)

        language = normalize_language(customer_language)
        session.customer_token = self._issue_token()
        session.customer_language = language
        session.customer_connection = customer_connection
        session.status = SessionStatus.ACTIVE
        logger.info(f"Customer joined session {code} (language={session.customer_language})")
        return session

    def get(self, code: str) -> Session:
        session = self._sessions.get(self.normalize_code(code))
        if session is None:
            raise SessionNotFoundError(code)
        return session

    def require_live(self, code: str) -> Session:
        """Resolve a session that still accepts events."""
        session = self.get(code)
        if not session.is_live:
            raise SessionNotLiveError(session.code, session.status.value)
        return session

    @staticmethod
    def normalize_code(code: str) -> str:
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("Session code is required")
        return code.strip().upper()

    @staticmethod
    def authorize(session: Session, role: Role, token: Optional[str]):
        """
        Check a role token against the session.

        Raises:
            UnauthorizedRoleError: Token missing or not the one issued for the role
        """
        expected = session.vendor_token if role is Role.VENDOR else session.customer_token
        if not token or expected is None or not secrets.compare_digest(expected, token):
            logger.warning(f"Unauthorized {role.value} operation on session {session.code}")
            raise UnauthorizedRoleError(session.code, role.value)

    @staticmethod
    def role_of(session: Session, token: Optional[str]) -> Optional[Role]:
        """Which role a token belongs to, if any."""
        if token and secrets.compare_digest(session.vendor_token, token):
            return Role.VENDOR
        if token and session.customer_token and secrets.compare_digest(session.customer_token, token):
            return Role.CUSTOMER
        return None

    def mark_disconnected(self, code: str, role: Role) -> Session:
        """Mark a session disconnected after either party leaves."""
        session = self.get(code)
        session.status = SessionStatus.DISCONNECTED
        if role is Role.VENDOR:
            session.vendor_connection = None
        else:
            session.customer_connection = None
        logger.info(f"Session {session.code} marked as disconnected ({role.value} left)")
        return session

    def delete(self, code: str) -> bool:
        removed = self._sessions.pop(self.normalize_code(code), None)
        if removed:
            logger.info(f"Session deleted: {removed.code}")
        return removed is not None

    def count(self, status: Optional[SessionStatus] = None) -> int:
        if status is None:
            return len(self._sessions)
        return sum(1 for s in self._sessions.values() if s.status == status)

    @staticmethod
    def snapshot(session: Session, role: Role) -> dict:
        """Role-scoped view of the whole session."""
        product_view = (lambda p: p.vendor_view()) if role is Role.VENDOR else (lambda p: p.customer_view())
        data = {
            "session_code": session.code,
            "status": session.status.value,
            "role": role.value,
            "vendor_language": session.vendor_language,
            "customer_language": session.customer_language,
            "location": session.location,
            "created_at": session.created_at.isoformat(),
            "products": [product_view(p) for p in session.products.values()],
            "cart": [line.to_dict() for line in session.cart.values()],
            "cart_total": session.cart_total(),
            "negotiations": {pid: rec.to_dict() for pid, rec in session.negotiations.items()},
            "messages": [m.model_dump(mode="json") for m in session.messages],
            "pending_settlements": [p.to_dict() for p in session.pending_settlements.values()],
            "snapshot_at": datetime.utcnow().isoformat(),
        }
        return data
