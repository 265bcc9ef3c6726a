"""
Session endpoints.

WHAT: Role-scoped session snapshots, session end and the payment gateway callback
WHY: Clients recover state after a reconnect; the gateway confirms payments over HTTP
HOW: Role token in the X-Role-Token header; verification delegated to the settlement coordinator
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header

from ....core.runtime import MarketplaceRuntime
from ....models.api_schemas import PaymentVerifyRequest
from ....models.session import Role
from ....utils.exceptions import UnauthorizedRoleError
from ....utils.logger import get_logger
from ..deps import get_runtime

logger = get_logger(__name__)

router = APIRouter()


@router.get("/sessions/{code}")
async def get_session(
    code: str,
    x_role_token: Optional[str] = Header(default=None),
    runtime: MarketplaceRuntime = Depends(get_runtime),
):
    """
    Snapshot of a session as the token's role sees it.

    Raises:
        SessionNotFoundError: Unknown code (404)
        UnauthorizedRoleError: Token belongs to neither party (403)
    """
    store = runtime.store
    session = store.get(code)
    role = store.role_of(session, x_role_token)
    if role is None:
        raise UnauthorizedRoleError(session.code, "vendor or customer")

    snapshot = store.snapshot(session, role)
    snapshot["last_seq"] = runtime.hub.last_seq(session.code)
    if role is Role.VENDOR:
        snapshot["sales"] = [sale.to_dict() for sale in session.sales]
    return snapshot


@router.post("/sessions/{code}/payments/verify")
async def verify_payment(
    code: str,
    request: PaymentVerifyRequest,
    runtime: MarketplaceRuntime = Depends(get_runtime),
):
    """
    Gateway checkout callback.

    Verifies the signature and completes the sale; repeated callbacks for
    the same order return the original receipt flagged duplicate.
    """
    receipt = await runtime.settlement.verify_gateway_settlement(
        code,
        request.order_id,
        request.payment_id,
        request.signature,
    )
    logger.info(f"Payment callback for {code}: order {request.order_id} (duplicate={receipt.duplicate})")
    return receipt.to_dict()


@router.delete("/sessions/{code}")
async def end_session(
    code: str,
    x_role_token: Optional[str] = Header(default=None),
    runtime: MarketplaceRuntime = Depends(get_runtime),
):
    """
    Vendor ends a session.

    Raises:
        UnauthorizedRoleError: Token is not the vendor's (403)
        SettlementPendingError: A payment is awaiting confirmation (409)
    """
    session_code = runtime.end_session(code, x_role_token)
    return {"deleted": True, "session_code": session_code}
