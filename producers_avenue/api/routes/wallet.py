"""Wallet, transaction history and payout endpoints."""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import CurrentUser, get_current_user, require_admin_key
from producers_avenue.api.schemas import (
    PayoutCancelRequest,
    PayoutResponse,
    TransactionResponse,
    WalletActionRequest,
    WalletResponse,
)
from producers_avenue.core.errors import ValidationError
from producers_avenue.core.ledger import ledger
from producers_avenue.core.wallet import payout_service, wallet_queries, wallet_tracker
from producers_avenue.database.connection import get_db

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


def _wallet(wallet: Any) -> Optional[Dict[str, Any]]:
    if wallet is None:
        return None
    return WalletResponse.model_validate(wallet).model_dump(mode="json")


def _transactions(entries: Any) -> list:
    return [TransactionResponse.model_validate(t).model_dump(mode="json") for t in entries]


@router.get("", summary="Wallet views", description="balance, transactions, pending or summary")
async def get_wallet(
    type: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    transaction_type: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if type == "balance":
        wallet = await wallet_tracker.get_or_create_wallet(db, user.id)
        return {"wallet": _wallet(wallet)}

    if type == "transactions":
        entries = await ledger.list_for_user(db, user.id, limit=limit, type=transaction_type)
        return {"transactions": _transactions(entries)}

    if type == "pending":
        pending = await wallet_queries.pending_earnings(db, user.id)
        return {
            "pending_amount": float(pending["pending_amount"]),
            "pending_items": pending["pending_items"],
        }

    summary = await wallet_queries.summary(db, user.id)
    return {
        "wallet": _wallet(summary["wallet"]),
        "recent_transactions": _transactions(summary["recent_transactions"]),
    }


@router.post("", summary="Request a payout")
async def wallet_action(
    request: WalletActionRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if request.action != "request_payout":
        raise ValidationError("Invalid action")

    payout = await payout_service.request_payout(
        db,
        user_id=user.id,
        amount=request.amount,
        payout_method=request.payout_method,
        payout_details=request.payout_details,
    )
    return {
        "success": True,
        "payout": PayoutResponse.model_validate(payout).model_dump(mode="json"),
        "message": "Payout request submitted successfully",
    }


@router.patch("", summary="Cancel a pending payout")
async def cancel_payout(
    request: PayoutCancelRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    await payout_service.cancel_payout(
        db, user_id=user.id, payout_id=request.payout_id, action=request.action
    )
    return {"success": True, "message": "Payout cancelled successfully"}


@admin_router.post(
    "/payouts/{payout_id}/complete",
    summary="Complete a payout",
    description="Mark a pending payout as sent to the seller",
    dependencies=[Depends(require_admin_key)],
)
async def complete_payout(
    payout_id: str,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    logger.info("api_complete_payout", payout_id=payout_id)
    payout = await payout_service.complete_payout(db, payout_id)
    return {
        "success": True,
        "payout": PayoutResponse.model_validate(payout).model_dump(mode="json"),
    }
