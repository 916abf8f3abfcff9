"""Token API routes"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from reelcoin.core.security import require_auth
from reelcoin.db.session import get_db
from reelcoin.schemas.tokens import TransferRequest
from reelcoin.services.account_service import get_account_snapshot
from reelcoin.services.ledger_service import get_transactions, transfer_tokens

router = APIRouter(prefix="/api/tokens", tags=["tokens"])


@router.get("/balance")
def get_balance(account_id: str = Depends(require_auth), db: Session = Depends(get_db)):
    """Get current token balances"""
    snapshot = get_account_snapshot(account_id, db)
    return {
        "content_tokens": snapshot["content_tokens"],
        "view_tokens": snapshot["view_tokens"],
        "transfer_code": snapshot["transfer_code"],
    }


@router.get("/transactions")
def get_transactions_route(
    limit: int = Query(50, ge=1, le=200),
    account_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Get token transaction history"""
    return {"transactions": get_transactions(account_id, db, limit)}


@router.post("/transfer")
def transfer(
    body: TransferRequest,
    account_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Send tokens to the account that owns a transfer code"""
    transaction = transfer_tokens(
        account_id,
        body.recipient_transfer_code,
        body.content_amount,
        body.view_amount,
        db
    )
    return {
        "transaction": transaction.to_dict(account_id),
        "account": get_account_snapshot(account_id, db),
    }
