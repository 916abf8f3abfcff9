"""Account API routes"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from reelcoin.core.security import require_auth
from reelcoin.db.session import get_db
from reelcoin.schemas.accounts import CreateAccountRequest
from reelcoin.services.account_service import create_account, get_account_snapshot
from reelcoin.services.entitlement_service import is_premium

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.post("", status_code=201)
def create_account_route(
    body: CreateAccountRequest,
    account_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create the account row for the signed-in identity (idempotent)"""
    create_account(account_id, body.username, db)
    return get_account_snapshot(account_id, db)


@router.get("/me")
def get_me(account_id: str = Depends(require_auth), db: Session = Depends(get_db)):
    """Get the caller's profile, balances and premium status"""
    snapshot = get_account_snapshot(account_id, db)
    snapshot["is_premium"] = is_premium(account_id, db)
    return snapshot
