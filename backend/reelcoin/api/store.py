"""Store API routes"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from reelcoin.core.security import require_auth
from reelcoin.db.session import get_db
from reelcoin.schemas.tokens import PurchaseRequest
from reelcoin.services import catalog
from reelcoin.services.purchase_service import purchase

router = APIRouter(prefix="/api/store", tags=["store"])


@router.get("/items")
def list_store_items(category: Optional[str] = None):
    """List purchasable items, optionally filtered by category"""
    return {"items": [item.to_dict() for item in catalog.list_items(category)]}


@router.post("/purchase")
def purchase_route(
    body: PurchaseRequest,
    account_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Buy a store item with content tokens"""
    return purchase(account_id, body.item_id, db)
