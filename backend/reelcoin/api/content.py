"""Content API routes - post entitlement, upload rewards, views"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from reelcoin.core.security import require_auth
from reelcoin.db.session import get_db
from reelcoin.schemas.tokens import ContentRequest
from reelcoin.services.content_service import register_content, retry_reward
from reelcoin.services.entitlement_service import can_post
from reelcoin.services.ledger_service import record_view

router = APIRouter(prefix="/api/content", tags=["content"])


@router.get("/entitlement")
def get_post_entitlement(account_id: str = Depends(require_auth), db: Session = Depends(get_db)):
    """Can the caller post now, and how many free posts are left today"""
    return can_post(account_id, db).to_dict()


@router.post("", status_code=201)
def create_content(
    body: ContentRequest,
    account_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Register a persisted upload and credit its reward"""
    return register_content(account_id, body.is_video, body.category, db)


@router.post("/{content_item_id}/reward")
def retry_content_reward(
    content_item_id: str,
    account_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Retry a failed upload reward (credited at most once)"""
    return {"reward": retry_reward(account_id, content_item_id, db)}


@router.post("/{content_item_id}/view")
def view_content(
    content_item_id: str,
    account_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Record a view by the caller"""
    return {"rewarded": record_view(account_id, content_item_id, db)}
