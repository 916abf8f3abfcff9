"""Entitlement evaluator - derived, read-only permissions.

Every premium/post-limit decision in the app goes through here. Nothing in
this module mutates state; on database errors the answers fail closed.
"""
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reelcoin.core.config import settings
from reelcoin.core.logging import entitlement_logger as logger
from reelcoin.core.metrics import entitlement_denials_counter
from reelcoin.db import redis as redis_store
from reelcoin.models.content_item import ContentItem
from reelcoin.models.store_purchase import StorePurchase


@dataclass(frozen=True)
class PostAllowance:
    allowed: bool
    remaining: Optional[int]  # None means unlimited

    def to_dict(self):
        return {"allowed": self.allowed, "remaining": self.remaining}


def utc_day_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return [start of the UTC day, start of the next UTC day) containing ``now``"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def _has_active_premium(account_id: str, db: Session) -> bool:
    row = db.query(StorePurchase.id).filter(
        StorePurchase.user_id == account_id,
        StorePurchase.item_id == settings.PREMIUM_ITEM_ID,
        StorePurchase.active.is_(True)
    ).first()
    return row is not None


def is_premium(account_id: str, db: Session) -> bool:
    """True iff the account has an active premium purchase row.

    Cached in Redis per account; the ledger invalidates the cache on purchase
    and premium activation. A database failure answers False.
    """
    cached = redis_store.get_cached_premium(account_id)
    if cached is not None:
        return cached

    try:
        premium = _has_active_premium(account_id, db)
    except SQLAlchemyError as e:
        logger.error(f"Premium lookup failed for {account_id}, denying: {e}", exc_info=True)
        db.rollback()
        return False

    redis_store.set_cached_premium(account_id, premium)
    return premium


def count_posts_today(account_id: str, db: Session, now: Optional[datetime] = None) -> int:
    start, end = utc_day_bounds(now)
    return db.query(func.count(ContentItem.id)).filter(
        ContentItem.owner_id == account_id,
        ContentItem.created_at >= start,
        ContentItem.created_at < end
    ).scalar() or 0


def can_post(account_id: str, db: Session, now: Optional[datetime] = None) -> PostAllowance:
    """Can the account submit another post today?

    Premium accounts are unlimited (remaining=None). Free accounts get
    MAX_FREE_POSTS_PER_DAY posts per UTC day.
    """
    if is_premium(account_id, db):
        return PostAllowance(allowed=True, remaining=None)

    max_free = settings.MAX_FREE_POSTS_PER_DAY
    try:
        count = count_posts_today(account_id, db, now)
    except SQLAlchemyError as e:
        logger.error(f"Post count failed for {account_id}, denying: {e}", exc_info=True)
        db.rollback()
        entitlement_denials_counter.labels(reason="upstream_error").inc()
        return PostAllowance(allowed=False, remaining=0)

    allowed = count < max_free
    if not allowed:
        entitlement_denials_counter.labels(reason="daily_limit").inc()
    return PostAllowance(allowed=allowed, remaining=max(0, max_free - count))
