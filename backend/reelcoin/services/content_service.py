"""Content service - register posted content and trigger the upload reward"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from reelcoin.core.config import settings
from reelcoin.core.exceptions import LedgerError, ValidationError, AccountNotFoundError
from reelcoin.db.session import translate_db_errors
from reelcoin.models.content_item import ContentItem
from reelcoin.services.account_service import require_account
from reelcoin.services.entitlement_service import can_post, count_posts_today
from reelcoin.services.ledger_service import lock_accounts, reward_upload, run_atomic

logger = logging.getLogger(__name__)

MAX_CATEGORY_LENGTH = 50
DAILY_LIMIT_MESSAGE = "Daily post limit reached. Upgrade to Premium for unlimited posts."


def _reward_payload(result) -> Dict[str, Any]:
    return {
        'credited': result.created,
        'content_tokens': str(result.transaction.content_tokens),
        'transaction_id': result.transaction.id,
    }


@translate_db_errors("register_content")
def register_content(
    account_id: str,
    is_video: bool,
    category: Optional[str],
    db: Session
) -> Dict[str, Any]:
    """
    Record a content item the storage collaborator has persisted, then reward it.

    The daily count is re-read under the account row lock and the item is
    inserted in the same transaction, so simultaneous uploads cannot exceed
    the free limit. The item is committed before the reward runs. If the
    reward fails the item stays, the failure is returned as
    ``reward_warning`` and the reward can be retried with ``retry_reward``.

    Raises:
        ValidationError: daily post limit reached or bad category
    """
    require_account(account_id, db)
    if category is not None and len(category) > MAX_CATEGORY_LENGTH:
        raise ValidationError("Category name is too long")

    allowance = can_post(account_id, db)
    if not allowance.allowed:
        raise ValidationError(DAILY_LIMIT_MESSAGE)
    unlimited = allowance.remaining is None

    def apply() -> ContentItem:
        account = lock_accounts(db, account_id).get(account_id)
        if not account:
            raise AccountNotFoundError("Account not found")
        if not unlimited and count_posts_today(account_id, db) >= settings.MAX_FREE_POSTS_PER_DAY:
            raise ValidationError(DAILY_LIMIT_MESSAGE)

        # Bumps version_id: a concurrent upload that read the same count fails its commit
        account.updated_at = datetime.now(timezone.utc)
        item = ContentItem(owner_id=account_id, is_video=is_video, category=category)
        db.add(item)
        return item

    item = run_atomic("register_content", db, apply)
    db.refresh(item)

    response = {
        'content_item': {
            'id': item.id,
            'is_video': item.is_video,
            'category': item.category,
            'created_at': item.created_at.isoformat(),
        },
        'reward': None,
        'reward_warning': None,
    }

    try:
        result = reward_upload(account_id, item.id, db, is_video=is_video)
        response['reward'] = _reward_payload(result)
    except LedgerError as e:
        logger.warning(f"Upload reward for {item.id} failed, content kept for retry: {e.message}")
        response['reward_warning'] = "Your post was saved, but the reward could not be credited yet. It will be retried."

    return response


def retry_reward(account_id: str, content_item_id: str, db: Session) -> Dict[str, Any]:
    """Idempotent follow-up for a reward that failed after the item was saved"""
    result = reward_upload(account_id, content_item_id, db)
    return _reward_payload(result)
