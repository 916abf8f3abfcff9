"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from reelcoin.models.base import Base
from reelcoin.models.account import Account
from reelcoin.models.content_item import ContentItem
from reelcoin.models.token_transaction import TokenTransaction, TransactionType
from reelcoin.models.store_purchase import StorePurchase
from reelcoin.models.video_view import VideoView
from reelcoin.models.stripe_event import StripeEvent

# Export all for convenience
__all__ = [
    "Base", "Account", "ContentItem", "TokenTransaction", "TransactionType",
    "StorePurchase", "VideoView", "StripeEvent"
]
