"""TokenTransaction model"""
import enum
import uuid
from sqlalchemy import Column, String, ForeignKey, Index, DateTime, CheckConstraint
from datetime import datetime, timezone
from reelcoin.models.base import Base
from reelcoin.models.account import TokenAmount


class TransactionType(str, enum.Enum):
    REWARD = "reward"
    TRANSFER = "transfer"
    PURCHASE = "purchase"
    PREMIUM_PAYMENT = "premium_payment"


class TokenTransaction(Base):
    """Append-only token ledger.

    Amounts are magnitudes; direction is sender -> recipient. A NULL sender
    means tokens were minted, a NULL recipient means they were spent.
    """
    __tablename__ = "token_transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String(32), nullable=False)
    sender_id = Column(String(64), ForeignKey("accounts.id"), nullable=True, index=True)
    recipient_id = Column(String(64), ForeignKey("accounts.id"), nullable=True, index=True)
    content_tokens = Column(TokenAmount, default=0, nullable=False)
    view_tokens = Column(TokenAmount, default=0, nullable=False)
    content_item_id = Column(String(36), ForeignKey("content_items.id", ondelete="SET NULL"), nullable=True)
    item_id = Column(String(64), nullable=True)  # store item for purchases
    idempotency_key = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("content_tokens >= 0 AND view_tokens >= 0", name="ck_token_transactions_magnitudes"),
        Index('ix_token_transactions_sender_created', 'sender_id', 'created_at'),
        Index('ix_token_transactions_recipient_created', 'recipient_id', 'created_at'),
    )

    def to_dict(self, account_id=None):
        data = {
            'id': self.id,
            'type': self.type,
            'sender_id': self.sender_id,
            'recipient_id': self.recipient_id,
            'content_tokens': str(self.content_tokens),
            'view_tokens': str(self.view_tokens),
            'content_item_id': self.content_item_id,
            'item_id': self.item_id,
            'created_at': self.created_at.isoformat(),
        }
        if account_id is not None:
            data['direction'] = 'in' if self.recipient_id == account_id else 'out'
        return data
