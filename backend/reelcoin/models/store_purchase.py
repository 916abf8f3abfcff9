"""StorePurchase model"""
import uuid
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from reelcoin.models.base import Base


class StorePurchase(Base):
    """Purchase history; ``active`` rows grant entitlements"""
    __tablename__ = "store_purchases"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(String(64), nullable=False)
    price = Column(Integer, nullable=False)  # content tokens, 0 for fiat-paid premium
    active = Column(Boolean, default=True, nullable=False)
    payment_reference = Column(String(255), unique=True, nullable=True)  # Stripe payment intent/session
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    account = relationship("Account", back_populates="purchases")

    __table_args__ = (
        Index('ix_store_purchases_user_item_active', 'user_id', 'item_id', 'active'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'item_id': self.item_id,
            'price': self.price,
            'active': self.active,
            'created_at': self.created_at.isoformat(),
        }
