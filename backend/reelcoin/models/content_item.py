"""ContentItem model"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid
from reelcoin.models.base import Base


class ContentItem(Base):
    """Posted video or image (only the fields the ledger needs)"""
    __tablename__ = "content_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    is_video = Column(Boolean, default=True, nullable=False)
    category = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    owner = relationship("Account", back_populates="content_items")

    # Daily post-limit count filters on both
    __table_args__ = (
        Index('ix_content_items_owner_created', 'owner_id', 'created_at'),
    )
