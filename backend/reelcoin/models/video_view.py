"""VideoView model"""
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime, timezone
from reelcoin.models.base import Base


class VideoView(Base):
    """One row per (content item, viewer); repeat views are not recorded"""
    __tablename__ = "video_views"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    content_item_id = Column(String(36), ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False)
    viewer_id = Column(String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint('content_item_id', 'viewer_id', name='uq_video_views_item_viewer'),
    )
