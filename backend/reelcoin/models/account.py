"""Account model"""
from sqlalchemy import Column, String, Integer, Numeric, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from reelcoin.models.base import Base

# 8 decimal places of token precision
TOKEN_SCALE = 8
TokenAmount = Numeric(20, TOKEN_SCALE, asdecimal=True)


class Account(Base):
    """User profile and token balances.

    Balances are written only by the ledger service; ``version_id`` lets the
    mapper detect a lost update on flush.
    """
    __tablename__ = "accounts"

    id = Column(String(64), primary_key=True)  # identity provider subject
    username = Column(String(64), unique=True, nullable=False, index=True)
    content_tokens = Column(TokenAmount, default=0, nullable=False)
    view_tokens = Column(TokenAmount, default=0, nullable=False)
    transfer_code = Column(String(16), unique=True, nullable=False, index=True)
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    content_items = relationship("ContentItem", back_populates="owner")
    purchases = relationship("StorePurchase", back_populates="account")

    __table_args__ = (
        CheckConstraint("content_tokens >= 0", name="ck_accounts_content_tokens_non_negative"),
        CheckConstraint("view_tokens >= 0", name="ck_accounts_view_tokens_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<Account(id={self.id}, content={self.content_tokens}, view={self.view_tokens})>"
