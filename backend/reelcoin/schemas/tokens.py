"""Pydantic schemas for token operations"""
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional


class TransferRequest(BaseModel):
    recipient_transfer_code: str = Field(..., min_length=1, max_length=16)
    content_amount: Decimal = Decimal("0")
    view_amount: Decimal = Decimal("0")


class PurchaseRequest(BaseModel):
    item_id: str  # price is always taken from the catalog


class ContentRequest(BaseModel):
    is_video: bool = True
    category: Optional[str] = None
