"""Pydantic schemas for accounts"""
from pydantic import BaseModel, Field


class CreateAccountRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
