"""
Pydantic models for dashboard API requests that have no counterpart in the
core request models.
"""
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class DeliverRequest(BaseModel):
    delivery_date: Optional[date] = None   # defaults to today


class TagRequest(BaseModel):
    name: str = Field(min_length=1)
