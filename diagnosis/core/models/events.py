"""
Raw event data models for behavioral diagnosis.

These models define the structure of interaction events handed to the
pipeline by the ingestion layer (GA4 / Shopify exports).
"""

import math
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


class RawEvent(BaseModel):
    """One user interaction within a session."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str
    event_name: str
    event_timestamp: Union[str, int, float]  # ISO string, seconds, millis or micros

    # Item data (view_item, add_to_cart, purchase)
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    item_category: Optional[str] = None
    item_price: Optional[float] = None

    # Transaction-level value (purchase)
    value: Optional[float] = None

    # Page data
    page_location: Optional[str] = None
    page_title: Optional[str] = None

    # Search data
    search_term: Optional[str] = None

    # User data
    user_pseudo_id: Optional[str] = None

    @field_validator('item_price', 'value', mode='before')
    @classmethod
    def coerce_money(cls, v):
        """Non-numeric monetary values become None rather than failing the row."""
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            number = float(v)
        else:
            try:
                number = float(str(v).strip())
            except ValueError:
                return None
        return number if math.isfinite(number) else None

    @field_validator('item_id', 'item_name', 'item_category', 'page_location',
                     'page_title', 'search_term', 'user_pseudo_id', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        text = str(v)
        return text if text.strip() else None

    @field_validator('session_id', 'event_name', mode='before')
    @classmethod
    def coerce_identifier(cls, v):
        """Missing or blank identifiers stay None so the record fails validation."""
        if v is None:
            return None
        text = v if isinstance(v, str) else str(v)
        return text if text.strip() else None
