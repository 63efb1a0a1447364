"""
Feature data models for behavioral diagnosis.

These models define the per-session feature vector that detection rules,
driver definitions and evidence aggregation read from.
"""

import math
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionFeatureVector(BaseModel):
    """Computed behavioral features for one session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    user_pseudo_id: Optional[str] = None

    # Count features
    event_count: int = Field(default=0, ge=0)
    products_viewed: int = Field(default=0, ge=0)  # unique item ids
    product_view_events: int = Field(default=0, ge=0)
    add_to_cart_count: int = Field(default=0, ge=0)
    search_count: int = Field(default=0, ge=0)
    category_count: int = Field(default=0, ge=0)

    # Duration features
    session_duration_minutes: float = Field(default=0.0, ge=0)
    avg_time_per_product: float = Field(default=0.0, ge=0)  # seconds
    time_on_cart_checkout: float = Field(default=0.0, ge=0)  # minutes

    # Ratio features
    view_to_cart_rate: float = Field(default=0.0, ge=0, le=1)
    same_category_views_ratio: float = Field(default=0.0, ge=0, le=1)
    price_range_cv: float = Field(default=0.0, ge=0)
    price_spread_ratio: float = Field(default=0.0, ge=0)

    # Behavioral counters
    category_switches: int = Field(default=0, ge=0)
    return_views: int = Field(default=0, ge=0)
    pogo_stick_count: int = Field(default=0, ge=0)
    evaluation_interaction_count: int = Field(default=0, ge=0)

    # Trust & risk counters
    policy_views: int = Field(default=0, ge=0)
    review_interactions: int = Field(default=0, ge=0)
    fit_guide_views: int = Field(default=0, ge=0)
    brand_trust_views: int = Field(default=0, ge=0)

    # Funnel flags (0 or 1)
    reached_checkout: int = Field(default=0, ge=0, le=1)
    completed_purchase: int = Field(default=0, ge=0, le=1)
    has_intent: int = Field(default=0, ge=0, le=1)

    # Composite features
    total_reassurance_touches: int = Field(default=0, ge=0)
    policy_brand_views: int = Field(default=0, ge=0)
    negative_review_focus: int = Field(default=0, ge=0, le=1)  # stub, no sentiment analysis

    # Descriptive data
    categories_viewed: List[str] = Field(default_factory=list)
    primary_category: Optional[str] = None
    viewed_prices: List[float] = Field(default_factory=list)

    # Metadata
    parsed_timestamp_count: int = Field(default=0, ge=0)
    first_event_ms: Optional[float] = None
    last_event_ms: Optional[float] = None

    def get_metric(self, metric: str) -> Optional[float]:
        """
        Look up a numeric feature by id.

        Returns None for unknown ids and non-numeric fields so condition
        evaluation can fail closed.
        """
        if metric not in type(self).model_fields:
            return None
        value = getattr(self, metric)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
