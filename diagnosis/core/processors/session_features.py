"""
Session feature processors.

Contains business logic for computing behavioral feature vectors from the
raw interaction events of a completed session batch. Every time-based
feature goes through ``normalize_timestamp`` so durations, orderings and
time windows agree.
"""

import re
from collections import Counter, OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import structlog
from pydantic import ValidationError

from diagnosis.core.errors import EmptySessionError
from diagnosis.core.models.events import RawEvent
from diagnosis.core.models.features import SessionFeatureVector
from diagnosis.core.utils.metrics import DATA_QUALITY_EXCLUSIONS, SESSIONS_EXTRACTED
from diagnosis.core.utils.timestamps import normalize_timestamp

logger = structlog.get_logger(__name__)

EventInput = Union[RawEvent, Mapping[str, Any]]

# Reassurance touch keywords, matched against event name and page location
POLICY_PATTERN = re.compile(r"refund|return|shipping|terms|privacy|guarantee", re.IGNORECASE)
REVIEW_PATTERN = re.compile(r"review", re.IGNORECASE)
FIT_GUIDE_PATTERN = re.compile(r"size-guide|fit-guide|sizing", re.IGNORECASE)
BRAND_TRUST_PATTERN = re.compile(r"about|story|mission|security|certified", re.IGNORECASE)

CART_CHECKOUT_PATTERN = re.compile(r"/cart|/checkout", re.IGNORECASE)
CHECKOUT_PATH = "/checkout"

VIEW_ITEM = "view_item"
ADD_TO_CART = "add_to_cart"
BEGIN_CHECKOUT = "begin_checkout"
PURCHASE = "purchase"
SEARCH = "search"

DEFAULT_POGO_WINDOW_SECONDS = 60.0


def coerce_event(event: EventInput) -> RawEvent:
    """Validate a dict into a RawEvent, counting monetary values that had to be dropped."""
    if isinstance(event, RawEvent):
        return event

    raw = RawEvent.model_validate(dict(event))
    for field in ('item_price', 'value'):
        original = event.get(field)
        if original not in (None, "") and getattr(raw, field) is None:
            DATA_QUALITY_EXCLUSIONS.labels(reason=f'non_numeric_{field}').inc()
            logger.debug("Dropped non-numeric monetary value",
                         session_id=raw.session_id,
                         field=field,
                         value=str(original))
    return raw


def coerce_events(events: Iterable[EventInput]) -> List[RawEvent]:
    """
    Coerce a batch of records, skipping the ones that are not valid events.

    A record without a session id, event name or timestamp (or one that is
    not a mapping at all) is counted as an ``invalid_event`` exclusion.
    """
    valid = []
    for index, event in enumerate(events):
        try:
            valid.append(coerce_event(event))
        except (ValidationError, TypeError, ValueError) as e:
            DATA_QUALITY_EXCLUSIONS.labels(reason='invalid_event').inc()
            logger.debug("Skipped invalid event record",
                         index=index,
                         error=str(e))
    return valid


def order_events(events: Sequence[RawEvent]) -> List[Tuple[RawEvent, Optional[float]]]:
    """
    Pair events with their normalized timestamp and sort by it.

    The sort is stable; events whose timestamp cannot be parsed keep their
    input order after all parseable events.
    """
    parsed = []
    unparsed = []
    for event in events:
        millis = normalize_timestamp(event.event_timestamp)
        if millis is None:
            unparsed.append((event, None))
        else:
            parsed.append((event, millis))
    parsed.sort(key=lambda pair: pair[1])
    return parsed + unparsed


def _touch_text(event: RawEvent) -> str:
    return f"{event.event_name} {event.page_location or ''}"


def _is_checkout_event(event: RawEvent) -> bool:
    return event.event_name == BEGIN_CHECKOUT or CHECKOUT_PATH in (event.page_location or "").lower()


def _valid_view_price(event: RawEvent) -> Optional[float]:
    price = event.item_price
    if price is None:
        return None
    if price <= 0:
        DATA_QUALITY_EXCLUSIONS.labels(reason='non_positive_price').inc()
        logger.debug("Skipped non-positive price",
                     session_id=event.session_id,
                     item_id=event.item_id,
                     price=price)
        return None
    return price


def _price_stats(prices: List[float]) -> Tuple[float, float]:
    """Return (coefficient of variation, spread ratio) for positive prices."""
    if len(prices) < 2:
        return 0.0, 0.0
    values = np.asarray(prices, dtype=float)
    mean = float(values.mean())
    cv = float(values.std()) / mean if mean > 0 else 0.0
    low = float(values.min())
    spread = (float(values.max()) - low) / low if low > 0 else 0.0
    return cv, spread


def _count_pogo_transitions(ordered: List[Tuple[RawEvent, Optional[float]]],
                            window_seconds: float) -> int:
    views = [(e, ms) for e, ms in ordered if e.event_name == VIEW_ITEM and ms is not None]
    window_ms = window_seconds * 1000
    count = 0
    for (prev, prev_ms), (curr, curr_ms) in zip(views, views[1:]):
        if not prev.item_id or not curr.item_id or prev.item_id == curr.item_id:
            continue
        if curr_ms - prev_ms <= window_ms:
            count += 1
    return count


def _count_category_switches(categories: List[str]) -> int:
    return sum(1 for prev, curr in zip(categories, categories[1:]) if prev != curr)


def extract_session_features(session_id: str,
                             events: Iterable[EventInput],
                             pogo_window_seconds: float = DEFAULT_POGO_WINDOW_SECONDS) -> SessionFeatureVector:
    """
    Compute the feature vector for one session.

    Args:
        session_id: Session identifier
        events: All raw events of the session, in any order
        pogo_window_seconds: Max gap between two product views counted as a pogo transition

    Returns:
        SessionFeatureVector for the session

    Raises:
        EmptySessionError: if ``events`` is empty
    """
    session_events = coerce_events(events)
    if not session_events:
        raise EmptySessionError(session_id)

    ordered = order_events(session_events)
    timestamps = [ms for _, ms in ordered if ms is not None]
    unparsed_count = len(ordered) - len(timestamps)
    if unparsed_count:
        DATA_QUALITY_EXCLUSIONS.labels(reason='unparseable_timestamp').inc(unparsed_count)
        logger.debug("Events with unparseable timestamps",
                     session_id=session_id,
                     count=unparsed_count)

    ordered_events = [e for e, _ in ordered]

    # Session duration
    session_duration_min = (max(timestamps) - min(timestamps)) / 60000 if timestamps else 0.0

    # Product views
    view_events = [e for e in ordered_events if e.event_name == VIEW_ITEM]
    viewed_item_ids = [e.item_id for e in view_events if e.item_id]
    item_view_counts = Counter(viewed_item_ids)
    products_viewed = len(item_view_counts)
    return_views = sum(1 for count in item_view_counts.values() if count > 1)

    # Cart and funnel
    add_to_cart_count = sum(1 for e in ordered_events if e.event_name == ADD_TO_CART)
    reached_checkout = any(_is_checkout_event(e) for e in ordered_events)
    completed_purchase = any(e.event_name == PURCHASE for e in ordered_events)
    has_intent = add_to_cart_count > 0 or reached_checkout

    view_to_cart_rate = min(add_to_cart_count / products_viewed, 1.0) if products_viewed else 0.0

    # Search
    search_count = sum(1 for e in ordered_events if e.event_name == SEARCH or e.search_term)

    # Category behavior over time-ordered categorized views
    view_categories = [e.item_category for e in view_events if e.item_category]
    category_counts = Counter(view_categories)
    categories_viewed = list(OrderedDict.fromkeys(view_categories))
    primary_category = None
    same_category_ratio = 0.0
    if view_categories:
        top_count = max(category_counts.values())
        primary_category = next(c for c in categories_viewed if category_counts[c] == top_count)
        same_category_ratio = top_count / len(view_categories)
    category_switches = _count_category_switches(view_categories)

    # Price behavior
    viewed_prices = [p for p in (_valid_view_price(e) for e in view_events) if p is not None]
    price_range_cv, price_spread_ratio = _price_stats(viewed_prices)

    # Reassurance touches (independent counters)
    policy_views = review_interactions = fit_guide_views = brand_trust_views = 0
    evaluation_interactions = 0
    for event in ordered_events:
        text = _touch_text(event)
        matches = [
            bool(POLICY_PATTERN.search(text)),
            bool(REVIEW_PATTERN.search(text)),
            bool(FIT_GUIDE_PATTERN.search(text)),
            bool(BRAND_TRUST_PATTERN.search(text)),
        ]
        policy_views += matches[0]
        review_interactions += matches[1]
        fit_guide_views += matches[2]
        brand_trust_views += matches[3]
        if any(matches):
            evaluation_interactions += 1

    # Time on cart/checkout
    cart_checkout_ms = [ms for e, ms in ordered
                        if ms is not None and CART_CHECKOUT_PATTERN.search(e.page_location or "")]
    time_on_cart_checkout = ((max(cart_checkout_ms) - min(cart_checkout_ms)) / 60000
                             if len(cart_checkout_ms) >= 2 else 0.0)

    avg_time_per_product = (session_duration_min * 60 / products_viewed
                            if products_viewed and session_duration_min > 0 else 0.0)

    user_pseudo_id = next((e.user_pseudo_id for e in ordered_events if e.user_pseudo_id), None)

    features = SessionFeatureVector(
        session_id=session_id,
        user_pseudo_id=user_pseudo_id,
        event_count=len(session_events),
        products_viewed=products_viewed,
        product_view_events=len(view_events),
        add_to_cart_count=add_to_cart_count,
        search_count=search_count,
        category_count=len(categories_viewed),
        session_duration_minutes=session_duration_min,
        avg_time_per_product=avg_time_per_product,
        time_on_cart_checkout=time_on_cart_checkout,
        view_to_cart_rate=view_to_cart_rate,
        same_category_views_ratio=same_category_ratio,
        price_range_cv=price_range_cv,
        price_spread_ratio=price_spread_ratio,
        category_switches=category_switches,
        return_views=return_views,
        pogo_stick_count=_count_pogo_transitions(ordered, pogo_window_seconds),
        evaluation_interaction_count=evaluation_interactions,
        policy_views=policy_views,
        review_interactions=review_interactions,
        fit_guide_views=fit_guide_views,
        brand_trust_views=brand_trust_views,
        reached_checkout=int(reached_checkout),
        completed_purchase=int(completed_purchase),
        has_intent=int(has_intent),
        total_reassurance_touches=policy_views + review_interactions + fit_guide_views + brand_trust_views,
        policy_brand_views=policy_views + brand_trust_views,
        negative_review_focus=0,  # no review sentiment available
        categories_viewed=categories_viewed,
        primary_category=primary_category,
        viewed_prices=viewed_prices,
        parsed_timestamp_count=len(timestamps),
        first_event_ms=min(timestamps) if timestamps else None,
        last_event_ms=max(timestamps) if timestamps else None,
    )

    SESSIONS_EXTRACTED.inc()
    return features


def group_events_by_session(events: Iterable[EventInput]) -> "OrderedDict[str, List[RawEvent]]":
    """Group a batch by session id, preserving first-appearance order; invalid records are skipped."""
    grouped: "OrderedDict[str, List[RawEvent]]" = OrderedDict()
    for raw in coerce_events(events):
        grouped.setdefault(raw.session_id, []).append(raw)
    return grouped


def extract_all_session_features(events: Iterable[EventInput],
                                 max_workers: int = 1,
                                 pogo_window_seconds: float = DEFAULT_POGO_WINDOW_SECONDS) -> List[SessionFeatureVector]:
    """
    Compute one feature vector per distinct session id in a batch.

    With ``max_workers`` > 1 sessions are extracted across a thread pool;
    the result is always ordered by first appearance of the session id.
    """
    grouped = group_events_by_session(events)
    if not grouped:
        return []

    def _extract(item: Tuple[str, List[RawEvent]]) -> SessionFeatureVector:
        session_id, session_events = item
        return extract_session_features(session_id, session_events, pogo_window_seconds)

    items = list(grouped.items())
    if max_workers > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            # map() yields in submission order
            vectors = list(executor.map(_extract, items))
    else:
        vectors = [_extract(item) for item in items]

    logger.info("Extracted session features",
                session_count=len(vectors),
                workers=max_workers)
    return vectors
