"""
Journey timeline extraction for the representative session of a diagnosis.
"""

import re
from typing import Iterable, List, Mapping, Optional, Sequence

from diagnosis.core.models.features import SessionFeatureVector
from diagnosis.core.models.results import DetectionResult, JourneyEvent
from diagnosis.core.processors.session_features import (
    ADD_TO_CART,
    BEGIN_CHECKOUT,
    PURCHASE,
    VIEW_ITEM,
    EventInput,
    coerce_events,
    order_events,
)

JOURNEY_EVENT_NAMES = (VIEW_ITEM, ADD_TO_CART, BEGIN_CHECKOUT, PURCHASE)
JOURNEY_PAGE_PATTERN = re.compile(r"/(product|cart|checkout|category|collection)", re.IGNORECASE)


def _is_journey_event(event_name: str, page_location: Optional[str]) -> bool:
    if event_name in JOURNEY_EVENT_NAMES:
        return True
    return bool(page_location and JOURNEY_PAGE_PATTERN.search(page_location))


def extract_journey_timeline(session_id: str, events: Iterable[EventInput]) -> List[JourneyEvent]:
    """
    Extract the funnel-relevant steps of one session, ordered by normalized time.

    Events from other sessions are ignored, so the full batch may be passed.
    """
    session_events = [e for e in coerce_events(events) if e.session_id == session_id]

    timeline = []
    for event, millis in order_events(session_events):
        if not _is_journey_event(event.event_name, event.page_location):
            continue
        timeline.append(JourneyEvent(
            event_type=event.event_name if event.event_name in JOURNEY_EVENT_NAMES else "page_view",
            event_name=event.event_name,
            item_name=event.item_name,
            item_category=event.item_category,
            page_location=event.page_location,
            timestamp=str(event.event_timestamp),
            timestamp_ms=millis,
        ))
    return timeline


def find_representative_session(detected: Sequence[SessionFeatureVector],
                                results: Mapping[str, DetectionResult]) -> Optional[str]:
    """Session with the highest individual score; the first one wins ties."""
    best_id, best_score = None, None
    for features in detected:
        result = results.get(features.session_id)
        score = result.confidence_score if result else 0.0
        if best_score is None or score > best_score:
            best_id, best_score = features.session_id, score
    return best_id
