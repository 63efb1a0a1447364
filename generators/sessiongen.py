#!/usr/bin/env python3
"""
Synthetic Session Batch Generator

Generates GA4-style e-commerce event exports with planted behavioral
archetypes, for exercising the diagnosis pipeline end to end.
Archetypes:
- comparison: long same-category browsing, revisits and searches, no cart
- trust: cart and checkout reached, policy/fit-guide checks, no purchase
- impulse: one to three quick product views, then exit
- normal: short browse, add to cart, checkout and purchase
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import click
import numpy as np
import pandas as pd
from faker import Faker

logger = logging.getLogger(__name__)

STORE_URL = "https://shop.example.com"

DEFAULT_MIX = {
    'comparison': 0.25,
    'trust': 0.2,
    'impulse': 0.25,
    'normal': 0.3,
}

TIMESTAMP_FORMATS = ('micros', 'millis', 'seconds', 'iso')


class SessionGenerator:
    """Generates synthetic session batches with planted archetypes."""

    def __init__(self, seed: int = 42, start_time: Optional[datetime] = None,
                 timestamp_format: str = 'micros'):
        if timestamp_format not in TIMESTAMP_FORMATS:
            raise ValueError(f"timestamp_format must be one of {TIMESTAMP_FORMATS}")

        self.fake = Faker()
        Faker.seed(seed)
        self.rng = np.random.default_rng(seed)
        self.timestamp_format = timestamp_format
        self.clock_ms = (start_time or datetime(2025, 1, 1, tzinfo=timezone.utc)).timestamp() * 1000

        # Product catalog
        self.categories = {
            'running-shoes': (80, 180),
            'rain-jackets': (90, 260),
            'backpacks': (40, 150),
            'yoga-mats': (20, 90),
        }
        self.products = self._generate_product_catalog()

        self.archetypes: Dict[str, Callable[[str, str], List[Dict[str, Any]]]] = {
            'comparison': self.comparison_paralysis_session,
            'trust': self.trust_risk_session,
            'impulse': self.impulse_session,
            'normal': self.normal_session,
        }

        logger.info(f"Initialized SessionGenerator with {len(self.products)} products")

    def _generate_product_catalog(self) -> Dict[str, List[Dict[str, Any]]]:
        """Generate a synthetic product catalog grouped by category."""
        catalog = {}
        product_id = 1
        for category, (low, high) in self.categories.items():
            items = []
            for _ in range(12):
                items.append({
                    'id': f"SKU{product_id:05d}",
                    'name': f"{self.fake.word().title()} {category.split('-')[0].title()}",
                    'category': category,
                    'price': round(float(self.rng.uniform(low, high)), 2),
                })
                product_id += 1
            catalog[category] = items
        return catalog

    # === Event helpers ===

    def _format_timestamp(self, millis: float):
        if self.timestamp_format == 'micros':
            return int(millis * 1000)
        if self.timestamp_format == 'millis':
            return int(millis)
        if self.timestamp_format == 'seconds':
            return int(millis // 1000)
        dt = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
        return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')

    def _advance(self, low_seconds: float, high_seconds: float) -> float:
        self.clock_ms += float(self.rng.uniform(low_seconds, high_seconds)) * 1000
        return self.clock_ms

    def _event(self, session_id: str, user_id: str, event_name: str, millis: float,
               product: Optional[Dict[str, Any]] = None, page_path: str = "/",
               **extra) -> Dict[str, Any]:
        event = {
            'session_id': session_id,
            'user_pseudo_id': user_id,
            'event_name': event_name,
            'event_timestamp': self._format_timestamp(millis),
            'page_location': f"{STORE_URL}{page_path}",
            'item_id': None,
            'item_name': None,
            'item_category': None,
            'item_price': None,
            'value': None,
            'search_term': None,
        }
        if product:
            event.update({
                'item_id': product['id'],
                'item_name': product['name'],
                'item_category': product['category'],
                'item_price': product['price'],
            })
        event.update(extra)
        return event

    def _view(self, session_id, user_id, product, low=20, high=50):
        return self._event(session_id, user_id, 'view_item', self._advance(low, high),
                           product, f"/products/{product['id'].lower()}")

    def _pick_products(self, category: str, count: int) -> List[Dict[str, Any]]:
        indices = self.rng.choice(len(self.products[category]), size=count, replace=False)
        return [self.products[category][int(i)] for i in indices]

    def _random_category(self) -> str:
        return str(self.rng.choice(list(self.categories)))

    # === Archetypes ===

    def comparison_paralysis_session(self, session_id: str, user_id: str) -> List[Dict[str, Any]]:
        category = self._random_category()
        products = self._pick_products(category, 7)
        events = [self._event(session_id, user_id, 'page_view', self._advance(1, 5),
                              page_path=f"/collections/{category}")]

        events.append(self._event(session_id, user_id, 'search', self._advance(10, 20),
                                  page_path="/search", search_term=category.replace('-', ' ')))
        for product in products:
            events.append(self._view(session_id, user_id, product, 35, 55))

        events.append(self._event(session_id, user_id, 'view_reviews', self._advance(20, 40),
                                  products[0], f"/products/{products[0]['id'].lower()}#reviews"))
        events.append(self._event(session_id, user_id, 'search', self._advance(10, 20),
                                  page_path="/search", search_term=f"best {category.replace('-', ' ')}"))
        for product in products[:3]:
            events.append(self._view(session_id, user_id, product, 35, 55))
        return events

    def trust_risk_session(self, session_id: str, user_id: str) -> List[Dict[str, Any]]:
        category = self._random_category()
        products = self._pick_products(category, 2)
        events = [self._view(session_id, user_id, p, 20, 40) for p in products]

        events.append(self._event(session_id, user_id, 'page_view', self._advance(15, 30),
                                  page_path="/pages/size-guide"))
        events.append(self._event(session_id, user_id, 'add_to_cart', self._advance(10, 20),
                                  products[0], "/cart"))
        events.append(self._event(session_id, user_id, 'page_view', self._advance(20, 40),
                                  page_path="/policies/refund-policy"))
        events.append(self._event(session_id, user_id, 'begin_checkout', self._advance(10, 30),
                                  products[0], "/checkout"))
        events.append(self._event(session_id, user_id, 'page_view', self._advance(30, 60),
                                  page_path="/policies/shipping-policy"))
        events.append(self._event(session_id, user_id, 'page_view', self._advance(20, 40),
                                  page_path="/checkout/information"))
        return events

    def impulse_session(self, session_id: str, user_id: str) -> List[Dict[str, Any]]:
        category = self._random_category()
        count = int(self.rng.integers(1, 4))
        return [self._view(session_id, user_id, p, 5, 20) for p in self._pick_products(category, count)]

    def normal_session(self, session_id: str, user_id: str) -> List[Dict[str, Any]]:
        category = self._random_category()
        products = self._pick_products(category, 2)
        events = [self._view(session_id, user_id, p, 30, 60) for p in products]
        chosen = products[-1]
        events.append(self._event(session_id, user_id, 'add_to_cart', self._advance(10, 30), chosen, "/cart"))
        events.append(self._event(session_id, user_id, 'begin_checkout', self._advance(20, 40), chosen, "/checkout"))
        events.append(self._event(session_id, user_id, 'purchase', self._advance(60, 120), chosen,
                                  "/checkout/thank-you", value=chosen['price']))
        return events

    # === Batch ===

    def generate_session(self, archetype: str) -> List[Dict[str, Any]]:
        if archetype not in self.archetypes:
            raise ValueError(f"Unknown archetype: {archetype}")
        session_id = self.fake.uuid4().replace('-', '')[:16]
        user_id = f"{int(self.rng.integers(10**9, 10**10))}.{int(self.rng.integers(10**9, 10**10))}"
        self._advance(60, 600)  # gap between sessions
        return self.archetypes[archetype](session_id, user_id)

    def generate_batch(self, sessions: int, mix: Optional[Dict[str, float]] = None) -> List[Dict[str, Any]]:
        """Generate ``sessions`` sessions drawn from the archetype mix."""
        mix = mix or DEFAULT_MIX
        names = list(mix)
        weights = np.asarray([mix[n] for n in names], dtype=float)
        weights = weights / weights.sum()

        events = []
        for archetype in self.rng.choice(names, size=sessions, p=weights):
            events.extend(self.generate_session(str(archetype)))

        logger.info(f"Generated {sessions} sessions with {len(events)} events")
        return events


@click.command()
@click.option('--sessions', '-n', default=200, help='Number of sessions to generate')
@click.option('--output', '-o', default='events.csv', type=click.Path(dir_okay=False), help='Output file (.csv or .json)')
@click.option('--timestamp-format', type=click.Choice(TIMESTAMP_FORMATS), default='micros', help='Timestamp encoding')
@click.option('--seed', default=42, help='Random seed')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(sessions, output, timestamp_format, seed, verbose):
    """Generate a synthetic GA4-style session export."""

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)

    try:
        generator = SessionGenerator(seed=seed, timestamp_format=timestamp_format)
        df = pd.DataFrame(generator.generate_batch(sessions))

        if output.lower().endswith('.json'):
            df.to_json(output, orient='records', indent=2)
        else:
            df.to_csv(output, index=False)

        click.echo(f"Wrote {len(df)} events for {sessions} sessions to {output}")

    except Exception as e:
        logger.error(f"Generator failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
