"""Playwright driver for the Google Maps search results feed."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from harvester.core.config import Settings, get_settings
from harvester.core.feed_harvester import FeedLoadError
from harvester.core.models import Query
from harvester.core.site_enricher import PlaywrightRenderer

logger = logging.getLogger(__name__)

GOOGLE_MAPS_URL = "https://www.google.com/maps/search/"
FEED_SELECTOR = 'div[role="feed"]'
CARD_SELECTOR = 'div[role="feed"] > div > div[jsaction]'
CARD_NAME_SELECTOR = "a[aria-label]"
END_OF_LIST_MARKERS = ("You've reached the end of the list", "You've reached the end")
LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]
RETRY_DELAY_SECONDS = 1.2

# Runs inside the page once a card has been clicked; returns raw strings only,
# parsing happens in harvester.etl.transform.
PLACE_PANEL_SCRIPT = """
() => {
    const text = (el) => (el && el.textContent ? el.textContent.trim() : null);
    const pane = document.querySelector('div[role="main"][aria-label]') || document.body;
    const raw = {
        name: text(document.querySelector('h1[class*="fontHeadlineLarge"]')) || text(pane.querySelector('h1')),
        category: text(document.querySelector('button[jsaction*="category"]')),
        rating_text: text(document.querySelector('div[jsaction*="pane.rating"]')),
        website_href: null,
        phone_label: null,
        address_text: null,
        plus_code: text(document.querySelector('button[data-item-id="oloc"]')),
        price_level: text(document.querySelector('span[aria-label*="Price"]')),
        full_text: pane.innerText || pane.textContent || '',
    };
    for (const el of document.querySelectorAll('[data-item-id]')) {
        const id = el.getAttribute('data-item-id') || '';
        const label = el.getAttribute('aria-label') || '';
        const lowered = label.toLowerCase();
        if (!raw.website_href && (id === 'authority' || lowered.includes('website'))) {
            const link = el.tagName === 'A' ? el : el.querySelector('a');
            raw.website_href = link ? link.getAttribute('href') : el.getAttribute('href');
        }
        if (!raw.phone_label && (id.startsWith('phone') || lowered.includes('phone') || lowered.includes('call'))) {
            raw.phone_label = label || text(el);
        }
        if (!raw.address_text && id.startsWith('address')) {
            raw.address_text = text(el);
        }
    }
    return raw;
}
"""


def build_search_url(query: Query, language: str = "en") -> str:
    search = f"{query.search_term.strip()} {query.location.strip()}"
    return f"{GOOGLE_MAPS_URL}{quote(search, safe='')}?hl={quote(language, safe='')}"


class GoogleMapsFeed:
    """Drive one browser through the search feed of successive queries.

    Each `open()` gets a fresh browser context so nothing rendered for one query
    is visible to the next.
    """

    def __init__(self, *, settings: Optional[Settings] = None, language: str = "en") -> None:
        self.settings = settings or get_settings()
        self.language = language
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    def _ensure_browser(self) -> None:
        if self._playwright is None:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(headless=self.settings.headless, args=LAUNCH_ARGS)
            logger.info("Browser launched (headless=%s)", self.settings.headless)

    def _navigate(self, url: str) -> None:
        attempts = self.settings.max_request_retries + 1
        attempt = 0
        while True:
            attempt += 1
            try:
                logger.info("Navigating (attempt %s/%s) to %s", attempt, attempts, url)
                self._page.goto(url, wait_until="domcontentloaded", timeout=self.settings.navigation_timeout_ms)
                return
            except PlaywrightError as exc:
                logger.warning("Navigation failed (attempt %s/%s): %s", attempt, attempts, exc)
                if attempt >= attempts:
                    raise FeedLoadError(f"navigation to {url} failed after {attempts} attempts") from exc
                time.sleep(RETRY_DELAY_SECONDS + random.uniform(0, 0.8))

    def open(self, query: Query) -> None:
        """Navigate to the query's results and wait for the feed to render."""
        self._ensure_browser()
        self.release()
        self._context = self._browser.new_context(locale=self.language)
        self._page = self._context.new_page()

        url = build_search_url(query, self.language)
        self._navigate(url)

        try:
            self._page.wait_for_selector(FEED_SELECTOR, timeout=self.settings.feed_wait_timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise FeedLoadError(f"results feed did not render for {url}") from exc
        self._page.wait_for_timeout(self.settings.feed_settle_ms)

    def reached_end(self) -> bool:
        try:
            body = self._page.evaluate("() => document.body.textContent || ''")
        except PlaywrightError as exc:
            logger.debug("End-of-list check failed: %s", exc)
            return False
        return any(marker in body for marker in END_OF_LIST_MARKERS)

    def items(self) -> List[Any]:
        try:
            return self._page.query_selector_all(CARD_SELECTOR)
        except PlaywrightError as exc:
            raise FeedLoadError(f"results feed became unreadable: {exc}") from exc

    def describe(self, card: Any) -> Optional[Dict[str, Any]]:
        """Open a card's detail panel and return its raw fields."""
        link = card.query_selector(CARD_NAME_SELECTOR)
        card_name = link.get_attribute("aria-label") if link else None
        if not card_name:
            return None

        logger.info("Opening place: %s", card_name)
        card.click()
        self._page.wait_for_timeout(self.settings.detail_delay_ms)
        return self._page.evaluate(PLACE_PANEL_SCRIPT)

    def advance(self) -> bool:
        """Scroll the feed to the bottom; True when it grew."""
        try:
            feed = self._page.query_selector(FEED_SELECTOR)
            if not feed:
                logger.warning("Could not find scrollable results panel")
                return False
            previous_height = feed.evaluate("(el) => el.scrollHeight")
            feed.evaluate("(el) => { el.scrollTop = el.scrollHeight; }")
            self._page.wait_for_timeout(self.settings.scroll_delay_ms)
            return feed.evaluate("(el) => el.scrollHeight") > previous_height
        except PlaywrightError as exc:
            logger.warning("Scroll failed: %s", exc)
            return False

    def renderer(self) -> PlaywrightRenderer:
        self._ensure_browser()
        return PlaywrightRenderer(self._browser, timeout_ms=self.settings.enrich_timeout_seconds * 1000)

    def release(self) -> None:
        """Drop the current query's browser context."""
        if self._context is not None:
            try:
                self._context.close()
            except PlaywrightError as exc:
                logger.warning("Closing browser context failed: %s", exc)
        self._context = None
        self._page = None

    def close(self) -> None:
        self.release()
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def __enter__(self) -> "GoogleMapsFeed":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
