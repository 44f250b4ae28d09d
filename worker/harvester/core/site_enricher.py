"""Homepage email discovery for harvested places."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse, urlunparse

import requests
from bs4 import BeautifulSoup
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from harvester.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"

NON_WEB_SCHEMES = ("javascript:", "mailto:", "tel:", "data:", "ftp:")

EMAIL_REGEX = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
IGNORED_EMAIL_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico", ".css", ".js")
IGNORED_EMAIL_DOMAINS = (
    "example.com",
    "example.org",
    "domain.com",
    "yourdomain.com",
    "email.com",
    "sentry.io",
    "wixpress.com",
)


class PlaywrightRenderer:
    """Render pages in a browser context kept apart from the feed being harvested."""

    def __init__(self, browser: Any, timeout_ms: int = 15000) -> None:
        self._browser = browser
        self._context = None
        self._timeout_ms = timeout_ms

    def render(self, url: str) -> Tuple[str, str]:
        if self._context is None:
            self._context = self._browser.new_context()
        page = self._context.new_page()
        try:
            page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms)
            page.wait_for_timeout(2000)
            return page.url, page.content()
        finally:
            page.close()

    def close(self) -> None:
        if self._context is not None:
            self._context.close()
            self._context = None


def sanitize_website(raw_url: Optional[str]) -> Optional[str]:
    """Normalise raw website strings into absolute http(s) URLs."""

    if not raw_url:
        return None

    url = raw_url.strip()
    if not url or url.lower().startswith(NON_WEB_SCHEMES):
        return None

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")

    if not parsed.netloc or parsed.scheme not in {"http", "https"}:
        return None

    normalized_path = parsed.path or "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    return urlunparse(parsed._replace(path=normalized_path, fragment=""))


def fetch_url(session: requests.Session, url: str, *, timeout: float) -> Optional[Tuple[str, str]]:
    """Fetch a URL and return the final URL + body when it is a successful HTML response."""

    try:
        response = session.get(url, timeout=timeout, allow_redirects=True)
        response.raise_for_status()
    except requests.RequestException as exc:  # noqa: BLE001
        logger.warning("Failed to fetch %s: %s", url, exc)
        return None

    content_type = response.headers.get("Content-Type", "").lower()
    if "html" not in content_type:
        logger.debug("Skipping non-HTML content at %s (content-type=%s)", url, content_type)
        return None
    return response.url, response.text


def is_plausible_email(email: str) -> bool:
    lowered = email.lower()
    if lowered.endswith(IGNORED_EMAIL_SUFFIXES):
        return False
    domain = lowered.rsplit("@", 1)[-1]
    return not any(domain == ignored or domain.endswith(f".{ignored}") for ignored in IGNORED_EMAIL_DOMAINS)


def extract_emails(text: str) -> List[str]:
    """Return plausible emails in order of first appearance."""

    emails: List[str] = []
    seen: Set[str] = set()
    for match in EMAIL_REGEX.finditer(text or ""):
        email = match.group(0)
        if email.lower() in seen:
            continue
        seen.add(email.lower())
        if is_plausible_email(email):
            emails.append(email)
    return emails


def first_email(text: str) -> Optional[str]:
    emails = extract_emails(text)
    return emails[0] if emails else None


def _mailto_addresses(soup: BeautifulSoup) -> Iterable[str]:
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.lower().startswith("mailto:"):
            value = href.split(":", 1)[1].split("?")[0].strip()
            if value:
                yield value


class EmailEnricher:
    """Look up a contact email on a place's homepage.

    Only the homepage itself is consulted. Any failure leaves the email absent;
    nothing is raised to the caller.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        renderer: Optional[PlaywrightRenderer] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.timeout = self.settings.enrich_timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.session.headers.setdefault("Accept", "text/html,application/xhtml+xml")
        self.session.headers.setdefault("Accept-Language", "en-US,en;q=0.9")
        self.renderer = renderer if self.settings.enrich_use_js_renderer else None

    def _fetch_with_js(self, url: str) -> Optional[str]:
        if not self.renderer:
            return None
        try:
            _, html = self.renderer.render(url)
            return html
        except PlaywrightTimeoutError:
            logger.warning("Playwright timed out fetching %s", url)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Playwright failed for %s: %s", url, exc)
        return None

    def enrich(self, website: Optional[str]) -> Optional[str]:
        url = sanitize_website(website)
        if not url:
            logger.debug("Skipping enrichment for unusable website %r", website)
            return None

        try:
            logger.info("Fetching website for email: %s", url)
            fetched = fetch_url(self.session, url, timeout=self.timeout)
            html = fetched[1] if fetched else self._fetch_with_js(url)
            if not html:
                return None

            # mailto links win; then the raw markup, so JSON-LD and inline scripts are covered.
            soup = BeautifulSoup(html, "html.parser")
            email = first_email(" ".join(_mailto_addresses(soup))) or first_email(html)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to extract email from %s: %s", url, exc)
            return None

        if email:
            logger.info("Found email: %s", email)
        else:
            logger.info("No email found on homepage %s", url)
        return email

    def close(self) -> None:
        self.session.close()
        if self.renderer:
            self.renderer.close()

    def __enter__(self) -> "EmailEnricher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()
