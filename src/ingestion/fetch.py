"""Fetch sessions for site adapters and HTTP error classification."""

import random
from typing import Optional, Type

import requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from .adapter import SiteConfig
from .errors import (
    IngestionError,
    SourceUnreachableError,
    TransientError,
)
from .logger import logger as LOGGER


USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:120.0) Gecko/20100101 Firefox/120.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
]

DEFAULT_HEADERS = {
    "Referer": "https://www.google.com/",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9",
    "Accept-Language": "en-US,en;q=0.5",
}


def random_user_agent() -> str:
    """Pick a desktop browser User-Agent; each session gets its own."""
    return random.choice(USER_AGENTS)


def _is_connection_reset(exc: BaseException) -> bool:
    """Walk the exception chain looking for a ConnectionResetError."""
    seen = set()
    stack = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, ConnectionResetError):
            return True
        stack.append(current.__cause__)
        stack.append(current.__context__)
        stack.extend(arg for arg in getattr(current, "args", ()) if isinstance(arg, BaseException))
    return False


def classify_status(
    status: int,
    message: str,
    client_error: Type[IngestionError] = SourceUnreachableError,
    **context,
) -> IngestionError:
    """Map an HTTP error status to an ingestion error.

    5xx and 429 are transient; other 4xx use ``client_error``.
    """
    if status >= 500 or status == 429:
        return TransientError(message, status=status, **context)
    return client_error(message, status=status, **context)


def classify_request_error(
    exc: requests.RequestException,
    client_error: Type[IngestionError] = SourceUnreachableError,
    unreachable_error: Type[IngestionError] = SourceUnreachableError,
    **context,
) -> IngestionError:
    """Convert a requests exception into a classified ingestion error."""
    response = getattr(exc, "response", None)
    if response is not None:
        return classify_status(response.status_code, str(exc), client_error, **context)

    if isinstance(exc, (requests.Timeout, requests.exceptions.ChunkedEncodingError)):
        return TransientError(str(exc), **context)
    if isinstance(exc, requests.ConnectionError):
        if _is_connection_reset(exc):
            return TransientError(f"Connection reset: {exc}", **context)
        return unreachable_error(f"Host unreachable: {exc}", **context)
    return TransientError(str(exc), **context)


class HttpFetchSession:
    """Plain HTTP fetch session backed by a requests.Session."""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None,
                 user_agent: Optional[str] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self.session.headers["User-Agent"] = user_agent or random_user_agent()

    def get_html(self, url: str, wait_for: Optional[str] = None) -> str:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise classify_request_error(e, link=url) from e
        return response.text

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class BrowserFetchSession:
    """Headless Chromium fetch session for sites that render chapters client-side.

    The browser is only launched on the first request.
    """

    def __init__(self, timeout: float = 30.0, headless: bool = True, user_agent: Optional[str] = None):
        self.timeout = timeout
        self.headless = headless
        self.user_agent = user_agent or random_user_agent()
        self._playwright = None
        self._browser = None
        self._page = None

    def _ensure_page(self):
        if self._page is None:
            LOGGER.info("Launching browser")
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(headless=self.headless, args=["--no-sandbox"])
            self._page = self._browser.new_page(user_agent=self.user_agent)
        return self._page

    def get_html(self, url: str, wait_for: Optional[str] = None) -> str:
        page = self._ensure_page()
        timeout_ms = self.timeout * 1000

        try:
            response = page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if response is not None and response.status >= 400:
                raise classify_status(response.status, f"HTTP {response.status} for {url}", link=url)
            if wait_for:
                page.wait_for_selector(wait_for, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TransientError(f"Timed out loading page: {e}", link=url) from e
        except PlaywrightError as e:
            raise SourceUnreachableError(f"Browser failed to load page: {e}", link=url) from e

        return page.content()

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
        if self._playwright is not None:
            self._playwright.stop()
        self._page = None
        self._browser = None
        self._playwright = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def open_session(config: SiteConfig, timeout: float = 30.0):
    """Return the fetch session a site needs."""
    if config.use_browser:
        return BrowserFetchSession(timeout=timeout)
    return HttpFetchSession(timeout=timeout)
