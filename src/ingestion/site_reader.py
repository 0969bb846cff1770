"""Selector-driven site adapter.

Site: any source registered in ``data/sites.json``
Type: CSS selectors from the site's ``elements`` map
"""

import re
from typing import List, Optional
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup

from .adapter import (
    ChapterRef,
    ComicMetadata,
    ComicPage,
    FetchSession,
    SiteConfig,
    TitleRef,
)
from .chapters import parse_chapter_number
from .errors import SourceUnreachableError
from .logger import logger as LOGGER


_TITLE_NOISE_RE = re.compile(r"(komik|comic| Bahasa Indonesia)\s*", re.IGNORECASE)
_AUTHOR_LABEL_RE = re.compile(r"(pengarang|author)\s*", re.IGNORECASE)
_STATUS_LABEL_RE = re.compile(r"status\s*", re.IGNORECASE)

IMAGE_PROXY_PREFIX = "https://i0.wp.com/"


def clean_title(text: str) -> str:
    """Strip site boilerplate words such as "Komik" from a title."""
    return _TITLE_NOISE_RE.sub("", text or "").strip()


def proxy_image_url(url: str) -> str:
    """Route an https image through the i0.wp.com image CDN."""
    if url.startswith(IMAGE_PROXY_PREFIX) or not url.startswith("https://"):
        return url
    return IMAGE_PROXY_PREFIX + url[len("https://"):]


def _image_source(element) -> Optional[str]:
    img = element if element.name == "img" else element.select_one("img")
    if img is None:
        return None
    # data-src first for lazy loading themes
    return img.get("data-src") or img.get("src")


class SelectorSiteAdapter:
    """Reads titles, chapters and chapter images using configured CSS selectors."""

    def __init__(self, config: SiteConfig, session: FetchSession):
        self._config = config
        self.session = session

    @property
    def site_id(self) -> str:
        return self._config.site_id

    @property
    def config(self) -> SiteConfig:
        return self._config

    def _soup(self, url: str, wait_for: Optional[str] = None) -> BeautifulSoup:
        html = self.session.get_html(url, wait_for=wait_for)
        return BeautifulSoup(html, "html.parser")

    def _select_text(self, soup: BeautifulSoup, key: str) -> Optional[str]:
        selector = self._config.elements.get(key)
        if not selector:
            return None
        element = soup.select_one(selector)
        return element.get_text(strip=True) if element else None

    def list_titles(self, keyword: Optional[str] = None) -> List[TitleRef]:
        """List titles on the site's default page, or search results for a keyword.

        Args:
            keyword: Optional search term

        Returns:
            Titles in page order
        """
        elements = self._config.elements.get("listTitle", {})

        if keyword:
            if not self._config.search:
                raise SourceUnreachableError(f"Site {self.site_id} has no search URL configured", site=self.site_id)
            url = f"{self._config.search}{quote(keyword)}"
            if self._config.search_elements and self._config.search_elements.get("listTitle"):
                elements = self._config.search_elements["listTitle"]
        else:
            url = self._config.default

        LOGGER.info(f"Fetching titles from {url}")
        soup = self._soup(url, wait_for=elements["parent"])

        titles = []
        for item in soup.select(elements["parent"]):
            text_elem = item.select_one(elements["text"])
            link_elem = item.select_one(elements["link"])
            if text_elem is None or link_elem is None:
                continue

            href = link_elem.get("href", "")
            if not href:
                continue

            titles.append(TitleRef(text=text_elem.get_text(strip=True), link=urljoin(url, href)))

        LOGGER.info(f"{len(titles)} comics found on {self.site_id}")
        return titles

    def read_comic(self, link: str) -> ComicPage:
        """Read a comic page.

        Returns:
            Cleaned title, metadata and chapters in page order
        """
        chapter_elements = self._config.elements.get("chapter", {})
        soup = self._soup(link, wait_for=chapter_elements["parent"])

        title = clean_title(self._select_text(soup, "title") or "")

        chapters = []
        for item in soup.select(chapter_elements["parent"]):
            text_elem = item.select_one(chapter_elements["text"])
            link_elem = item.select_one(chapter_elements["link"])
            if link_elem is None or not link_elem.get("href"):
                continue

            number = parse_chapter_number(text_elem.get_text(" ", strip=True) if text_elem else "")
            chapters.append(ChapterRef(number=number, link=urljoin(link, link_elem["href"])))

        return ComicPage(title=title, link=link, chapters=chapters, metadata=self._read_metadata(soup, link))

    def _read_metadata(self, soup: BeautifulSoup, link: str) -> ComicMetadata:
        metadata = ComicMetadata()

        description = self._select_text(soup, "description")
        if description:
            metadata.description = clean_title(description)

        author = self._select_text(soup, "author")
        if author:
            metadata.author = _AUTHOR_LABEL_RE.sub("", author).strip()

        metadata.type_label = self._select_text(soup, "type")

        status = self._select_text(soup, "status")
        if status:
            metadata.status_label = _STATUS_LABEL_RE.sub("", status).strip()

        genre_selector = self._config.elements.get("genre")
        if genre_selector:
            metadata.genre_labels = [g.get_text(strip=True) for g in soup.select(genre_selector)]

        cover_selector = self._config.elements.get("cover")
        cover_elem = soup.select_one(cover_selector) if cover_selector else None
        if cover_elem is not None:
            src = _image_source(cover_elem)
            if src:
                metadata.cover_url = re.sub(r"\?.*", "", urljoin(link, src))

        return metadata

    def chapter_images(self, chapter_link: str, is_lazy_load: bool) -> List[str]:
        """Return a chapter's image URLs in reading order.

        Lazy-load sites keep the real image tags inside <noscript> blocks.
        """
        image_selector = self._config.elements.get("chapter", {}).get("image", "img")
        soup = self._soup(chapter_link, wait_for=None if is_lazy_load else image_selector)

        if is_lazy_load:
            candidates = []
            for noscript in soup.find_all("noscript"):
                inner = BeautifulSoup(noscript.decode_contents(), "html.parser")
                candidates.extend(inner.find_all("img"))
        else:
            candidates = soup.select(image_selector)

        urls = []
        for element in candidates:
            src = _image_source(element)
            if not src:
                continue
            url = urljoin(chapter_link, src.strip())
            urls.append(proxy_image_url(url) if self._config.image_proxy else url)
        return urls
