"""Comic rating lookup on MangaDex.

Site: https://api.mangadex.org
Type: public JSON API, no authentication

A rating is nice to have when a comic is created. Every failure is logged
and the comic is created without one.
"""

from typing import Optional

import requests

from .logger import logger as LOGGER


class MangaDexRatings:
    """Look up a comic's community rating by title."""

    BASE_URL = "https://api.mangadex.org"

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None,
                 base_url: str = BASE_URL):
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _get_json(self, path: str, params: Optional[dict] = None) -> dict:
        response = self.session.get(f"{self.base_url}/{path}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def lookup(self, title: str) -> Optional[str]:
        """Return the rating of the best title match formatted as "8.52", or None."""
        try:
            found = self._get_json("manga", params={"title": title, "limit": 1})
            matches = found.get("data") or []
            if not matches:
                LOGGER.info(f"comic-rating: {title} not found on MangaDex")
                return None

            manga_id = matches[0]["id"]
            stats = self._get_json(f"statistics/manga/{manga_id}")
            rating = stats["statistics"][manga_id]["rating"]
            value = rating.get("bayesian") or rating.get("average")
            value = float(value) if value is not None else None
        except (requests.RequestException, ValueError, KeyError, TypeError, AttributeError) as e:
            LOGGER.error(f"comic-rating: Failed for {title}: {e}")
            return None

        if value is None:
            return None
        LOGGER.info(f"comic-rating: {title} rated {value:.2f}")
        return f"{value:.2f}"

    def close(self) -> None:
        self.session.close()
