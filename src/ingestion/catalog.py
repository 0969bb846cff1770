"""Client for the catalog API that stores comics and chapters."""

import mimetypes
from contextlib import ExitStack
from decimal import Decimal
from pathlib import Path
from typing import Optional

import requests

from .adapter import ChapterUploadReceipt, ComicRecord
from .chapters import format_number, normalize_number
from .errors import (
    CatalogError,
    DataIntegrityError,
    IngestionError,
    StructuralRejectError,
    UnclassifiedError,
)
from .fetch import classify_request_error, classify_status
from .logger import logger as LOGGER


def _payload(response: requests.Response) -> Optional[dict]:
    """Return the response object, unwrapped from ``payload``; None when the body is not a JSON object."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("payload"), dict):
        return body["payload"]
    return body if isinstance(body, dict) else None


def classify_chapter_rejection(response: requests.Response, **context) -> IngestionError:
    """Classify a failed chapter upload by its status and field errors."""
    if response.status_code != 422:
        return classify_status(
            response.status_code,
            f"Chapter upload failed with HTTP {response.status_code}",
            client_error=UnclassifiedError,
            **context,
        )

    body = _payload(response)
    errors = body.get("errors") if body is not None else None
    if not isinstance(errors, dict):
        return UnclassifiedError(f"Chapter rejected: {response.text[:200]!r}", status=422, **context)

    if "number" in errors:
        return StructuralRejectError(f"Chapter number rejected: {errors['number']}", status=422, **context)
    if any(name == "images" or name.startswith("images.") for name in errors):
        return DataIntegrityError(f"Chapter images rejected: {sorted(errors)}", status=422, **context)
    return UnclassifiedError(f"Chapter rejected: {errors}", status=422, **context)


class HttpCatalogClient:
    """Catalog API over HTTP, authenticated with a static access token."""

    def __init__(self, endpoint: str, access_token: str, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": access_token, "Accept": "application/json"})

    def _url(self, path: str) -> str:
        return f"{self.endpoint}/api/{path}"

    def find_comic(self, name: str) -> Optional[ComicRecord]:
        """Look up a comic by exact name.

        Returns:
            The comic with its ingested chapter numbers, or None when absent

        Raises:
            CatalogError: On any failure other than 404
        """
        try:
            response = self.session.get(self._url("comics/find-one"), params={"name": name}, timeout=self.timeout)
        except requests.RequestException as e:
            raise CatalogError(f"Failed to look up comic {name!r}: {e}") from e

        if response.status_code == 404:
            return None
        if not response.ok:
            raise CatalogError(
                f"Failed to look up comic {name!r}: HTTP {response.status_code}", status=response.status_code
            )

        payload = _payload(response)
        if payload is None or "id" not in payload:
            raise CatalogError(f"Unreadable catalog response for comic {name!r}", status=response.status_code)
        numbers = frozenset(normalize_number(c["number"]) for c in payload.get("chapters") or [])
        return ComicRecord(id=str(payload["id"]), title=payload.get("name", name), ingested_chapter_numbers=numbers)

    def create_comic(self, payload: dict, cover: Optional[Path] = None) -> ComicRecord:
        """Create a comic record.

        Raises:
            CatalogError: When the catalog refuses the comic
        """
        data = {key: value for key, value in payload.items() if value is not None and key != "genres"}
        if payload.get("genres"):
            data["genres[]"] = list(payload["genres"])

        with ExitStack() as stack:
            files = None
            if cover is not None:
                mime = mimetypes.guess_type(cover.name)[0] or "application/octet-stream"
                files = {"image": (cover.name, stack.enter_context(open(cover, "rb")), mime)}

            try:
                response = self.session.post(self._url("comics"), data=data, files=files, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                raise CatalogError(f"Failed to create comic {payload.get('name')!r}: {e}") from e

        created = _payload(response)
        if created is None or "id" not in created:
            raise CatalogError(f"Unreadable catalog response creating comic {payload.get('name')!r}",
                               status=response.status_code)
        LOGGER.info(f"Comic {created.get('name', payload.get('name'))} created with ID {created['id']}")
        return ComicRecord(id=str(created["id"]), title=created.get("name", payload.get("name", "")))

    def create_chapter(self, comic_id: str, number: Decimal, images: list[Path]) -> ChapterUploadReceipt:
        """Upload a chapter with its ordered page images.

        Raises:
            IngestionError: Classified upload failure
        """
        label = format_number(number)
        context = {"comic": comic_id, "chapter_number": label}
        data = {"comic_id": comic_id, "number": label, "name": f"Chapter {label}"}

        with ExitStack() as stack:
            files = [
                ("images[]", (path.name, stack.enter_context(open(path, "rb")),
                              mimetypes.guess_type(path.name)[0] or "image/webp"))
                for path in images
            ]

            try:
                response = self.session.post(self._url("chapters"), data=data, files=files, timeout=self.timeout)
            except requests.RequestException as e:
                raise classify_request_error(
                    e, client_error=UnclassifiedError, unreachable_error=UnclassifiedError, **context
                ) from e

        if not response.ok:
            raise classify_chapter_rejection(response, **context)

        created = _payload(response)
        if created is None:
            LOGGER.warning(f"Chapter {label} of comic {comic_id} uploaded but the response was unreadable")
            return ChapterUploadReceipt(chapter_id=None, slug=None)
        chapter_id = created.get("id")
        return ChapterUploadReceipt(chapter_id=str(chapter_id) if chapter_id is not None else None,
                                    slug=created.get("slug"))
