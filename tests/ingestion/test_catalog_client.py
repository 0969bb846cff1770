"""Tests for the catalog API client."""

import json
import tempfile
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from src.ingestion.catalog import HttpCatalogClient, classify_chapter_rejection
from src.ingestion.errors import (
    CatalogError,
    DataIntegrityError,
    ErrorKind,
    StructuralRejectError,
    TransientError,
    UnclassifiedError,
)


def _response(status, body=None):
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(body if body is not None else {}).encode()
    response.headers["content-type"] = "application/json"
    return response


def _raw_response(status, content: bytes, content_type="text/html"):
    response = requests.Response()
    response.status_code = status
    response._content = content
    response.headers["content-type"] = content_type
    return response


@pytest.fixture
def session():
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def pages():
    """Create two staged page files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        paths = []
        for i in range(2):
            path = Path(tmpdir) / f"{i:03d}.webp"
            path.write_bytes(b"RIFF0000WEBP")
            paths.append(path)
        yield paths


def test_client_sets_auth_header(session):
    """Test the access token is sent on every request."""
    HttpCatalogClient("https://catalog.test/", "secret", session=session)

    assert session.headers["Authorization"] == "secret"


def test_find_comic_returns_record_with_normalized_numbers(session):
    """Test chapter numbers from the catalog are normalized."""
    session.get.return_value = _response(200, {"payload": {
        "id": 42, "name": "Solo Hero", "chapters": [{"number": "1"}, {"number": 2.5}, {"number": "3.0"}],
    }})
    client = HttpCatalogClient("https://catalog.test/", "secret", session=session)

    record = client.find_comic("Solo Hero")

    assert record.id == "42"
    assert record.title == "Solo Hero"
    assert record.ingested_chapter_numbers == {Decimal(1), Decimal("2.5"), Decimal(3)}
    url = session.get.call_args[0][0]
    assert url == "https://catalog.test/api/comics/find-one"
    assert session.get.call_args[1]["params"] == {"name": "Solo Hero"}


def test_find_comic_not_found_returns_none(session):
    """Test a 404 means the comic does not exist yet."""
    session.get.return_value = _response(404, {"message": "not found"})
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    assert client.find_comic("Missing") is None


def test_find_comic_other_errors_are_fatal(session):
    """Test lookup failures other than 404 raise CatalogError."""
    session.get.return_value = _response(500)
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    with pytest.raises(CatalogError) as excinfo:
        client.find_comic("Solo Hero")
    assert excinfo.value.status == 500

    session.get.side_effect = requests.ConnectionError("refused")
    with pytest.raises(CatalogError):
        client.find_comic("Solo Hero")


def test_create_comic_sends_genres_as_list(session):
    """Test genres are sent as a repeated multipart field."""
    session.post.return_value = _response(201, {"payload": {"id": 7, "name": "Solo Hero"}})
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    record = client.create_comic({"name": "Solo Hero", "genres": ["g1", "g2"], "rating": None})

    assert record.id == "7"
    data = session.post.call_args[1]["data"]
    assert data["genres[]"] == ["g1", "g2"]
    assert "rating" not in data


def test_create_comic_failure_is_fatal(session):
    """Test a refused comic raises CatalogError."""
    session.post.return_value = _response(422, {"errors": {"name": ["taken"]}})
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    with pytest.raises(CatalogError):
        client.create_comic({"name": "Solo Hero"})


def test_create_chapter_uploads_pages_in_order(session, pages):
    """Test the chapter is posted with its pages as ordered images[] parts."""
    session.post.return_value = _response(201, {"payload": {"id": 99, "slug": "solo-hero-5"}})
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    receipt = client.create_chapter("42", Decimal("5.0"), pages)

    assert receipt.chapter_id == "99"
    assert receipt.slug == "solo-hero-5"
    kwargs = session.post.call_args[1]
    assert kwargs["data"] == {"comic_id": "42", "number": "5", "name": "Chapter 5"}
    assert [part[1][0] for part in kwargs["files"]] == ["000.webp", "001.webp"]
    assert all(part[0] == "images[]" for part in kwargs["files"])


def test_create_chapter_number_rejection_is_structural(session, pages):
    """Test a 422 on the number field is a structural reject."""
    session.post.return_value = _response(422, {"errors": {"number": ["has already been taken"]}})
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    with pytest.raises(StructuralRejectError) as excinfo:
        client.create_chapter("42", Decimal(5), pages)
    assert excinfo.value.critical is False
    assert excinfo.value.chapter_number == "5"


def test_create_chapter_server_error_is_transient(session, pages):
    """Test a 502 from the catalog can be retried."""
    session.post.return_value = _response(502)
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    with pytest.raises(TransientError):
        client.create_chapter("42", Decimal(5), pages)


def test_create_chapter_timeout_is_transient(session, pages):
    """Test request timeouts are retryable."""
    session.post.side_effect = requests.Timeout("read timed out")
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    with pytest.raises(TransientError):
        client.create_chapter("42", Decimal(5), pages)


def test_classify_chapter_rejection():
    """Test validation errors map to the expected kinds."""
    images = classify_chapter_rejection(_response(422, {"errors": {"images.3": ["invalid"]}}))
    other = classify_chapter_rejection(_response(422, {"errors": {"name": ["too long"]}}))
    forbidden = classify_chapter_rejection(_response(403))

    assert isinstance(images, DataIntegrityError)
    assert images.critical is True
    assert isinstance(other, UnclassifiedError)
    assert forbidden.kind is ErrorKind.UNCLASSIFIED
    assert forbidden.critical is False


def test_create_chapter_catalog_unreachable_is_not_critical(session, pages):
    """Test an unreachable catalog never sends the chapter to failover."""
    session.post.side_effect = requests.ConnectionError("Name or service not known")
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    with pytest.raises(UnclassifiedError) as excinfo:
        client.create_chapter("42", Decimal(5), pages)
    assert excinfo.value.critical is False


def test_create_chapter_unreadable_success_body(session, pages):
    """Test an accepted upload with an empty body still counts as uploaded."""
    session.post.return_value = _raw_response(201, b"")
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    receipt = client.create_chapter("42", Decimal(5), pages)

    assert receipt.chapter_id is None
    assert receipt.slug is None


def test_classify_chapter_rejection_malformed_bodies():
    """Test 422 bodies that are not an error object stay unclassified."""
    listed = classify_chapter_rejection(_response(422, ["bad"]), chapter_number="5")
    html = classify_chapter_rejection(_raw_response(422, b"<html>Unprocessable</html>"))
    errors_list = classify_chapter_rejection(_response(422, {"errors": ["number"]}))

    assert isinstance(listed, UnclassifiedError)
    assert listed.chapter_number == "5"
    assert isinstance(html, UnclassifiedError)
    assert isinstance(errors_list, UnclassifiedError)


def test_find_comic_unreadable_body_is_fatal(session):
    """Test a lookup answered with something other than a comic object raises CatalogError."""
    session.get.return_value = _raw_response(200, b"<html>maintenance</html>")
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    with pytest.raises(CatalogError):
        client.find_comic("Solo Hero")

    session.get.return_value = _response(200, ["Solo Hero"])
    with pytest.raises(CatalogError):
        client.find_comic("Solo Hero")


def test_create_comic_unreadable_body_is_fatal(session):
    """Test a created comic without an id in the response raises CatalogError."""
    session.post.return_value = _raw_response(201, b"")
    client = HttpCatalogClient("https://catalog.test", "secret", session=session)

    with pytest.raises(CatalogError):
        client.create_comic({"name": "Solo Hero"})
