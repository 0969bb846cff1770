"""Tests for image download, validation and re-encoding."""

import io
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image

from src.ingestion.errors import DataIntegrityError, SourceUnreachableError, TransientError
from src.ingestion.fetch import classify_request_error, classify_status
from src.ingestion.images import HttpImageFetcher, normalize_image, url_extension


def _png_bytes(size=(20, 30), mode="RGB"):
    buffer = io.BytesIO()
    Image.new(mode, size).save(buffer, "PNG")
    return buffer.getvalue()


def _image_response(status=200, content=b"", content_type="image/png"):
    response = requests.Response()
    response.status_code = status
    response._content = content
    response.headers["content-type"] = content_type
    response.url = "https://cdn.test/1.png"
    return response


@pytest.fixture
def target_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def session():
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


def test_url_extension():
    """Test extensions are read from the URL path only."""
    assert url_extension("https://cdn.test/a/001.JPG?w=800") == "jpg"
    assert url_extension("https://cdn.test/a/page") is None
    assert url_extension("https://cdn.test/a.b/page") is None


def test_normalize_image_writes_webp(target_dir):
    """Test regular pages are re-encoded as WebP."""
    path = normalize_image(_png_bytes(mode="P"), target_dir, "000")

    assert path.name == "000.webp"
    with Image.open(path) as img:
        assert img.format == "WEBP"
        assert img.size == (20, 30)


def test_normalize_image_huge_page_falls_back_to_jpeg(target_dir):
    """Test pages taller than WebP allows are written as JPEG."""
    path = normalize_image(_png_bytes(size=(1, 16384)), target_dir, "001")

    assert path.name == "001.jpeg"
    with Image.open(path) as img:
        assert img.format == "JPEG"


def test_normalize_image_rejects_garbage(target_dir):
    """Test undecodable payloads are data integrity failures."""
    with pytest.raises(DataIntegrityError):
        normalize_image(b"<html>not an image</html>", target_dir, "002", source="https://cdn.test/2.jpg")


def test_fetch_downloads_and_converts(target_dir, session):
    """Test a valid image is stored under the requested stem."""
    session.get.return_value = _image_response(content=_png_bytes())
    fetcher = HttpImageFetcher(session=session)

    path = fetcher.fetch("https://cdn.test/1.png", target_dir, "003")

    assert path == target_dir / "003.webp"
    assert path.exists()


def test_fetch_rejects_missing_extension(target_dir, session):
    """Test URLs without an extension are refused before any request."""
    fetcher = HttpImageFetcher(session=session)

    with pytest.raises(DataIntegrityError):
        fetcher.fetch("https://cdn.test/page", target_dir, "000")
    session.get.assert_not_called()


def test_fetch_rejects_non_image_content(target_dir, session):
    """Test HTML served in place of an image is a data integrity failure."""
    session.get.return_value = _image_response(content=b"<html></html>", content_type="text/html")
    fetcher = HttpImageFetcher(session=session)

    with pytest.raises(DataIntegrityError) as excinfo:
        fetcher.fetch("https://cdn.test/1.png", target_dir, "000")
    assert excinfo.value.link == "https://cdn.test/1.png"


def test_fetch_classifies_http_errors(target_dir, session):
    """Test missing images are broken data while server errors are transient."""
    fetcher = HttpImageFetcher(session=session)

    session.get.return_value = _image_response(status=404)
    with pytest.raises(DataIntegrityError):
        fetcher.fetch("https://cdn.test/1.png", target_dir, "000")

    session.get.return_value = _image_response(status=502)
    with pytest.raises(TransientError):
        fetcher.fetch("https://cdn.test/1.png", target_dir, "000")

    session.get.side_effect = requests.Timeout("timed out")
    with pytest.raises(TransientError):
        fetcher.fetch("https://cdn.test/1.png", target_dir, "000")


def test_classify_status():
    """Test 5xx and 429 are transient and other statuses use the client error."""
    assert isinstance(classify_status(503, "down"), TransientError)
    assert isinstance(classify_status(429, "slow down"), TransientError)
    assert isinstance(classify_status(404, "gone"), SourceUnreachableError)
    assert isinstance(classify_status(404, "gone", client_error=DataIntegrityError), DataIntegrityError)


def test_classify_connection_errors():
    """Test a reset connection is transient while a refused host is unreachable."""
    reset = requests.ConnectionError(ConnectionResetError(104, "Connection reset by peer"))
    refused = requests.ConnectionError("Name or service not known")

    assert isinstance(classify_request_error(reset), TransientError)
    assert isinstance(classify_request_error(refused), SourceUnreachableError)
