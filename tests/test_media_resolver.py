"""
test_media_resolver.py — Tests for remote media → local attachment resolution.

Covers:
    • Reference validation (scheme, host, empty input)
    • Filename derivation from the URL path
    • Successful download, content type detection, cleanup on exit
    • Fetch failures (HTTP error, network error, broken stream)
    • Write failures and partial-file cleanup

Run with:
    pytest tests/test_media_resolver.py -v
"""

from __future__ import annotations

import os

import httpx
import pytest

from relay.app.core.errors import FetchFailed, InvalidReference, MediaError, WriteFailed
from relay.app.dispatch.channels.media import (
    DEFAULT_FILENAME,
    MediaResolver,
    filename_from_url,
    parse_reference,
)


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

FLYER_URL = "https://cdn.example.com/files/flyer.pdf"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _serve(content: bytes = b"%PDF-1.4 test", content_type: str = "application/pdf", status: int = 200):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, content=content, headers={"content-type": content_type})

    return handler, requests


class _BrokenStream(httpx.SyncByteStream):
    def __iter__(self):
        yield b"first chunk"
        raise httpx.ReadError("connection reset")


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Reference parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestParseReference:

    def test_accepts_https_url(self):
        url = parse_reference(FLYER_URL)
        assert url.host == "cdn.example.com"

    def test_strips_whitespace(self):
        assert str(parse_reference(f"  {FLYER_URL} ")) == FLYER_URL

    @pytest.mark.parametrize("ref", ["", "   ", "flyer.pdf", "ftp://host/file", "file:///etc/passwd", "https://"])
    def test_rejects_malformed(self, ref):
        with pytest.raises(InvalidReference):
            parse_reference(ref)

    def test_invalid_reference_is_media_error(self):
        with pytest.raises(MediaError) as exc:
            parse_reference("not a url")
        assert exc.value.details["reason"] == "invalid_reference"


class TestFilenameFromUrl:

    def test_last_segment(self):
        assert filename_from_url(httpx.URL(FLYER_URL)) == "flyer.pdf"

    def test_trailing_slash_ignored(self):
        assert filename_from_url(httpx.URL("https://h/a/photo.jpg/")) == "photo.jpg"

    def test_no_path_falls_back(self):
        assert filename_from_url(httpx.URL("https://h")) == DEFAULT_FILENAME

    def test_unsafe_characters_replaced(self):
        name = filename_from_url(httpx.URL("https://h/a/my%20photo%3F.jpg"))
        assert "/" not in name
        assert " " not in name
        assert name.endswith(".jpg")


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Successful resolution
# ═══════════════════════════════════════════════════════════════════════════

class TestResolve:

    def test_downloads_to_unique_file(self, tmp_path):
        handler, requests = _serve(b"hello pdf")
        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))

        first = resolver.resolve(FLYER_URL)
        second = resolver.resolve(FLYER_URL)

        assert len(requests) == 2
        assert first.path != second.path
        assert first.filename == "flyer.pdf"
        assert os.path.dirname(first.path) == str(tmp_path)
        assert first.path.endswith("-flyer.pdf")
        with open(first.path, "rb") as fh:
            assert fh.read() == b"hello pdf"
        first.cleanup()
        second.cleanup()

    def test_content_type_from_header(self, tmp_path):
        handler, _ = _serve(content_type="image/png; charset=binary")
        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))
        media = resolver.resolve("https://h/pic")
        assert media.content_type == "image/png"
        media.cleanup()

    def test_content_type_guessed_from_name(self, tmp_path):
        handler, _ = _serve(content_type="application/octet-stream")
        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))
        media = resolver.resolve("https://h/photo.jpg")
        assert media.content_type == "image/jpeg"
        media.cleanup()

    def test_context_manager_deletes_file(self, tmp_path):
        handler, _ = _serve()
        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))

        with resolver.resolve(FLYER_URL) as media:
            assert media.exists
        assert not media.exists
        assert list(tmp_path.iterdir()) == []

    def test_context_manager_deletes_file_on_error(self, tmp_path):
        handler, _ = _serve()
        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))

        with pytest.raises(RuntimeError):
            with resolver.resolve(FLYER_URL):
                raise RuntimeError("send failed")
        assert list(tmp_path.iterdir()) == []

    def test_cleanup_is_idempotent(self, tmp_path):
        handler, _ = _serve()
        media = MediaResolver(media_dir=str(tmp_path), client=_client(handler)).resolve(FLYER_URL)
        media.cleanup()
        media.cleanup()
        assert not media.exists


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Failure modes
# ═══════════════════════════════════════════════════════════════════════════

class TestResolveFailures:

    def test_invalid_reference_makes_no_request(self, tmp_path):
        handler, requests = _serve()
        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))
        with pytest.raises(InvalidReference):
            resolver.resolve("ftp://example.com/flyer.pdf")
        assert requests == []

    def test_http_error_status(self, tmp_path):
        handler, _ = _serve(status=404)
        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))
        with pytest.raises(FetchFailed) as exc:
            resolver.resolve(FLYER_URL)
        assert "404" in exc.value.message
        assert list(tmp_path.iterdir()) == []

    def test_network_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))
        with pytest.raises(FetchFailed):
            resolver.resolve(FLYER_URL)
        assert list(tmp_path.iterdir()) == []

    def test_broken_stream_leaves_no_partial_file(self, tmp_path):
        def handler(request):
            return httpx.Response(200, stream=_BrokenStream())

        resolver = MediaResolver(media_dir=str(tmp_path), client=_client(handler))
        with pytest.raises(FetchFailed):
            resolver.resolve(FLYER_URL)
        assert list(tmp_path.iterdir()) == []

    def test_unwritable_directory(self, tmp_path):
        handler, _ = _serve()
        missing_dir = tmp_path / "does-not-exist"
        resolver = MediaResolver(media_dir=str(missing_dir), client=_client(handler))
        with pytest.raises(WriteFailed) as exc:
            resolver.resolve(FLYER_URL)
        assert exc.value.details["reason"] == "write_failed"
        assert exc.value.status_code == 500
