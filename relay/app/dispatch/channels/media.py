"""
media.py — Remote media reference → transient local attachment file.

Only the email channel needs a local copy; WhatsApp hands the URL to Twilio,
which fetches it itself.

    resolve(url)
        │
        ├── validate: absolute http(s) URL with a host   → InvalidReference
        ├── GET (streamed, bounded timeout)               → FetchFailed
        ├── write <hex>-<last path segment> in MEDIA_DIR  → WriteFailed
        └── ResolvedMedia (context manager, deletes on exit)

A partially written file never outlives a failed resolve().
"""

from __future__ import annotations

import logging
import mimetypes
import os
import re
import tempfile
import uuid
from typing import Optional
from urllib.parse import unquote

import httpx

from relay.app.core.errors import FetchFailed, InvalidReference, WriteFailed
from relay.app.dispatch.models import ResolvedMedia

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "attachment"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def filename_from_url(url: httpx.URL) -> str:
    """Last non-empty path segment, made safe for the local filesystem."""
    segments = [s for s in url.path.split("/") if s]
    if not segments:
        return DEFAULT_FILENAME
    name = _UNSAFE_CHARS.sub("_", unquote(segments[-1])).strip("._")
    return name[:128] or DEFAULT_FILENAME


def parse_reference(ref: str) -> httpx.URL:
    """Validate a media reference and return it as an httpx.URL."""
    if not ref or not ref.strip():
        raise InvalidReference(ref or "", "empty reference")
    try:
        url = httpx.URL(ref.strip())
    except (httpx.InvalidURL, ValueError, TypeError) as exc:
        raise InvalidReference(ref, str(exc)) from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidReference(ref, "expected an absolute http(s) URL")
    return url


class MediaResolver:
    """Downloads a media URL into a uniquely named local file."""

    def __init__(
        self,
        *,
        media_dir: Optional[str] = None,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.media_dir = media_dir or tempfile.gettempdir()
        self.timeout_seconds = timeout_seconds
        self._client = client

    def resolve(self, ref: str) -> ResolvedMedia:
        url = parse_reference(ref)
        filename = filename_from_url(url)
        path = os.path.join(self.media_dir, f"{uuid.uuid4().hex}-{filename}")

        try:
            if self._client is not None:
                content_type = self._download(self._client, url, path)
            else:
                with httpx.Client(timeout=self.timeout_seconds, follow_redirects=True) as client:
                    content_type = self._download(client, url, path)
        except httpx.HTTPStatusError as exc:
            _discard(path)
            raise FetchFailed(ref, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            _discard(path)
            raise FetchFailed(ref, str(exc) or type(exc).__name__) from exc
        except OSError as exc:
            _discard(path)
            raise WriteFailed(ref, str(exc)) from exc

        logger.info("[MEDIA] %s → %s (%s)", url, path, content_type)
        return ResolvedMedia(
            path=path,
            filename=filename,
            content_type=content_type,
        )

    def _download(self, client: httpx.Client, url: httpx.URL, path: str) -> str:
        with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(path, "wb") as fh:
                for chunk in response.iter_bytes():
                    fh.write(chunk)
            header = response.headers.get("content-type", "")
        return _content_type(header, path)


def _content_type(header: str, path: str) -> str:
    media_type = header.split(";", 1)[0].strip().lower()
    if media_type and media_type != "application/octet-stream":
        return media_type
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("[MEDIA] Could not remove partial file %s: %s", path, exc)
