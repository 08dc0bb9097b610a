import logging
from typing import Optional

import requests

from minutes_digest.config import (
    DOWNLOAD_TIMEOUT_SECONDS,
    FILE_READ_CHUNK_SIZE,
    MAX_FILE_SIZE_BYTES,
)
from minutes_digest.http_session import build_session, redact_url
from minutes_digest.models import ResolvedDocument


logger = logging.getLogger("minutes-fetcher")

# Servers mislabel PDFs all the time, so a generic octet-stream is accepted
# alongside the real PDF types.
BINARY_CONTENT_TYPES = {
    "application/pdf",
    "application/x-pdf",
    "application/octet-stream",
    "binary/octet-stream",
}

PDF_MAGIC = b"%PDF-"


def parse_content_type(headers) -> str:
    """
    Normalize the response content type (drop charset, lowercase).
    """
    content_type = (headers or {}).get("Content-Type", "") or ""
    return content_type.split(";")[0].strip().lower()


def is_binary_content_type(content_type: str) -> bool:
    return (content_type or "").strip().lower() in BINARY_CONTENT_TYPES


def is_html_content_type(content_type: str) -> bool:
    return (content_type or "").strip().lower() in {"text/html", "application/xhtml+xml"}


class Fetcher:
    """
    Downloads document bytes with status, content-type and size checks.

    Every failure is logged and returned as None so one bad link never takes
    the batch down.
    """

    def __init__(self, session=None, timeout=DOWNLOAD_TIMEOUT_SECONDS, max_bytes=MAX_FILE_SIZE_BYTES):
        self.session = session or build_session()
        self.timeout = timeout
        self.max_bytes = max_bytes

    def open(self, url: str, params=None) -> Optional[requests.Response]:
        """
        Issue a streaming GET. Returns the response only for 2xx statuses.
        """
        try:
            # Stream response so large files do not load fully into memory.
            response = self.session.get(
                url, params=params, stream=True, timeout=self.timeout, allow_redirects=True
            )
        except requests.RequestException as e:
            logger.error(f"Request failed for {redact_url(url)}: {e}")
            return None

        if not response.ok:
            logger.warning(f"Skipping {redact_url(url)}: HTTP {response.status_code}")
            response.close()
            return None
        return response

    def accept(self, response: requests.Response, url: str) -> Optional[ResolvedDocument]:
        """
        Verify an already-open response carries a binary document and read it.
        """
        content_type = parse_content_type(response.headers)
        content_length = response.headers.get("Content-Length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
            logger.warning(f"Skipping file: {redact_url(url)} is too large ({content_length} bytes, max: {self.max_bytes})")
            response.close()
            return None

        if content_type and not is_binary_content_type(content_type):
            logger.warning(f"Skipping {redact_url(url)}: unexpected content type '{content_type}'")
            response.close()
            return None

        try:
            content = self._read_body(response)
        except requests.RequestException as e:
            logger.error(f"Download interrupted for {redact_url(url)}: {e}")
            return None
        finally:
            response.close()

        if content is None:
            logger.warning(f"Skipping file: {redact_url(url)} exceeded {self.max_bytes} bytes while streaming")
            return None
        # No declared type at all: only trust the bytes if they look like a PDF.
        if not content_type and not content.startswith(PDF_MAGIC):
            logger.warning(f"Skipping {redact_url(url)}: no content type and no PDF signature")
            return None

        return ResolvedDocument(content=content, content_type=content_type or "application/pdf", url=url)

    def fetch(self, url: str) -> Optional[ResolvedDocument]:
        response = self.open(url)
        if response is None:
            return None
        return self.accept(response, url)

    def _read_body(self, response) -> Optional[bytes]:
        chunks = []
        total = 0
        for chunk in response.iter_content(chunk_size=FILE_READ_CHUNK_SIZE):
            if not chunk:
                continue
            total += len(chunk)
            if total > self.max_bytes:
                return None
            chunks.append(chunk)
        return b"".join(chunks)
