import html as _html
import logging
import re
import time
from typing import List, Optional

from tika import parser

from minutes_digest.config import (
    TIKA_MIN_EXTRACTED_CHARS_FOR_NO_OCR,
    TIKA_OCR_FALLBACK_ENABLED,
    TIKA_RETRY_BACKOFF_MULTIPLIER,
    TIKA_SERVER_ENDPOINT,
    TIKA_TIMEOUT_SECONDS,
)


logger = logging.getLogger("minutes-extractor")

PAGE_SEPARATOR = "\n\n"

_PAGE_DIV_RE = re.compile(r'<div[^>]*class="page"[^>]*>')
_BODY_RE = re.compile(r"<body[^>]*>(.*)</body>", re.DOTALL | re.IGNORECASE)
_PARAGRAPH_BREAK_RE = re.compile(r"</p\s*>|<p(?:\s[^>]*)?/?>|\n\s*\n", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def split_xhtml_pages(content: str) -> List[str]:
    """
    Split Tika XHTML into per-page markup chunks, in document order.

    Tika marks pages with <div class="page"> in XHTML mode; plain-text mode
    uses form feeds instead. The chunk before the first page div is the
    <head>/metadata preamble and is dropped.
    """
    if not content:
        return []
    if _PAGE_DIV_RE.search(content):
        return _PAGE_DIV_RE.split(content)[1:]
    body = _BODY_RE.search(content)
    if body:
        content = body.group(1)
    return content.split("\f")


def page_text(page_markup: str) -> str:
    """
    Reduce one page of markup to plain text.

    Each <p> block Tika emits becomes one whitespace-joined paragraph, and
    paragraphs are separated by a blank line so the relevance selector can
    work below page granularity.
    """
    paragraphs = []
    for block in _PARAGRAPH_BREAK_RE.split(page_markup or ""):
        text = _html.unescape(_TAG_RE.sub(" ", block))
        text = _WHITESPACE_RE.sub(" ", text).strip()
        if text:
            paragraphs.append(text)
    return PAGE_SEPARATOR.join(paragraphs)


def join_pages(pages: List[str]) -> str:
    """
    Join page strings with a blank line between pages, skipping empty pages.
    """
    return PAGE_SEPARATOR.join(page for page in pages if page)


def _pages_from_markup(content: str, label: str) -> List[str]:
    pages = []
    for number, markup in enumerate(split_xhtml_pages(content), start=1):
        try:
            pages.append(page_text(markup))
        except (TypeError, ValueError) as e:
            # One unreadable page shouldn't cost us the rest of the document.
            logger.warning(f"Skipping page {number} of {label}: {e}")
    return pages


def _tika_extract_with_strategy(data: bytes, ocr_strategy: str, *, server_endpoint: str,
                                timeout_seconds: int, label: str) -> str:
    """
    Extract page text via Tika using a specific OCR strategy.

    Strategy notes:
    - no_ocr: fast path, uses only the digital text layer.
    - ocr_only: slow path, runs OCR and ignores the digital layer.
    """
    # Retry logic with exponential backoff
    # Tika server might be temporarily busy or restarting
    for attempt in range(3):
        try:
            parsed = parser.from_buffer(
                data,
                serverEndpoint=server_endpoint,
                xmlContent=True,
                headers={"X-Tika-PDFOcrStrategy": ocr_strategy},
                requestOptions={"timeout": timeout_seconds},
            )
            if not parsed:
                raise ValueError("Tika returned empty response")
            status = parsed.get("status")
            if status is not None and status != 200:
                # 422 means Tika could not parse the document. Retrying won't help.
                if status == 422:
                    logger.warning(f"Tika could not parse {label} (HTTP 422)")
                    return ""
                raise ValueError(f"Tika returned HTTP {status}")

            content = parsed.get("content") or ""
            if not content.strip():
                # Zero-page or image-only document: valid, just empty.
                return ""
            return join_pages(_pages_from_markup(content, label))
        except (ValueError, OSError, ConnectionError, TimeoutError, RuntimeError) as e:
            if attempt < 2:
                wait_time = (attempt + 1) * TIKA_RETRY_BACKOFF_MULTIPLIER
                logger.warning(
                    f"Tika issue on {label} (ocr_strategy={ocr_strategy}), retrying in {wait_time}s... "
                    f"(Attempt {attempt + 1}/3)"
                )
                time.sleep(wait_time)
            else:
                logger.error(f"Error extracting {label} (ocr_strategy={ocr_strategy}) after 3 attempts: {e}")
                return ""
    return ""


def extract_pdf_text(
    data: bytes,
    *,
    label: str = "document",
    server_endpoint: str = TIKA_SERVER_ENDPOINT,
    timeout_seconds: int = TIKA_TIMEOUT_SECONDS,
    ocr_fallback_enabled: Optional[bool] = None,
    min_chars_threshold: Optional[int] = None,
) -> str:
    """
    Extract plain text from PDF bytes, page by page, via Apache Tika.

    Pages keep their source order and are separated by a blank line.
    Never raises: any failure yields "" and the caller skips the document.
    """
    if not data:
        return ""

    # Per-call overrides let the caller decide on OCR without touching module state.
    if ocr_fallback_enabled is None:
        ocr_fallback_enabled = TIKA_OCR_FALLBACK_ENABLED
    if min_chars_threshold is None:
        min_chars_threshold = TIKA_MIN_EXTRACTED_CHARS_FOR_NO_OCR

    options = {"server_endpoint": server_endpoint, "timeout_seconds": timeout_seconds, "label": label}

    # Fast path: try digital text layer only.
    no_ocr_text = _tika_extract_with_strategy(data, "no_ocr", **options)
    if no_ocr_text and len(no_ocr_text) >= min_chars_threshold:
        return no_ocr_text

    # Slow fallback: if enabled and the digital layer was empty/too short, retry with OCR.
    if ocr_fallback_enabled:
        ocr_text = _tika_extract_with_strategy(data, "ocr_only", **options)
        return ocr_text or no_ocr_text

    return no_ocr_text
