"""
Document Locator: find recent meeting-minutes documents.

Two discovery strategies, one active per deployment (DISCOVERY_STRATEGY):

- listing: fetch one public page and pick out links to minutes documents.
  City websites change layout often, so the matching is written against
  Scrapy selectors and tested with saved HTML snippets.
- index: ask a structured per-day JSON API (Legistar-style) about every day in
  the lookback window. Structured data is much more resistant to redesigns.

Both return CandidateLinks sorted newest first and capped at max_meetings.
"""

import datetime
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse

import requests
from dateutil import parser as date_parser
from scrapy import Selector

from minutes_digest.errors import OriginFetchError
from minutes_digest.http_session import build_session
from minutes_digest.models import CandidateLink
from minutes_digest.resolver import classify_link, is_drive_share_url


logger = logging.getLogger("minutes-locator")

# Dates on US city pages: "July 23, 2024 City Council Regular Meeting"
_MONTH_NAME_DATE_RE = re.compile(
    r"\b(?:January|February|March|April|May|June|July|August|September|October|November|December)"
    r"\s+\d{1,2},\s+\d{4}",
    re.IGNORECASE,
)
_NUMERIC_DATE_RE = re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b")
_WHITESPACE_RE = re.compile(r"\s+")

MINUTES_KEYWORD = "minutes"

# Payload fields vary by vendor; the first populated key wins.
_INDEX_DATE_KEYS = ("EventDate", "eventDate", "startDateTime", "meetingDate", "date")
_INDEX_BODY_KEYS = ("EventBodyName", "categoryName", "bodyName", "eventName", "name")
_INDEX_FILE_LIST_KEYS = ("publishedFiles", "documents", "files", "links")
_INDEX_FILE_TYPE_KEYS = ("type", "fileType", "category", "name")
_INDEX_FILE_PATH_KEYS = ("url", "path", "href", "fileUrl")


def _normalize_space(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value or "").strip()


def parse_meeting_date(text: str) -> Optional[datetime.date]:
    """
    Find a US-style meeting date in free text and return it as a date.

    Only the matched substring goes to dateutil, so stray numbers elsewhere
    in a card title can't produce a wrong date.
    """
    if not text:
        return None
    match = _MONTH_NAME_DATE_RE.search(text) or _NUMERIC_DATE_RE.search(text)
    if not match:
        return None
    try:
        return date_parser.parse(match.group(0)).date()
    except (ValueError, OverflowError):
        return None


def is_minutes_link(href: str, text: str) -> bool:
    """
    A link is a minutes document when its href or visible text mentions
    minutes AND it points at a PDF or a cloud-storage share.
    """
    lowered_href = (href or "").lower()
    lowered_text = (text or "").lower()
    if MINUTES_KEYWORD not in lowered_href and MINUTES_KEYWORD not in lowered_text:
        return False
    if urlparse(lowered_href).path.endswith(".pdf"):
        return True
    return is_drive_share_url(href)


def _candidate(record_date: datetime.date, url: str) -> CandidateLink:
    return CandidateLink(source_date=record_date, raw_url=url, link_kind=classify_link(url))


def _parse_cards(selector: Selector, base_url: str) -> List[CandidateLink]:
    """
    Card layout: each meeting is a div.card with the date at the start of
    h3.card-title and an anchor whose text is exactly "Minutes".
    """
    links = []
    for card in selector.css("div.card"):
        title = _normalize_space(" ".join(card.css("h3.card-title ::text").getall()))
        href = None
        for anchor in card.css("p.card-text a"):
            anchor_text = _normalize_space(" ".join(anchor.css("::text").getall())).lower()
            if anchor_text == MINUTES_KEYWORD:
                href = (anchor.attrib.get("href") or "").strip()
                break
        if not href:
            continue

        record_date = parse_meeting_date(title)
        if record_date is None:
            logger.warning(f"Skipping minutes link with unparseable date: title='{title}' href={href}")
            continue
        links.append(_candidate(record_date, urljoin(base_url, href)))
    return links


def _parse_anchors(selector: Selector, base_url: str) -> List[CandidateLink]:
    """
    Generic fallback: any anchor that looks like a minutes document, dated
    from its own text or from the nearest enclosing row/list item/block.
    """
    links = []
    for anchor in selector.xpath("//a[@href]"):
        href = (anchor.attrib.get("href") or "").strip()
        text = _normalize_space(" ".join(anchor.xpath(".//text()").getall()))
        if not is_minutes_link(href, text):
            continue

        context = anchor.xpath(
            "ancestor::*[self::li or self::tr or self::p or self::div][1]//text()"
        ).getall()
        record_date = parse_meeting_date(text) or parse_meeting_date(" ".join(context))
        if record_date is None:
            logger.warning(f"Skipping minutes link with no nearby date: {href}")
            continue
        links.append(_candidate(record_date, urljoin(base_url, href)))
    return links


def parse_listing(html: str, base_url: str) -> List[CandidateLink]:
    """
    Extract CandidateLinks from a listing page (unsorted, undeduplicated).
    """
    if not html:
        return []
    selector = Selector(text=html)
    links = _parse_cards(selector, base_url)
    if not links:
        links = _parse_anchors(selector, base_url)
    logger.info(f"Listing page yielded {len(links)} minutes links")
    return links


def finalize_candidates(links: Iterable[CandidateLink], max_meetings: int) -> List[CandidateLink]:
    """
    Deduplicate by URL, sort newest first and cap the count.
    """
    by_url = {}
    for link in links:
        existing = by_url.get(link.raw_url)
        # The same PDF is sometimes linked from two meetings; keep the newest date.
        if existing is None or link.source_date > existing.source_date:
            by_url[link.raw_url] = link
    ordered = sorted(by_url.values(), key=lambda link: link.source_date, reverse=True)
    return ordered[:max(0, max_meetings)]


def locate_from_listing(settings, session: Optional[requests.Session] = None) -> List[CandidateLink]:
    """
    Listing scrape. A failed fetch of the listing page is an origin error.
    """
    http = session or build_session(settings.http_max_retries, settings.http_user_agent)
    url = settings.listing_url
    try:
        response = http.get(url, timeout=settings.download_timeout_seconds)
    except requests.RequestException as exc:
        raise OriginFetchError(f"Failed to fetch meeting page: {exc}") from exc
    if not response.ok:
        raise OriginFetchError(f"Failed to fetch meeting page: HTTP {response.status_code} {response.reason or ''}".strip())

    return finalize_candidates(parse_listing(response.text, response.url or url), settings.max_meetings)


def _first_value(record: dict, keys) -> str:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _record_date(record: dict) -> Optional[datetime.date]:
    raw = _first_value(record, _INDEX_DATE_KEYS)
    if not raw:
        return None
    try:
        # Legistar dates look like "2024-07-01T00:00:00"
        return date_parser.parse(raw).date()
    except (ValueError, OverflowError):
        return None


def _record_minutes_paths(record: dict, document_type: str) -> List[str]:
    wanted = (document_type or "").strip().lower()
    paths = []
    for list_key in _INDEX_FILE_LIST_KEYS:
        entries = record.get(list_key)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            label = _first_value(entry, _INDEX_FILE_TYPE_KEYS).lower()
            if wanted and wanted not in label:
                continue
            path = _first_value(entry, _INDEX_FILE_PATH_KEYS)
            if path:
                paths.append(path)

    # Legistar exposes minutes as a flat field instead of a list.
    flat = record.get("EventMinutesFile")
    if isinstance(flat, str) and flat.strip():
        paths.append(flat.strip())
    return paths


def parse_index_records(
    records: Iterable[dict],
    base_url: str,
    body_filter: str = "",
    document_type: str = "Minutes",
    fallback_date: Optional[datetime.date] = None,
) -> List[CandidateLink]:
    """
    Turn one day's JSON meeting records into CandidateLinks.

    Records for other bodies (e.g. Planning Commission when we want City
    Council) are dropped, as are records without a minutes document.
    """
    wanted_body = (body_filter or "").strip().lower()
    links = []
    for record in records:
        if not isinstance(record, dict):
            continue
        body = _first_value(record, _INDEX_BODY_KEYS).lower()
        if wanted_body and wanted_body not in body:
            continue
        record_date = _record_date(record) or fallback_date
        if record_date is None:
            logger.warning(f"Skipping index record without a usable date: body='{body}'")
            continue
        for path in _record_minutes_paths(record, document_type):
            links.append(_candidate(record_date, urljoin(base_url, path)))
    return links


def fetch_index_day(session: requests.Session, url_template: str, day: datetime.date, timeout: float):
    """
    Query the index for one day.

    Returns a list of records, [] when the day has no meeting (error status,
    non-JSON body), or None when the request never reached the server.
    """
    url = url_template.replace("{date}", day.isoformat())
    try:
        response = session.get(url, timeout=(3.0, timeout))
    except requests.RequestException as exc:
        logger.warning(f"Index query failed for {day}: {exc}")
        return None

    if not response.ok:
        logger.debug(f"Index returned HTTP {response.status_code} for {day}; treating as no meeting")
        return []
    try:
        payload = response.json()
    except ValueError:
        logger.debug(f"Index returned non-JSON for {day}; treating as no meeting")
        return []

    # OData-style endpoints wrap rows in {"value": [...]}.
    if isinstance(payload, dict):
        payload = payload.get("value") or payload.get("items") or []
    if not isinstance(payload, list):
        return []
    return [record for record in payload if isinstance(record, dict)]


def locate_from_index(
    settings,
    session: Optional[requests.Session] = None,
    today: Optional[datetime.date] = None,
) -> List[CandidateLink]:
    """
    Indexed query: one request per day over the lookback window, in parallel.
    """
    http = session or build_session(settings.http_max_retries, settings.http_user_agent)
    today = today or datetime.date.today()
    days = [today - datetime.timedelta(days=offset) for offset in range(max(1, settings.lookback_days))]
    template = settings.index_url_template

    def _query(day):
        return day, fetch_index_day(http, template, day, settings.download_timeout_seconds)

    with ThreadPoolExecutor(max_workers=max(1, settings.index_workers)) as executor:
        results = list(executor.map(_query, days))

    if all(records is None for _day, records in results):
        raise OriginFetchError(f"Index source unreachable for all {len(days)} days in the lookback window")

    links = []
    for day, records in results:
        if not records:
            continue
        base_url = template.replace("{date}", day.isoformat())
        links.extend(parse_index_records(
            records,
            base_url,
            body_filter=settings.index_body_filter,
            document_type=settings.index_document_type,
            fallback_date=day,
        ))

    logger.info(f"Index queries over {len(days)} days yielded {len(links)} minutes links")
    return finalize_candidates(links, settings.max_meetings)


def locate_documents(settings, session: Optional[requests.Session] = None, today=None) -> List[CandidateLink]:
    if settings.discovery_strategy == "index":
        return locate_from_index(settings, session=session, today=today)
    return locate_from_listing(settings, session=session)
