"""
Link Resolver: turn a CandidateLink into document bytes.

Direct links (a PDF on the city's own server) go straight to the Fetcher.
Google Drive share links need negotiation first:

1. Ask the export endpoint (uc?export=download&id=...) for the file.
2. A binary response is the document.
3. An HTML response is Drive's "can't scan this file for viruses" page for
   large files. We look for the confirmation token or the "Download anyway"
   form/link and follow it exactly ONCE. If that still isn't a document,
   the link is unresolved.

When a service account is configured, the Drive API is used instead. It
skips the confirmation page and quota gating entirely.
"""

import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlencode, urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from minutes_digest.errors import ConfigurationError
from minutes_digest.fetcher import (
    is_binary_content_type,
    is_html_content_type,
    parse_content_type,
)
from minutes_digest.http_session import redact_url
from minutes_digest.models import CandidateLink, LinkKind, ResolvedDocument


logger = logging.getLogger("minutes-resolver")

DRIVE_HOSTS = {"drive.google.com", "docs.google.com", "drive.usercontent.google.com"}
DRIVE_EXPORT_URL = "https://drive.google.com/uc"
DRIVE_API_FILES_URL = "https://www.googleapis.com/drive/v3/files/{file_id}"
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]

# /file/d/<id>/view, /document/d/<id>/edit, ...
_PATH_FILE_ID_RE = re.compile(r"/d/([a-zA-Z0-9_-]{10,})(?:/|$)")
_CONFIRM_TOKEN_RE = re.compile(r"confirm=([0-9A-Za-z_-]+)")


def is_drive_share_url(url: str) -> bool:
    host = (urlparse(url or "").hostname or "").lower()
    return host in DRIVE_HOSTS


def extract_drive_file_id(url: str) -> Optional[str]:
    """
    Pull the file id out of a Drive URL, from either /d/<id>/ or ?id=<id>.
    """
    if not url:
        return None
    parsed = urlparse(url)
    match = _PATH_FILE_ID_RE.search(parsed.path)
    if match:
        return match.group(1)
    ids = parse_qs(parsed.query).get("id")
    if ids and ids[0].strip():
        return ids[0].strip()
    return None


def classify_link(url: str) -> LinkKind:
    """
    Drive URLs we can pull an id from are gated; anything else is fetched as-is.
    """
    if is_drive_share_url(url) and extract_drive_file_id(url):
        return LinkKind.GATED_SHARE
    return LinkKind.DIRECT_BINARY


def build_export_url(file_id: str, confirm: Optional[str] = None) -> str:
    params = {"export": "download", "id": file_id}
    if confirm:
        params["confirm"] = confirm
    return f"{DRIVE_EXPORT_URL}?{urlencode(params)}"


def find_confirmation_url(html: str, page_url: str, file_id: str) -> Optional[str]:
    """
    Find where Drive's interstitial page wants us to go next.

    Looks for, in order:
    - the "download anyway" form (newer pages post hidden inputs to
      drive.usercontent.google.com/download),
    - the "download anyway" link (#uc-download-link or any href with confirm=),
    - a bare confirm=<token> anywhere in the page, re-issued on the export URL.
    """
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")

    form = soup.find("form", id="download-form")
    if form is not None and form.get("action"):
        params = {}
        for hidden in form.find_all("input"):
            name = hidden.get("name")
            if name and hidden.get("type", "hidden") == "hidden":
                params[name] = hidden.get("value", "")
        if params:
            return f"{urljoin(page_url, form['action'])}?{urlencode(params)}"
        return urljoin(page_url, form["action"])

    anchor = soup.find("a", id="uc-download-link")
    if anchor is None:
        for candidate in soup.find_all("a", href=True):
            text = candidate.get_text(" ", strip=True).lower()
            if "confirm=" in candidate["href"] or "download anyway" in text:
                anchor = candidate
                break
    if anchor is not None and anchor.get("href"):
        return urljoin(page_url, anchor["href"])

    match = _CONFIRM_TOKEN_RE.search(html)
    if match:
        return build_export_url(file_id, confirm=match.group(1))
    return None


class DriveNegotiator:
    """
    Anonymous download via the public export endpoint plus at most one
    confirmation follow-up.
    """

    def __init__(self, fetcher):
        self.fetcher = fetcher

    def download(self, file_id: str) -> Optional[ResolvedDocument]:
        url = build_export_url(file_id)
        response = self.fetcher.open(url)
        if response is None:
            return None

        content_type = parse_content_type(response.headers)
        # No declared type: the fetcher keeps the body only if it starts with %PDF-.
        if not content_type or is_binary_content_type(content_type):
            return self.fetcher.accept(response, url)
        if not is_html_content_type(content_type):
            logger.warning(f"Drive file {file_id}: unexpected content type '{content_type}'")
            response.close()
            return None

        follow_url = self._confirmation_target(response, url, file_id)
        if not follow_url:
            logger.warning(f"Drive file {file_id}: HTML page without a confirmation token; unresolved")
            return None

        logger.info(f"Drive file {file_id}: following confirmation step")
        follow_up = self.fetcher.open(follow_url)
        if follow_up is None:
            return None
        if not is_binary_content_type(parse_content_type(follow_up.headers)):
            # Another interstitial (quota page, sign-in wall). Stop here.
            logger.warning(f"Drive file {file_id}: still gated after confirmation; unresolved")
            follow_up.close()
            return None
        return self.fetcher.accept(follow_up, follow_url)

    def _confirmation_target(self, response, url: str, file_id: str) -> Optional[str]:
        try:
            html = response.text
        finally:
            response.close()
        target = find_confirmation_url(html, response.url or url, file_id)
        if target:
            return target
        # Older Drive pages set the token as a download_warning cookie instead.
        cookies = getattr(response, "cookies", None) or {}
        for name, value in cookies.items():
            if name.startswith("download_warning") and value:
                return build_export_url(file_id, confirm=value)
        return None


class AuthenticatedDriveClient:
    """
    Drive API access with a read-only service account, with an optional
    public API key as the secondary path.

    Only two operations are used: get file metadata and get file media.
    """

    def __init__(self, service_account_info=None, api_key="", timeout=30, session=None, authed_session=None):
        self.api_key = api_key or ""
        self.timeout = timeout
        self.session = session or requests.Session()
        self.authed_session = authed_session
        if self.authed_session is None and service_account_info:
            try:
                credentials = service_account.Credentials.from_service_account_info(
                    service_account_info, scopes=DRIVE_SCOPES
                )
            except (GoogleAuthError, ValueError, KeyError) as exc:
                raise ConfigurationError(f"Service-account credential is incomplete or malformed: {exc}") from exc
            self.authed_session = AuthorizedSession(credentials)

    @property
    def authenticated(self) -> bool:
        return self.authed_session is not None

    def get_metadata(self, file_id: str) -> dict:
        response = self.authed_session.get(
            DRIVE_API_FILES_URL.format(file_id=file_id),
            params={"fields": "id,name,mimeType,size,capabilities/canDownload", "supportsAllDrives": "true"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def open_media(self, file_id: str) -> Optional[requests.Response]:
        """
        Verify the file exists and is downloadable, then open its media stream.
        """
        try:
            metadata = self.get_metadata(file_id)
            if not (metadata.get("capabilities") or {}).get("canDownload", True):
                logger.warning(f"Drive file {file_id}: service account lacks download permission")
                return None
            response = self.authed_session.get(
                DRIVE_API_FILES_URL.format(file_id=file_id),
                params={"alt": "media", "supportsAllDrives": "true"},
                stream=True,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response
        except (requests.RequestException, GoogleAuthError, ValueError) as exc:
            logger.warning(f"Drive API (service account) failed for {file_id}: {exc}")
            return None

    def open_media_with_api_key(self, file_id: str) -> Optional[requests.Response]:
        if not self.api_key:
            return None
        url = DRIVE_API_FILES_URL.format(file_id=file_id)
        try:
            response = self.session.get(
                url,
                params={"alt": "media", "key": self.api_key},
                stream=True,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response
        except requests.RequestException as exc:
            logger.warning(f"Drive API (api key) failed for {file_id}: {redact_url(str(exc))}")
            return None


class LinkResolver:
    def __init__(self, fetcher, drive_client: Optional[AuthenticatedDriveClient] = None):
        self.fetcher = fetcher
        self.drive_client = drive_client
        self.negotiator = DriveNegotiator(fetcher)

    def resolve(self, link: CandidateLink) -> Optional[ResolvedDocument]:
        """
        Return the document bytes, or None when the link is unresolved.
        """
        if link.link_kind is LinkKind.DIRECT_BINARY:
            return self.fetcher.fetch(link.raw_url)

        file_id = extract_drive_file_id(link.raw_url)
        if not file_id:
            return self.fetcher.fetch(link.raw_url)

        if self.drive_client is not None and self.drive_client.authenticated:
            return self._resolve_authenticated(file_id)
        return self.negotiator.download(file_id)

    def _resolve_authenticated(self, file_id: str) -> Optional[ResolvedDocument]:
        api_url = DRIVE_API_FILES_URL.format(file_id=file_id)
        response = self.drive_client.open_media(file_id)
        if response is None:
            response = self.drive_client.open_media_with_api_key(file_id)
        if response is None:
            logger.warning(f"Drive file {file_id}: authenticated download failed; unresolved")
            return None
        return self.fetcher.accept(response, api_url)
