"""
Pipeline Configuration

Every tunable number or URL the digest pipeline uses lives here, read from the
environment with a sensible default. Two layers:

1. Module-level constants (below). These are *defaults* and are read exactly
   once, at import time.
2. PipelineSettings. A frozen snapshot built by load_settings() when the
   process starts. Components take the settings object in their constructor,
   so tests can hand in a custom one without touching os.environ.

How to use:
-----------
    from minutes_digest.config import load_settings

    settings = load_settings()          # raises ConfigurationError if GEMINI_API_KEY is missing
    summaries = summarize_meetings(settings)
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass, field, replace
from typing import Optional

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account

from minutes_digest.errors import ConfigurationError


def _env_flag(name, default="false"):
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


# =============================================================================
# LISTING SOURCE CONFIGURATION
# =============================================================================
# Where we look for meeting minutes.

# Public page that lists council meetings with links to their minutes.
LISTING_URL = os.getenv(
    "LISTING_URL",
    "https://www.ashevillenc.gov/government/city-council-meeting-materials/",
)

# Which discovery strategy to run: "listing" (scrape LISTING_URL) or "index"
# (one JSON query per day against INDEX_URL_TEMPLATE).
DISCOVERY_STRATEGY = os.getenv("DISCOVERY_STRATEGY", "listing").strip().lower()

# Per-day JSON endpoint. "{date}" is replaced with YYYY-MM-DD.
# Legistar clients look like:
#   https://webapi.legistar.com/v1/<client>/events?$filter=EventDate eq datetime'{date}'
INDEX_URL_TEMPLATE = os.getenv("INDEX_URL_TEMPLATE", "")

# Only keep index records whose body/category name contains this text.
INDEX_BODY_FILTER = os.getenv("INDEX_BODY_FILTER", "City Council")

# Only keep published files whose type label matches this (case-insensitive).
INDEX_DOCUMENT_TYPE = os.getenv("INDEX_DOCUMENT_TYPE", "Minutes")


# =============================================================================
# DISCOVERY WINDOW
# =============================================================================

# How far back (in days) the index strategy queries.
LOOKBACK_DAYS = int(os.getenv("LOOKBACK_DAYS", "90"))

# Maximum meetings handed downstream per run. Each one costs a download,
# a Tika round-trip and an LLM call, so keep this small.
MAX_MEETINGS = int(os.getenv("MAX_MEETINGS", "5"))

# Parallel per-day index queries.
INDEX_WORKERS = int(os.getenv("INDEX_WORKERS", "8"))


# =============================================================================
# FILE DOWNLOAD CONFIGURATION
# =============================================================================

# If a server doesn't respond in 30 seconds, skip that document.
DOWNLOAD_TIMEOUT_SECONDS = int(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "30"))

# Maximum file size to download: 100MB
# Most minutes are well under 5MB; the cap protects memory since we never
# write documents to disk.
MAX_FILE_SIZE_BYTES = int(os.getenv("MAX_FILE_SIZE_BYTES", str(100 * 1024 * 1024)))

# Chunk size when streaming response bodies: 8KB
FILE_READ_CHUNK_SIZE = 8192

# Number of documents processed simultaneously. 5 is polite to city servers.
DOWNLOAD_WORKERS = int(os.getenv("DOWNLOAD_WORKERS", "5"))

# Transient 5xx retries on GET requests (urllib3 Retry budget).
HTTP_MAX_RETRIES = int(os.getenv("HTTP_MAX_RETRIES", "2"))

# Some city CDNs answer bare python-requests clients with a 403 page.
HTTP_USER_AGENT = os.getenv(
    "HTTP_USER_AGENT",
    "Mozilla/5.0 (compatible; housing-minutes-digest/1.0)",
)


# =============================================================================
# TIKA TEXT EXTRACTION CONFIGURATION
# =============================================================================

# Tika runs as a separate server (usually a Docker container).
TIKA_SERVER_ENDPOINT = os.getenv("TIKA_SERVER_ENDPOINT", "http://tika:9998")

# Tika can take time with large PDFs; 60 seconds handles most minutes.
TIKA_TIMEOUT_SECONDS = int(os.getenv("TIKA_TIMEOUT_SECONDS", "60"))

# When Tika fails, we wait (attempt x multiplier) seconds before retrying.
TIKA_RETRY_BACKOFF_MULTIPLIER = 2

# Retry with OCR when the digital text layer is empty or too short.
TIKA_OCR_FALLBACK_ENABLED = _env_flag("TIKA_OCR_FALLBACK_ENABLED")
TIKA_MIN_EXTRACTED_CHARS_FOR_NO_OCR = int(os.getenv("TIKA_MIN_EXTRACTED_CHARS_FOR_NO_OCR", "800"))


# =============================================================================
# RELEVANCE SELECTION
# =============================================================================

# Character budget for the excerpt sent to the model.
# 15,000 chars is roughly 4K tokens: plenty for a 1-3 sentence summary.
EXCERPT_MAX_CHARS = int(os.getenv("EXCERPT_MAX_CHARS", "15000"))


# =============================================================================
# SUMMARIZATION (GEMINI) CONFIGURATION
# =============================================================================

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")

# Low temperature keeps summaries neutral and the sentinel phrase exact.
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.2"))
GEMINI_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "256"))
GEMINI_TIMEOUT_SECONDS = int(os.getenv("GEMINI_TIMEOUT_SECONDS", "60"))
GEMINI_MAX_RETRIES = int(os.getenv("GEMINI_MAX_RETRIES", "1"))

# Wait (attempt x this) seconds before retrying a timeout, 429 or 5xx.
GEMINI_RETRY_BACKOFF_SECONDS = float(os.getenv("GEMINI_RETRY_BACKOFF_SECONDS", "2"))


# =============================================================================
# GOOGLE DRIVE CREDENTIALS (OPTIONAL)
# =============================================================================

# Base64-encoded service-account JSON with drive.readonly scope.
GOOGLE_SERVICE_ACCOUNT_B64 = os.getenv("GOOGLE_SERVICE_ACCOUNT_B64", "")

# Public Drive API key used when the service-account path fails.
GOOGLE_DRIVE_API_KEY = os.getenv("GOOGLE_DRIVE_API_KEY", "")


@dataclass(frozen=True)
class PipelineSettings:
    gemini_api_key: str = field(repr=False)
    listing_url: str = LISTING_URL
    discovery_strategy: str = DISCOVERY_STRATEGY
    index_url_template: str = INDEX_URL_TEMPLATE
    index_body_filter: str = INDEX_BODY_FILTER
    index_document_type: str = INDEX_DOCUMENT_TYPE
    lookback_days: int = LOOKBACK_DAYS
    max_meetings: int = MAX_MEETINGS
    index_workers: int = INDEX_WORKERS
    download_timeout_seconds: int = DOWNLOAD_TIMEOUT_SECONDS
    max_file_size_bytes: int = MAX_FILE_SIZE_BYTES
    download_workers: int = DOWNLOAD_WORKERS
    http_max_retries: int = HTTP_MAX_RETRIES
    http_user_agent: str = HTTP_USER_AGENT
    tika_server_endpoint: str = TIKA_SERVER_ENDPOINT
    tika_timeout_seconds: int = TIKA_TIMEOUT_SECONDS
    tika_ocr_fallback_enabled: bool = TIKA_OCR_FALLBACK_ENABLED
    tika_min_chars_for_no_ocr: int = TIKA_MIN_EXTRACTED_CHARS_FOR_NO_OCR
    excerpt_max_chars: int = EXCERPT_MAX_CHARS
    gemini_model: str = GEMINI_MODEL
    gemini_base_url: str = GEMINI_BASE_URL
    gemini_temperature: float = GEMINI_TEMPERATURE
    gemini_max_output_tokens: int = GEMINI_MAX_OUTPUT_TOKENS
    gemini_timeout_seconds: int = GEMINI_TIMEOUT_SECONDS
    gemini_max_retries: int = GEMINI_MAX_RETRIES
    gemini_retry_backoff_seconds: float = GEMINI_RETRY_BACKOFF_SECONDS
    # Decoded service-account info, or None when the authenticated path is off.
    drive_service_account_info: Optional[dict] = field(default=None, repr=False)
    drive_api_key: str = field(default="", repr=False)

    def with_overrides(self, **changes) -> "PipelineSettings":
        """Copy with some fields replaced (CLI flags, tests)."""
        return replace(self, **changes)


def validate_service_account(info: dict) -> dict:
    """
    Build credentials from the decoded info once, so a key with missing
    fields (client_email, token_uri, private_key) fails at startup.
    """
    try:
        service_account.Credentials.from_service_account_info(info)
    except (GoogleAuthError, ValueError, KeyError) as exc:
        raise ConfigurationError(f"Service-account credential is incomplete or malformed: {exc}") from exc
    return info


def decode_service_account(blob: str) -> Optional[dict]:
    """
    Decode a base64 service-account credential blob into its JSON dict.

    Returns None for an empty blob. Raises ConfigurationError when the blob
    is present but unusable, because a half-configured credential should stop
    the run before any network work starts.
    """
    if not blob or not blob.strip():
        return None
    try:
        raw = base64.b64decode(blob.strip(), validate=True)
        info = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"GOOGLE_SERVICE_ACCOUNT_B64 is not valid base64 JSON: {exc}") from exc
    if not isinstance(info, dict) or info.get("type") != "service_account":
        raise ConfigurationError("GOOGLE_SERVICE_ACCOUNT_B64 does not contain a service_account credential")
    return validate_service_account(info)


def load_settings(**overrides) -> PipelineSettings:
    """
    Build the process-wide settings snapshot.

    Configuration errors are fatal and reported before any pipeline work.
    """
    api_key = overrides.pop("gemini_api_key", None) or GEMINI_API_KEY
    if not api_key:
        raise ConfigurationError("GEMINI_API_KEY environment variable is not set.")

    strategy = overrides.get("discovery_strategy", DISCOVERY_STRATEGY)
    if strategy not in {"listing", "index"}:
        raise ConfigurationError(f"Unknown DISCOVERY_STRATEGY '{strategy}' (expected 'listing' or 'index').")
    if strategy == "index" and not overrides.get("index_url_template", INDEX_URL_TEMPLATE):
        raise ConfigurationError("DISCOVERY_STRATEGY=index requires INDEX_URL_TEMPLATE.")

    if "drive_service_account_info" not in overrides:
        overrides["drive_service_account_info"] = decode_service_account(GOOGLE_SERVICE_ACCOUNT_B64)
    elif overrides["drive_service_account_info"]:
        validate_service_account(overrides["drive_service_account_info"])
    overrides.setdefault("drive_api_key", GOOGLE_DRIVE_API_KEY)

    return PipelineSettings(gemini_api_key=api_key, **overrides)
