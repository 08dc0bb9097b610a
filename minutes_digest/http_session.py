import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from minutes_digest.config import HTTP_MAX_RETRIES, HTTP_USER_AGENT


def build_session(max_retries=HTTP_MAX_RETRIES, user_agent=HTTP_USER_AGENT) -> requests.Session:
    """
    Build a requests session with a small retry budget for transient 5xx errors.
    """
    session = requests.Session()
    # Security: ignore .netrc and proxy credentials from the environment (CVE-2024-3651).
    session.trust_env = False
    session.headers.update({"User-Agent": user_agent})
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=0.2,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods={"GET"},
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def redact_url(url: str) -> str:
    """Drop API keys from URLs before they reach the logs."""
    if not url or "key=" not in url:
        return url
    head, _, tail = url.partition("key=")
    rest = tail.split("&", 1)
    return head + "key=REDACTED" + ("&" + rest[1] if len(rest) > 1 else "")
