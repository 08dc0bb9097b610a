import os
import sys

import pytest

# Make the flat-layout packages importable without installing the project.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from minutes_digest.config import PipelineSettings


@pytest.fixture
def settings():
    """
    Settings snapshot for tests: no real keys, tiny window, no retries.
    """
    return PipelineSettings(
        gemini_api_key="test-key",
        listing_url="https://city.example.gov/council/meetings/",
        discovery_strategy="listing",
        index_url_template="https://api.example.gov/events?date={date}",
        lookback_days=3,
        max_meetings=5,
        index_workers=2,
        download_workers=3,
        http_max_retries=0,
        excerpt_max_chars=15000,
        gemini_max_retries=0,
    )
