import pytest
from fastapi.testclient import TestClient

from api.main import app, get_pipeline_runner, get_settings_provider, limiter
from minutes_digest.errors import ConfigurationError, OriginFetchError
from minutes_digest.models import MeetingSummary

# Rate limiting is exercised in production, not per test.
limiter.enabled = False

client = TestClient(app)


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def _use(settings=None, runner=None, settings_error=None):
    def provider():
        if settings_error:
            raise settings_error
        return settings

    app.dependency_overrides[get_settings_provider] = lambda: provider
    if runner is not None:
        app.dependency_overrides[get_pipeline_runner] = lambda: runner


def test_read_root():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "message": "Housing Minutes Digest API is running. Go to /docs for the Swagger UI.",
    }


def test_summarize_returns_public_json_shape(settings):
    summaries = [
        MeetingSummary("2024-07-23", "Council approved a rezoning for 300 apartments.", "https://x/0723.pdf"),
        MeetingSummary("2024-07-09", "Staff reported on shelter capacity.", "https://x/0709.pdf"),
    ]
    seen = []

    def runner(s):
        seen.append(s)
        return summaries

    _use(settings=settings, runner=runner)

    response = client.get("/api/summarize")

    assert response.status_code == 200
    assert response.json() == [
        {"date": "2024-07-23", "summary": "Council approved a rezoning for 300 apartments.",
         "originalUrl": "https://x/0723.pdf"},
        {"date": "2024-07-09", "summary": "Staff reported on shelter capacity.",
         "originalUrl": "https://x/0709.pdf"},
    ]
    assert response.headers["cache-control"] == "s-maxage=3600, stale-while-revalidate"
    assert seen == [settings]


def test_summarize_empty_result_is_not_an_error(settings):
    _use(settings=settings, runner=lambda s: [])

    response = client.get("/api/summarize")

    assert response.status_code == 200
    assert response.json() == []


def test_missing_key_returns_structured_500():
    runner_calls = []
    _use(settings_error=ConfigurationError("GEMINI_API_KEY environment variable is not set."),
         runner=lambda s: runner_calls.append(s))

    response = client.get("/api/summarize")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to process meeting summaries."
    assert "GEMINI_API_KEY" in body["details"]
    assert runner_calls == []


def test_origin_failure_returns_structured_500(settings):
    def runner(s):
        raise OriginFetchError("Listing page returned HTTP 503")

    _use(settings=settings, runner=runner)

    response = client.get("/api/summarize")

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to process meeting summaries.",
        "details": "Listing page returned HTTP 503",
    }
    assert "cache-control" not in response.headers


def test_unexpected_error_is_hidden_from_client(settings):
    def runner(s):
        raise KeyError("internal detail")

    _use(settings=settings, runner=runner)

    response = client.get("/api/summarize")

    assert response.status_code == 500
    assert "internal detail" not in response.text


def test_health_reports_configuration(settings):
    _use(settings=settings)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "discovery_strategy": "listing",
        "drive_authenticated": False,
    }


def test_health_unhealthy_without_key():
    _use(settings_error=ConfigurationError("GEMINI_API_KEY environment variable is not set."))

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_metrics_endpoint_exposes_pipeline_and_http_series(settings):
    _use(settings=settings, runner=lambda s: [])
    client.get("/api/summarize")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert 'hd_http_requests_total{method="GET",path="/api/summarize",status="200"}' in response.text


def test_bad_drive_credential_returns_structured_500(settings, mocker):
    locate = mocker.patch("minutes_digest.run_pipeline.locate_documents")
    # No runner override: the real pipeline builds its Drive client first.
    _use(settings=settings.with_overrides(drive_service_account_info={"type": "service_account"}))

    response = client.get("/api/summarize")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to process meeting summaries."
    assert "incomplete or malformed" in body["details"]
    locate.assert_not_called()
