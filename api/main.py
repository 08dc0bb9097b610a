import logging
import os
from functools import lru_cache

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from minutes_digest.config import load_settings
from minutes_digest.errors import ConfigurationError, PipelineError
from minutes_digest.run_pipeline import summarize_meetings

# Metrics are internal-only and are scraped by Prometheus from the Docker network.
from api.metrics import instrument_app

# Set up Rate Limiting
# Every call to /api/summarize downloads PDFs and calls the LLM; one client
# hammering it would burn through the API quota.
limiter = Limiter(key_func=get_remote_address)

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("housing-digest-api")

# Summaries change at most once per council meeting; let the CDN hold them.
SUMMARY_CACHE_CONTROL = "s-maxage=3600, stale-while-revalidate"


@lru_cache(maxsize=1)
def _process_settings():
    # lru_cache doesn't store exceptions, so a missing key is re-checked on
    # the next request instead of being cached as a permanent failure.
    return load_settings()


def get_settings_provider():
    return _process_settings


def get_pipeline_runner():
    return summarize_meetings


app = FastAPI(
    title="Housing Minutes Digest API",
    description="Summaries of housing discussions in recent city council minutes.",
    default_response_class=ORJSONResponse,
)

instrument_app(app)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# SECURITY: Global Error Interceptor
# The user gets a generic message, the logs get the stack trace.
@app.middleware("http")
async def catch_exceptions_middleware(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logger.error(f"Unhandled Exception: {str(e)}", exc_info=True)
        return ORJSONResponse(
            status_code=500,
            content={"error": "Internal Server Error.", "details": "See server logs."},
        )


allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.get("/")
def read_root():
    return {"status": "ok", "message": "Housing Minutes Digest API is running. Go to /docs for the Swagger UI."}


@app.get("/health")
def health_check(settings_provider=Depends(get_settings_provider)):
    """
    Configuration check only; upstream sites are not contacted.
    """
    try:
        settings = settings_provider()
    except ConfigurationError as e:
        logger.error(f"Health check failed: {e}")
        return ORJSONResponse(status_code=503, content={"status": "unhealthy", "details": str(e)})
    return {
        "status": "healthy",
        "discovery_strategy": settings.discovery_strategy,
        "drive_authenticated": bool(settings.drive_service_account_info),
    }


@app.get("/api/summarize")
@limiter.limit("10/minute")
def summarize_housing(
    request: Request,
    settings_provider=Depends(get_settings_provider),
    runner=Depends(get_pipeline_runner),
):
    """
    Run the digest and return [{date, summary, originalUrl}, ...], newest first.

    Configuration and listing-source failures return HTTP 500 with a
    structured error; an empty list means nothing relevant was found.
    Declared sync so FastAPI runs it in the threadpool.
    """
    try:
        settings = settings_provider()
        summaries = runner(settings)
    except PipelineError as e:
        logger.error(f"Digest run failed: {e}")
        return ORJSONResponse(
            status_code=500,
            content={"error": "Failed to process meeting summaries.", "details": str(e)},
        )

    return ORJSONResponse(
        content=[summary.to_dict() for summary in summaries],
        headers={"Cache-Control": SUMMARY_CACHE_CONTROL},
    )
