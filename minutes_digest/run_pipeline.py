"""
Pipeline manager: locate -> resolve/fetch -> extract -> select -> summarize.

Every per-link pipeline runs in its own thread and owns its own data; the only
shared structure is the result list, assembled after all threads settle.
One bad link is logged and omitted, never allowed to abort its siblings.
"""

import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

from minutes_digest.config import load_settings
from minutes_digest.errors import ConfigurationError, OriginFetchError, PipelineError
from minutes_digest.extractor import extract_pdf_text
from minutes_digest.fetcher import Fetcher
from minutes_digest.http_session import build_session, redact_url
from minutes_digest.llm_provider import GeminiHttpProvider
from minutes_digest.locator import locate_documents
from minutes_digest.metrics import record_link_outcome, record_pipeline_run
from minutes_digest.models import CandidateLink, MeetingSummary
from minutes_digest.relevance import select_relevant
from minutes_digest.resolver import AuthenticatedDriveClient, LinkResolver
from minutes_digest.summarizer import SummarizerClient, is_error_summary, is_reportable_summary


logger = logging.getLogger("pipeline-manager")


@dataclass
class PipelineComponents:
    """The collaborators one run needs, built once from settings."""
    resolver: LinkResolver
    summarizer: SummarizerClient
    extract: object = extract_pdf_text


def build_components(settings, session=None) -> PipelineComponents:
    http = session or build_session(settings.http_max_retries, settings.http_user_agent)
    fetcher = Fetcher(http, timeout=settings.download_timeout_seconds, max_bytes=settings.max_file_size_bytes)

    drive_client = None
    if settings.drive_service_account_info:
        drive_client = AuthenticatedDriveClient(
            settings.drive_service_account_info,
            api_key=settings.drive_api_key,
            timeout=settings.download_timeout_seconds,
            session=http,
        )

    provider = GeminiHttpProvider(
        settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout_seconds=settings.gemini_timeout_seconds,
        max_retries=settings.gemini_max_retries,
        retry_backoff_seconds=settings.gemini_retry_backoff_seconds,
    )

    def extract(data, label="document"):
        return extract_pdf_text(
            data,
            label=label,
            server_endpoint=settings.tika_server_endpoint,
            timeout_seconds=settings.tika_timeout_seconds,
            ocr_fallback_enabled=settings.tika_ocr_fallback_enabled,
            min_chars_threshold=settings.tika_min_chars_for_no_ocr,
        )

    return PipelineComponents(
        resolver=LinkResolver(fetcher, drive_client=drive_client),
        summarizer=SummarizerClient(
            provider,
            temperature=settings.gemini_temperature,
            max_tokens=settings.gemini_max_output_tokens,
        ),
        extract=extract,
    )


def process_link(link: CandidateLink, components: PipelineComponents, max_chars: int) -> Optional[MeetingSummary]:
    """
    Run one link through resolve -> extract -> select -> summarize.

    Returns None whenever any stage ends the chain early.
    """
    url = redact_url(link.raw_url)

    document = components.resolver.resolve(link)
    if document is None:
        record_link_outcome("resolve", "unresolved")
        logger.warning(f"Skipping {url}: could not retrieve document")
        return None

    text = components.extract(document.content, label=url)
    # Bytes are no longer needed once text exists.
    del document
    if not text:
        record_link_outcome("extract", "empty_text")
        logger.warning(f"Skipping {url}: no text extracted")
        return None

    excerpt = select_relevant(text, max_chars=max_chars)
    if not excerpt:
        record_link_outcome("select", "empty_excerpt")
        logger.info(f"Skipping {url}: no housing paragraphs")
        return None

    summary = components.summarizer.summarize(excerpt)
    if is_error_summary(summary):
        record_link_outcome("summarize", "summary_error")
        return None
    if not is_reportable_summary(summary):
        record_link_outcome("summarize", "no_topic")
        logger.info(f"Skipping {url}: model found no housing topics")
        return None

    record_link_outcome("summarize", "summarized")
    return MeetingSummary(
        date=link.source_date.isoformat(),
        summary=summary,
        original_url=link.raw_url,
    )


def _settle(link: CandidateLink, components: PipelineComponents, max_chars: int) -> Optional[MeetingSummary]:
    try:
        return process_link(link, components, max_chars)
    except Exception:
        # Per-link barrier: any surprise in one link is logged and omitted.
        record_link_outcome("pipeline", "unexpected_error")
        logger.exception(f"Unexpected error while processing {redact_url(link.raw_url)}")
        return None


def summarize_links(links: List[CandidateLink], components: PipelineComponents,
                    max_chars: int, workers: int) -> List[MeetingSummary]:
    """
    Fan out over all links, wait for every one, then sort newest first.
    """
    if not links:
        return []

    logger.info(f"Processing {len(links)} meetings using {workers} threads...")
    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(links)))) as executor:
        outcomes = list(executor.map(lambda link: _settle(link, components, max_chars), links))

    summaries = [summary for summary in outcomes if summary is not None]
    summaries.sort(key=lambda summary: summary.date, reverse=True)
    return summaries


def summarize_meetings(settings, session=None, components: Optional[PipelineComponents] = None,
                       today=None) -> List[MeetingSummary]:
    """
    Full run. Origin failures propagate as OriginFetchError; everything
    per-link is absorbed. An empty list is a normal outcome.
    """
    # Clients are built before any network work so a bad credential fails
    # as a ConfigurationError up front.
    try:
        components = components or build_components(settings, session=session)
    except ConfigurationError:
        record_pipeline_run("config_error")
        raise

    try:
        links = locate_documents(settings, session=session, today=today)
    except OriginFetchError:
        record_pipeline_run("origin_error")
        raise

    if not links:
        logger.info("No recent meeting minutes found.")
        record_pipeline_run("ok")
        return []

    summaries = summarize_links(links, components, settings.excerpt_max_chars, settings.download_workers)
    logger.info(f"Produced {len(summaries)} housing summaries from {len(links)} meetings")
    record_pipeline_run("ok")
    return summaries


def run(settings=None, **kwargs) -> List[dict]:
    """
    Load settings (if not given), run, and return JSON-ready dicts.
    """
    if settings is None:
        try:
            settings = load_settings()
        except ConfigurationError:
            record_pipeline_run("config_error")
            raise
    return [summary.to_dict() for summary in summarize_meetings(settings, **kwargs)]


def main(argv=None):
    """
    CLI entrypoint: print the summaries as JSON.
    """
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    arg_parser = argparse.ArgumentParser(description="Summarize housing discussions in recent council minutes.")
    arg_parser.add_argument("--max-meetings", type=int, help="Cap on meetings processed this run")
    arg_parser.add_argument("--strategy", choices=["listing", "index"], help="Document discovery strategy")
    arg_parser.add_argument("--listing-url", help="Override the listing page URL")
    args = arg_parser.parse_args(argv)

    overrides = {}
    if args.max_meetings is not None:
        overrides["max_meetings"] = args.max_meetings
    if args.strategy:
        overrides["discovery_strategy"] = args.strategy
    if args.listing_url:
        overrides["listing_url"] = args.listing_url

    logger.info(">>> Starting housing minutes digest")
    try:
        settings = load_settings(**overrides)
        results = run(settings)
    except PipelineError as exc:
        if isinstance(exc, ConfigurationError):
            record_pipeline_run("config_error")
        logger.error(f"Pipeline failed: {exc}")
        print(json.dumps({"error": "Failed to process meeting summaries.", "details": str(exc)}), file=sys.stderr)
        return 1

    print(json.dumps(results, indent=2))
    logger.info("<<< Digest complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
