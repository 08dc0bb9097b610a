import datetime
import json
import threading

import pytest

from minutes_digest import run_pipeline
from minutes_digest.errors import ConfigurationError, OriginFetchError, PipelineError
from minutes_digest.lexicon import NO_TOPIC_SENTINEL
from minutes_digest.models import CandidateLink, LinkKind, ResolvedDocument
from minutes_digest.run_pipeline import (
    PipelineComponents,
    process_link,
    summarize_links,
    summarize_meetings,
)
from minutes_digest.summarizer import SUMMARY_ERROR

HOUSING_TEXT = "Roll call.\n\nCouncil approved 120 units of affordable housing on Riverside Dr."
PARKING_TEXT = "Roll call.\n\nStaff presented parking meter rates."


def _link(day, name, kind=LinkKind.DIRECT_BINARY):
    return CandidateLink(datetime.date(2024, 7, day), f"https://city.example.gov/docs/{name}.pdf", kind)


class _FakeResolver:
    """Maps URL -> bytes; unknown URLs are unresolved (None)."""

    def __init__(self, documents):
        self.documents = documents
        self.calls = []
        self._lock = threading.Lock()

    def resolve(self, link):
        with self._lock:
            self.calls.append(link.raw_url)
        content = self.documents.get(link.raw_url)
        if content is None:
            return None
        if isinstance(content, Exception):
            raise content
        return ResolvedDocument(content=content, content_type="application/pdf", url=link.raw_url)


class _FakeSummarizer:
    def __init__(self, reply="Council approved new affordable units."):
        self.reply = reply
        self.calls = 0
        self._lock = threading.Lock()

    def summarize(self, excerpt):
        with self._lock:
            self.calls += 1
        return self.reply(excerpt) if callable(self.reply) else self.reply


def _components(documents, reply="Council approved new affordable units."):
    # The fake "PDF bytes" are the page text itself.
    return PipelineComponents(
        resolver=_FakeResolver(documents),
        summarizer=_FakeSummarizer(reply),
        extract=lambda data, label="document": data.decode("utf-8"),
    )


def test_no_links_returns_empty_without_downstream_calls(settings, mocker):
    mocker.patch("minutes_digest.run_pipeline.locate_documents", return_value=[])
    components = _components({})

    assert summarize_meetings(settings, components=components) == []
    assert components.resolver.calls == []
    assert components.summarizer.calls == 0


def test_incomplete_service_account_fails_before_locating(settings, mocker):
    locate = mocker.patch("minutes_digest.run_pipeline.locate_documents", return_value=[_link(23, "m")])

    with pytest.raises(PipelineError, match="incomplete or malformed"):
        summarize_meetings(settings.with_overrides(drive_service_account_info={"type": "service_account"}))
    locate.assert_not_called()


def test_unresolved_link_is_skipped_and_siblings_survive(settings, mocker):
    good = _link(23, "minutes-0723")
    missing = _link(9, "minutes-0709")
    mocker.patch("minutes_digest.run_pipeline.locate_documents", return_value=[good, missing])
    components = _components({good.raw_url: HOUSING_TEXT.encode()})

    out = summarize_meetings(settings, components=components)

    assert [s.original_url for s in out] == [good.raw_url]
    assert sorted(components.resolver.calls) == sorted([good.raw_url, missing.raw_url])


def test_sentinel_summary_is_omitted():
    link = _link(23, "minutes-0723")
    components = _components({link.raw_url: HOUSING_TEXT.encode()}, reply=NO_TOPIC_SENTINEL)

    assert process_link(link, components, max_chars=15000) is None
    assert components.summarizer.calls == 1


def test_error_summary_is_omitted():
    link = _link(23, "minutes-0723")
    components = _components({link.raw_url: HOUSING_TEXT.encode()}, reply=SUMMARY_ERROR)
    assert process_link(link, components, max_chars=15000) is None


def test_off_topic_document_never_reaches_summarizer():
    link = _link(23, "minutes-0723")
    components = _components({link.raw_url: PARKING_TEXT.encode()})

    assert process_link(link, components, max_chars=15000) is None
    assert components.summarizer.calls == 0


def test_empty_extraction_is_skipped():
    link = _link(23, "minutes-0723")
    components = _components({link.raw_url: b""})

    assert process_link(link, components, max_chars=15000) is None
    assert components.summarizer.calls == 0


def test_summary_carries_date_and_original_share_url():
    link = CandidateLink(
        datetime.date(2024, 7, 23),
        "https://drive.google.com/file/d/1AbCdEfGhIjKlMnOp/view?usp=sharing",
        LinkKind.GATED_SHARE,
    )
    components = _components({link.raw_url: HOUSING_TEXT.encode()})

    summary = process_link(link, components, max_chars=15000)

    assert summary.to_dict() == {
        "date": "2024-07-23",
        "summary": "Council approved new affordable units.",
        "originalUrl": link.raw_url,
    }


def test_results_sorted_newest_first_regardless_of_completion_order():
    links = [_link(2, "a"), _link(30, "b"), _link(16, "c")]
    components = _components({link.raw_url: HOUSING_TEXT.encode() for link in links})

    out = summarize_links(links, components, max_chars=15000, workers=3)

    assert [s.date for s in out] == ["2024-07-30", "2024-07-16", "2024-07-02"]


def test_unexpected_exception_in_one_link_is_isolated():
    boom = _link(30, "boom")
    fine = _link(2, "fine")
    components = _components({boom.raw_url: RuntimeError("kaboom"), fine.raw_url: HOUSING_TEXT.encode()})

    out = summarize_links([boom, fine], components, max_chars=15000, workers=2)

    assert [s.original_url for s in out] == [fine.raw_url]


def test_origin_failure_propagates(settings, mocker):
    mocker.patch(
        "minutes_digest.run_pipeline.locate_documents",
        side_effect=OriginFetchError("Listing page returned HTTP 503"),
    )
    with pytest.raises(OriginFetchError):
        summarize_meetings(settings)


def test_build_components_wires_settings(settings):
    components = run_pipeline.build_components(settings.with_overrides(gemini_temperature=0.5))

    assert components.summarizer.temperature == 0.5
    assert components.resolver.drive_client is None
    assert components.summarizer.provider.api_key == "test-key"


def test_cli_prints_summaries_as_json(settings, mocker, capsys):
    mocker.patch("minutes_digest.run_pipeline.load_settings", return_value=settings)
    mocker.patch(
        "minutes_digest.run_pipeline.summarize_meetings",
        return_value=[run_pipeline.MeetingSummary("2024-07-23", "Rezoning approved.", "https://x/m.pdf")],
    )

    assert run_pipeline.main(["--max-meetings", "2"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out == [{"date": "2024-07-23", "summary": "Rezoning approved.", "originalUrl": "https://x/m.pdf"}]
    run_pipeline.load_settings.assert_called_once_with(max_meetings=2)


def test_cli_reports_configuration_error(mocker, capsys):
    mocker.patch(
        "minutes_digest.run_pipeline.load_settings",
        side_effect=ConfigurationError("GEMINI_API_KEY environment variable is not set."),
    )

    assert run_pipeline.main([]) == 1

    err = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert err["error"] == "Failed to process meeting summaries."
    assert "GEMINI_API_KEY" in err["details"]
