import datetime

import pytest
import requests

from minutes_digest.errors import OriginFetchError
from minutes_digest.locator import fetch_index_day, locate_from_index, parse_index_records
from minutes_digest.models import LinkKind

TODAY = datetime.date(2024, 7, 25)


class _FakeResponse:
    def __init__(self, payload=None, status_code=200, body_is_json=True):
        self._payload = payload
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._body_is_json = body_is_json

    def json(self):
        if not self._body_is_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class _FakeSession:
    """Answers per-day index queries from a {date: response-or-exception} map."""

    def __init__(self, by_date, default=None):
        self.by_date = by_date
        self.default = default
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        for day, answer in self.by_date.items():
            if day in url:
                if isinstance(answer, Exception):
                    raise answer
                return answer
        if isinstance(self.default, Exception):
            raise self.default
        return self.default or _FakeResponse([])


def test_parse_index_records_reads_published_files_and_filters_body():
    records = [
        {
            "startDateTime": "2024-07-23T17:00:00",
            "categoryName": "City Council",
            "publishedFiles": [
                {"type": "Agenda", "url": "/files/agenda-0723.pdf"},
                {"type": "Minutes", "url": "/files/minutes-0723.pdf"},
            ],
        },
        {
            "startDateTime": "2024-07-23T13:00:00",
            "categoryName": "Planning and Zoning Commission",
            "publishedFiles": [{"type": "Minutes", "url": "/files/pz-minutes.pdf"}],
        },
    ]

    links = parse_index_records(records, "https://api.example.gov/events", body_filter="City Council")

    assert len(links) == 1
    assert links[0].source_date == datetime.date(2024, 7, 23)
    assert links[0].raw_url == "https://api.example.gov/files/minutes-0723.pdf"


def test_parse_index_records_understands_legistar_flat_minutes_field():
    records = [{
        "EventDate": "2024-07-01T00:00:00",
        "EventBodyName": "City Council",
        "EventAgendaFile": "https://legistar.example/agenda.pdf",
        "EventMinutesFile": "https://drive.google.com/file/d/1AbCdEfGhIjKlMnOp/view",
    }]

    links = parse_index_records(records, "https://webapi.legistar.com/v1/x/events", body_filter="city council")

    assert len(links) == 1
    assert links[0].link_kind is LinkKind.GATED_SHARE


def test_parse_index_records_falls_back_to_query_day_when_record_has_no_date():
    records = [{"categoryName": "City Council", "publishedFiles": [{"type": "Minutes", "path": "m.pdf"}]}]
    links = parse_index_records(records, "https://api.example.gov/", fallback_date=TODAY)
    assert links[0].source_date == TODAY


def test_fetch_index_day_treats_non_json_and_errors_as_no_meeting():
    session = _FakeSession({
        "2024-07-25": _FakeResponse(body_is_json=False),
        "2024-07-24": _FakeResponse(status_code=500),
        "2024-07-23": _FakeResponse({"value": [{"EventId": 1}]}),
    })
    template = "https://api.example.gov/events?date={date}"

    assert fetch_index_day(session, template, datetime.date(2024, 7, 25), 5) == []
    assert fetch_index_day(session, template, datetime.date(2024, 7, 24), 5) == []
    assert fetch_index_day(session, template, datetime.date(2024, 7, 23), 5) == [{"EventId": 1}]


def test_fetch_index_day_returns_none_on_transport_failure():
    session = _FakeSession({}, default=requests.ConnectionError("down"))
    assert fetch_index_day(session, "https://api.example.gov/{date}", TODAY, 5) is None


def test_locate_from_index_queries_each_day_and_sorts(settings):
    session = _FakeSession({
        "2024-07-25": _FakeResponse(body_is_json=False),
        "2024-07-24": _FakeResponse([{
            "categoryName": "City Council",
            "publishedFiles": [{"type": "Minutes", "url": "https://files.example.gov/m-0724.pdf"}],
        }]),
        "2024-07-23": _FakeResponse([{
            "categoryName": "City Council",
            "publishedFiles": [{"type": "Minutes", "url": "https://files.example.gov/m-0723.pdf"}],
        }]),
    })

    links = locate_from_index(settings, session=session, today=TODAY)

    assert len(session.calls) == settings.lookback_days
    assert [link.raw_url for link in links] == [
        "https://files.example.gov/m-0724.pdf",
        "https://files.example.gov/m-0723.pdf",
    ]


def test_locate_from_index_survives_some_failed_days(settings):
    session = _FakeSession({
        "2024-07-25": requests.Timeout("slow"),
        "2024-07-24": _FakeResponse([{
            "categoryName": "City Council",
            "publishedFiles": [{"type": "Minutes", "url": "https://files.example.gov/m-0724.pdf"}],
        }]),
    })

    links = locate_from_index(settings, session=session, today=TODAY)

    assert [link.source_date for link in links] == [datetime.date(2024, 7, 24)]


def test_locate_from_index_unreachable_for_every_day_is_origin_failure(settings):
    session = _FakeSession({}, default=requests.ConnectionError("dns failure"))
    with pytest.raises(OriginFetchError):
        locate_from_index(settings, session=session, today=TODAY)
