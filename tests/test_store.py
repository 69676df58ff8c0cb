import json

import pytest

from quizsync.errors import StoreAuthError, StoreError, StoreWriteError
from quizsync.models import QuestionRecord
from quizsync.store import StrapiClient


class FakeResponse:
    def __init__(self, status_code: int, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.text = self.content.decode("utf-8")

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.requests.append((method, url, params, json))
        return self.responses.pop(0)


def _page(items, page, page_count):
    return {
        "data": items,
        "meta": {"pagination": {"page": page, "pageCount": page_count, "total": 3}},
    }


def _item(record_id, base_id, locale="en"):
    return {
        "id": record_id,
        "documentId": f"doc-{base_id}",
        "baseId": base_id,
        "locale": locale,
        "question": f"Question {base_id}?",
        "correctOption": "A",
        "publishedAt": None,
    }


def _client(session, sleeps=None):
    return StrapiClient(
        api_url="https://cms.example.org/api",
        api_token="secret",
        session=session,
        page_size=2,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


def test_iter_records_follows_pagination():
    session = FakeSession(
        [
            FakeResponse(200, _page([_item(1, "Q1"), _item(2, "Q2")], 1, 2)),
            FakeResponse(200, _page([_item(3, "Q3")], 2, 2)),
        ]
    )
    records = list(_client(session).iter_records("en"))

    assert [r.base_id for r in records] == ["Q1", "Q2", "Q3"]
    assert records[0].link_id == "doc-Q1"
    assert records[0].content["correctOption"] == "A"
    method, url, params, _ = session.requests[1]
    assert method == "GET"
    assert url == "https://cms.example.org/api/questions"
    assert params["pagination[page]"] == 2
    assert params["status"] == "draft"
    assert session.requests[0][3] is None


def test_request_retries_on_rate_limit():
    sleeps = []
    session = FakeSession(
        [
            FakeResponse(429, {"error": {"message": "Too many requests"}}),
            FakeResponse(200, _page([_item(1, "Q1")], 1, 1)),
        ]
    )
    page = _client(session, sleeps).list_records("en")

    assert [r.base_id for r in page.records] == ["Q1"]
    assert not page.has_more
    assert sleeps == [1]


def test_auth_error_is_not_retried():
    session = FakeSession([FakeResponse(401, {"error": {"message": "Unauthorized"}})])
    with pytest.raises(StoreAuthError):
        _client(session).count_records("en")
    assert len(session.requests) == 1


def test_write_client_error_raises_write_error():
    session = FakeSession([FakeResponse(400, {"error": {"message": "Invalid locale"}})])
    with pytest.raises(StoreWriteError):
        _client(session).create_variant("doc-Q1", "pt", {"question": "Olá"})


def test_server_errors_exhaust_retries():
    sleeps = []
    session = FakeSession([FakeResponse(502, {"error": {"message": "Bad gateway"}})] * 5)
    with pytest.raises(StoreError):
        _client(session, sleeps).list_records("en")
    assert sleeps == [1, 2, 4, 8]


def test_get_variant_returns_none_when_missing():
    session = FakeSession([FakeResponse(404, {"error": {"message": "Not Found"}})])
    assert _client(session).get_variant("doc-Q1", "pt") is None


def test_get_variant_ignores_locale_fallback():
    session = FakeSession([FakeResponse(200, {"data": _item(1, "Q1", "en")})])
    assert _client(session).get_variant("doc-Q1", "pt") is None


def test_create_variant_puts_under_document_link():
    session = FakeSession([FakeResponse(200, {"data": _item(9, "Q1", "pt")})])
    record = _client(session).create_variant("doc-Q1", "pt", {"question": "Olá?"})

    assert record.locale == "pt"
    assert record.link_id == "doc-Q1"
    method, url, params, body = session.requests[0]
    assert method == "PUT"
    assert url.endswith("/questions/doc-Q1")
    assert params == {"locale": "pt"}
    assert body == {"data": {"question": "Olá?"}}


def test_delete_record_uses_link_and_locale():
    session = FakeSession([FakeResponse(204)])
    record = QuestionRecord(9, "doc-Q1", "Q1", "pt")
    _client(session).delete_record(record)

    method, url, params, _ = session.requests[0]
    assert method == "DELETE"
    assert url.endswith("/questions/doc-Q1")
    assert params == {"locale": "pt"}


def test_ensure_locale_exists_skips_known_locale():
    session = FakeSession([FakeResponse(200, [{"code": "en"}, {"code": "pt"}])])
    _client(session).ensure_locale_exists("pt")
    assert len(session.requests) == 1


def test_ensure_locale_exists_tolerates_race():
    session = FakeSession(
        [
            FakeResponse(200, [{"code": "en"}]),
            FakeResponse(400, {"error": {"message": "This locale already exists"}}),
        ]
    )
    _client(session).ensure_locale_exists("fr")
    assert session.requests[1][0] == "POST"
    assert session.requests[1][3]["code"] == "fr"


def test_from_payload_reads_v4_attributes():
    record = QuestionRecord.from_payload(
        {"id": 4, "attributes": {"baseId": "Q4", "locale": "en", "question": "Why?"}}
    )
    assert record.record_id == 4
    assert record.base_id == "Q4"
    assert record.content == {"question": "Why?"}


def test_create_variant_publishes_when_asked():
    session = FakeSession([FakeResponse(200, {"data": {**_item(9, "Q1", "pt"), "publishedAt": "2024-05-01T00:00:00Z"}})])
    record = _client(session).create_variant("doc-Q1", "pt", {"question": "Olá?"}, publish=True)

    assert record.published
    assert session.requests[0][2] == {"locale": "pt", "status": "published"}


def test_published_link_ids_lists_published_versions():
    session = FakeSession([FakeResponse(200, _page([_item(1, "Q1"), _item(2, "Q2")], 1, 1))])
    assert _client(session).published_link_ids("en") == {"doc-Q1", "doc-Q2"}
    assert session.requests[0][2]["status"] == "published"


def test_assign_link_resaves_by_numeric_id():
    session = FakeSession([FakeResponse(200, {"data": _item(4, "Q4")})])
    record = QuestionRecord(4, None, "Q4", "en")

    assert _client(session).assign_link(record) == "doc-Q4"
    method, url, params, body = session.requests[0]
    assert method == "PUT"
    assert url.endswith("/questions/4")
    assert body == {"data": {"baseId": "Q4"}}
