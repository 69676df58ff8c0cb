from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

import requests

from .errors import StoreAuthError, StoreError, StoreWriteError
from .models import QuestionRecord


log = logging.getLogger("quizsync.store")

MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class Page:
    records: list[QuestionRecord]
    page: int
    page_count: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.page < self.page_count


def _error_detail(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(data)[:200]


@dataclass
class StrapiClient:
    """REST client for a Strapi v5 collection with i18n enabled.

    Entries of one logical question share a ``documentId`` across locales;
    that id is the link the pipeline keeps consistent.
    """

    api_url: str
    api_token: str
    session: requests.Session
    collection: str = "questions"
    user_agent: str = "QuizSyncBot/0.1"
    timeout: float = 30.0
    page_size: int = 100
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> dict[str, Any] | None:
        url = f"{self.api_url.rstrip('/')}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "User-Agent": self.user_agent,
        }
        write = method != "GET"
        error_cls = StoreWriteError if write else StoreError
        backoff = 1
        last_error = ""
        for attempt in range(MAX_ATTEMPTS):
            try:
                resp = self.session.request(
                    method,
                    url,
                    params=params,
                    json=body,
                    headers=headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_error = f"{method} {path} failed: {exc}"
                resp = None
            if resp is not None:
                status = resp.status_code
                if status < 400:
                    if status == 204 or not resp.content:
                        return {}
                    return resp.json()
                if status in (401, 403):
                    raise StoreAuthError(f"{method} {path} HTTP {status}: {_error_detail(resp)}")
                if status == 404 and allow_missing:
                    return None
                last_error = f"{method} {path} HTTP {status}: {_error_detail(resp)}"
                if status != 429 and status < 500:
                    raise error_cls(last_error)
            if attempt < MAX_ATTEMPTS - 1:
                log.warning("%s; backing off %ss", last_error, backoff)
                self.sleep(backoff)
                backoff *= 2
        raise error_cls(f"{last_error} (exceeded retry attempts)")

    def _collection_path(self, document_id: str | int | None = None) -> str:
        if document_id is None:
            return self.collection
        return f"{self.collection}/{document_id}"

    def list_records(
        self,
        locale: str,
        page: int = 1,
        page_size: int | None = None,
        status: str = "draft",
    ) -> Page:
        data = self._request(
            "GET",
            self._collection_path(),
            params={
                "locale": locale,
                # drafts included so unpublished localizations are visible too
                "status": status,
                "pagination[page]": page,
                "pagination[pageSize]": page_size or self.page_size,
                "sort": "id:asc",
            },
        ) or {}
        records = [QuestionRecord.from_payload(item) for item in data.get("data") or []]
        pagination = (data.get("meta") or {}).get("pagination") or {}
        return Page(
            records=records,
            page=int(pagination.get("page", page)),
            page_count=int(pagination.get("pageCount", page)),
            total=int(pagination.get("total", len(records))),
        )

    def iter_records(self, locale: str, status: str = "draft") -> Iterator[QuestionRecord]:
        page = 1
        while True:
            result = self.list_records(locale, page=page, status=status)
            yield from result.records
            if not result.has_more or not result.records:
                break
            page += 1

    def published_link_ids(self, locale: str) -> set[str]:
        return {r.link_id for r in self.iter_records(locale, status="published") if r.link_id}

    def count_records(self, locale: str) -> int:
        return self.list_records(locale, page=1, page_size=1).total

    def find_records(self, base_id: str, locale: str) -> list[QuestionRecord]:
        data = self._request(
            "GET",
            self._collection_path(),
            params={
                "locale": locale,
                "status": "draft",
                "filters[baseId][$eq]": base_id,
                "pagination[pageSize]": self.page_size,
            },
        ) or {}
        return [QuestionRecord.from_payload(item) for item in data.get("data") or []]

    def get_record(self, base_id: str, locale: str) -> QuestionRecord | None:
        items = self.find_records(base_id, locale)
        if not items:
            return None
        if len(items) > 1:
            log.warning("multiple %s records for baseId=%s", locale, base_id)
        return items[0]

    def get_variant(self, link_id: str, locale: str) -> QuestionRecord | None:
        data = self._request(
            "GET",
            self._collection_path(link_id),
            params={"locale": locale, "status": "draft"},
            allow_missing=True,
        )
        if not data or not data.get("data"):
            return None
        record = QuestionRecord.from_payload(data["data"])
        # Strapi falls back to another locale on some setups; only an exact match counts.
        if record.locale and record.locale != locale:
            return None
        return record

    def _write_document(
        self, link_id: str, locale: str, content: dict[str, Any], publish: bool = False
    ) -> QuestionRecord:
        params = {"locale": locale}
        if publish:
            params["status"] = "published"
        data = self._request(
            "PUT",
            self._collection_path(link_id),
            params=params,
            body={"data": content},
        ) or {}
        if not data.get("data"):
            raise StoreWriteError(f"empty response writing {locale} for {link_id}")
        return QuestionRecord.from_payload(data["data"])

    def create_variant(
        self, link_id: str, locale: str, content: dict[str, Any], publish: bool = False
    ) -> QuestionRecord:
        # Updating a document in a locale it lacks creates that localization.
        return self._write_document(link_id, locale, content, publish)

    def update_variant(
        self, record: QuestionRecord, content: dict[str, Any], publish: bool = False
    ) -> QuestionRecord:
        if not record.link_id:
            raise StoreWriteError(f"record {record.record_id} has no documentId")
        return self._write_document(record.link_id, record.locale, content, publish)

    def delete_record(self, record: QuestionRecord) -> None:
        if not record.link_id:
            raise StoreWriteError(f"record {record.record_id} has no documentId")
        self._request(
            "DELETE",
            self._collection_path(record.link_id),
            params={"locale": record.locale},
        )

    def assign_link(self, record: QuestionRecord) -> str:
        """Give a legacy entry (no documentId) its document link by re-saving it.

        Routes by numeric id, so only stores that still accept it (Strapi v4
        style routes) reach this path. Strapi v5 assigns a documentId to every
        entry, and its sources never need linking.
        """
        if record.record_id is None:
            raise StoreWriteError("cannot link a record without an id")
        data = self._request(
            "PUT",
            self._collection_path(record.record_id),
            params={"locale": record.locale},
            body={"data": {"baseId": record.base_id}},
        ) or {}
        link_id = (data.get("data") or {}).get("documentId")
        if not link_id:
            raise StoreWriteError(f"store did not assign a documentId to record {record.record_id}")
        return str(link_id)

    def list_locales(self) -> list[str]:
        data = self._request("GET", "i18n/locales")
        items = data if isinstance(data, list) else (data or {}).get("data") or []
        return [str(item.get("code")) for item in items if item.get("code")]

    def ensure_locale_exists(self, code: str, name: str | None = None) -> None:
        if code in self.list_locales():
            return
        try:
            self._request(
                "POST",
                "i18n/locales",
                body={"code": code, "name": name or f"{code}", "isDefault": False},
            )
            log.info("registered locale %s", code)
        except StoreWriteError as exc:
            if "already exists" in str(exc).lower():
                return
            raise
