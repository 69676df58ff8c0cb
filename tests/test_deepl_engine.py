import pytest
import requests
from fakes import make_cfg

from quizsync.engines.deepl import FREE_API_URL, PRO_API_URL, DeepLClient, api_url_for_key
from quizsync.engines.factory import build_provider
from quizsync.errors import (
    ProviderAuthError,
    ProviderQuotaExceeded,
    ProviderRateLimited,
    ProviderTransientError,
)


class FakeResponse:
    def __init__(self, status_code: int, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.headers = headers or {}
        self.text = str(self._payload)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, headers=None, timeout=None):
        self.requests.append(("GET", url, None, headers))
        return self._next()

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append(("POST", url, json, headers))
        return self._next()


def _client(session, **kwargs):
    return DeepLClient(
        api_key="abc:fx",
        session=session,
        provider_langs={"pt": "PT-BR", "en": "EN-US"},
        **kwargs,
    )


def test_api_url_for_key():
    assert api_url_for_key("abc:fx") == FREE_API_URL
    assert api_url_for_key("abc") == PRO_API_URL


def test_translate_batch_maps_locales_and_keeps_blanks():
    session = FakeSession(
        [FakeResponse(200, {"translations": [{"text": "Olá"}, {"text": "Sim"}]})]
    )
    client = _client(session)

    out = client.translate_batch(["Hello", "", "Yes"], "pt")

    assert out == ["Olá", "", "Sim"]
    method, url, body, headers = session.requests[0]
    assert method == "POST"
    assert url == f"{FREE_API_URL}/translate"
    assert body == {"text": ["Hello", "Yes"], "source_lang": "EN", "target_lang": "PT-BR"}
    assert headers["Authorization"] == "DeepL-Auth-Key abc:fx"


def test_translate_batch_all_blank_makes_no_request():
    session = FakeSession([])
    assert _client(session).translate_batch(["", " "], "pt") == ["", ""]
    assert session.requests == []


def test_get_usage():
    session = FakeSession([FakeResponse(200, {"character_count": 120, "character_limit": 500000})])
    state = _client(session).get_usage()
    assert state.characters_used == 120
    assert state.remaining == 499880
    assert session.requests[0][1] == f"{FREE_API_URL}/usage"


@pytest.mark.parametrize(
    "response, expected",
    [
        (FakeResponse(403, {"message": "Wrong key"}), ProviderAuthError),
        (FakeResponse(456, {"message": "Quota exceeded"}), ProviderQuotaExceeded),
        (FakeResponse(429, {"message": "Too many requests"}, {"Retry-After": "3"}), ProviderRateLimited),
        (FakeResponse(503, {"message": "Unavailable"}), ProviderTransientError),
    ],
)
def test_translate_classifies_errors(response, expected):
    session = FakeSession([response])
    with pytest.raises(expected):
        _client(session).translate("Hello", "pt")


def test_rate_limit_carries_retry_after():
    session = FakeSession([FakeResponse(429, {"message": "slow down"}, {"Retry-After": "7"})])
    with pytest.raises(ProviderRateLimited) as excinfo:
        _client(session).translate("Hello", "pt")
    assert excinfo.value.retry_after == 7.0


def test_timeout_is_transient():
    session = FakeSession([requests.Timeout("read timed out")])
    with pytest.raises(ProviderTransientError):
        _client(session, timeout=5).translate("Hello", "pt")


def test_length_mismatch_is_transient():
    session = FakeSession([FakeResponse(200, {"translations": [{"text": "Olá"}]})])
    with pytest.raises(ProviderTransientError):
        _client(session).translate_batch(["Hello", "World"], "pt")


def test_build_provider_requires_deepl_key():
    with pytest.raises(RuntimeError):
        build_provider(make_cfg(deepl_api_key=None))

    provider = build_provider(make_cfg(deepl_api_key="abc:fx"), session=FakeSession([]))
    assert provider.name == "deepl"
    assert provider.api_url == FREE_API_URL
