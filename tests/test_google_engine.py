import pytest
from google.api_core import exceptions as gexc

from quizsync.engines.google_v3 import GoogleTranslateV3, classify_google_error
from quizsync.errors import ProviderAuthError, ProviderRateLimited, ProviderTransientError


def test_google_engine_requires_project_id():
    engine = GoogleTranslateV3(project_id="")
    with pytest.raises(ProviderAuthError):
        engine.translate("hello", "pt")


def test_google_engine_skips_blank_texts_without_client():
    engine = GoogleTranslateV3(project_id="")
    assert engine.translate_batch(["", "  "], "pt") == ["", ""]


def test_google_engine_reports_unlimited_usage():
    state = GoogleTranslateV3(project_id="p").get_usage()
    assert state.unlimited
    assert state.remaining is None


def test_google_target_code_keeps_region_case():
    engine = GoogleTranslateV3(project_id="p", provider_langs={"pt": "PT-BR"})
    assert engine.target_code("pt") == "pt-BR"
    assert engine.target_code("fr") == "fr"


def test_classify_google_error():
    assert isinstance(classify_google_error(gexc.PermissionDenied("no")), ProviderAuthError)
    assert isinstance(classify_google_error(gexc.TooManyRequests("slow")), ProviderRateLimited)
    assert isinstance(classify_google_error(gexc.ServiceUnavailable("down")), ProviderTransientError)
