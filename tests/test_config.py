import pytest

from quizsync.config import load_config


def _base_env(monkeypatch):
    monkeypatch.setenv("STRAPI_API_URL", "https://cms.example.org/api/")
    monkeypatch.setenv("STRAPI_API_TOKEN", "secret")
    for name in (
        "BOT_TARGET_LANGS",
        "BOT_SOURCE_LANG",
        "BOT_MT_PRIMARY",
        "BOT_PROVIDER_LANG_MAP",
        "BOT_BATCH_SIZE",
        "DATABASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_config_requires_env(monkeypatch):
    monkeypatch.delenv("STRAPI_API_URL", raising=False)
    monkeypatch.delenv("STRAPI_API_TOKEN", raising=False)

    with pytest.raises(RuntimeError):
        load_config()


def test_load_config_reads_values(monkeypatch):
    _base_env(monkeypatch)
    monkeypatch.setenv("BOT_TARGET_LANGS", "pt, es")
    monkeypatch.setenv("BOT_BATCH_SIZE", "25")
    monkeypatch.setenv("BOT_PROVIDER_LANG_MAP", "{\"pt\":\"PT-PT\"}")

    cfg = load_config()
    assert cfg.strapi_api_url == "https://cms.example.org/api"
    assert cfg.target_langs == ("pt", "es")
    assert cfg.batch_size == 25
    assert cfg.provider_langs == {"pt": "PT-PT"}
    assert cfg.mt_primary == "deepl"
    assert cfg.pg_dsn is None


def test_load_config_defaults_provider_langs(monkeypatch):
    _base_env(monkeypatch)

    cfg = load_config()
    assert cfg.provider_langs == {"pt": "PT-BR", "en": "EN-US"}
    assert cfg.target_langs == ("pt", "es", "fr")


def test_load_config_rejects_source_in_targets(monkeypatch):
    _base_env(monkeypatch)
    monkeypatch.setenv("BOT_TARGET_LANGS", "en,pt")

    with pytest.raises(RuntimeError):
        load_config()


def test_load_config_rejects_bad_lang_map(monkeypatch):
    _base_env(monkeypatch)
    monkeypatch.setenv("BOT_PROVIDER_LANG_MAP", "[1, 2]")

    with pytest.raises(RuntimeError):
        load_config()


def test_load_config_rejects_unknown_provider(monkeypatch):
    _base_env(monkeypatch)
    monkeypatch.setenv("BOT_MT_PRIMARY", "babelfish")

    with pytest.raises(RuntimeError):
        load_config()
