import pytest
from fakes import FakeStore, question

from quizsync.errors import LinkConflict, StoreWriteError
from quizsync.linker import DocumentLinker, variant_payload


def test_variant_payload_copies_preserved_fields():
    source = question(1, "Q1", correctOption="C", level=3)
    payload = variant_payload(source, {"question": "Olá?"})
    assert payload == {"question": "Olá?", "correctOption": "C", "level": 3, "baseId": "Q1"}


def test_ensure_link_assigns_missing_document_id():
    source = question(1, "Q1", link_id="")
    store = FakeStore([source])
    linker = DocumentLinker(store, "en")

    assert linker.ensure_link(source) == "doc-Q1"
    assert store.writes == [("link", "doc-Q1", "en")]


def test_attach_variant_creates_then_updates():
    source = question(1, "Q1")
    store = FakeStore([source])
    linker = DocumentLinker(store, "en")

    created = linker.attach_variant("doc-Q1", "pt", {"question": "Olá?"}, source)
    assert created.link_id == "doc-Q1"
    assert created.content["correctOption"] == "A"

    linker.attach_variant("doc-Q1", "pt", {"question": "Oi?"}, source)
    assert [w[0] for w in store.writes] == ["create", "update"]
    assert len(store.find_records("Q1", "pt")) == 1


def test_attach_variant_refuses_source_locale():
    source = question(1, "Q1")
    linker = DocumentLinker(FakeStore([source]), "en")
    with pytest.raises(StoreWriteError):
        linker.attach_variant("doc-Q1", "en", {"question": "x"}, source)


def test_attach_variant_detects_unlinked_copy():
    source = question(1, "Q1")
    stray = question(5, "Q1", "pt", link_id="doc-stray")
    store = FakeStore([source, stray])
    linker = DocumentLinker(store, "en")

    with pytest.raises(LinkConflict) as excinfo:
        linker.attach_variant("doc-Q1", "pt", {"question": "Olá?"}, source)
    assert excinfo.value.record_ids == [5]

    # Replacing the stray copy itself is allowed.
    linker.attach_variant("doc-Q1", "pt", {"question": "Olá?"}, source, replacing=stray)
    assert ("create", "doc-Q1", "pt") in store.writes


def test_verify_link():
    source = question(1, "Q1")
    store = FakeStore([source, question(10, "Q1", "pt")])
    linker = DocumentLinker(store, "en", ("pt", "es"))
    assert linker.verify_link("Q1").linked

    store.records.append(question(11, "Q1", "es", link_id="doc-stray"))
    status = linker.verify_link("Q1")
    assert not status.linked
    assert len(status.variants) == 2


def test_attach_variant_follows_source_publish_state():
    published = question(1, "Q1", published=True)
    draft = question(2, "Q2")
    store = FakeStore([published, draft])
    linker = DocumentLinker(store, "en")

    assert linker.attach_variant("doc-Q1", "pt", {"question": "Olá?"}, published).published
    assert not linker.attach_variant("doc-Q2", "pt", {"question": "Oi?"}, draft).published
