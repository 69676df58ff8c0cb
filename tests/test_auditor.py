import pytest
from fakes import FakeStore, question

from quizsync.auditor import Auditor, AuditScope, find_duplicates


def _store():
    return FakeStore(
        [
            question(1, "Q1"),
            question(2, "Q2"),
            question(3, "Q3"),
            question(10, "Q1", "fr"),
            question(11, "Q1", "fr", link_id="doc-other"),
            question(12, "Q2", "fr"),
            question(20, "Q1", "pt"),
        ]
    )


def test_audit_finds_duplicates_and_orphans():
    report = Auditor(_store(), "en").audit(AuditScope(locales=("fr",)))

    assert report.counts == {"en": 3, "fr": 3}
    assert report.missing == {}
    assert [(d.base_id, d.locale, len(d.records)) for d in report.duplicates] == [("Q1", "fr", 2)]
    assert [o.record.record_id for o in report.orphans] == [11]
    assert report.orphans[0].relinkable
    assert not report.consistent


def test_audit_counts_missing_translations():
    report = Auditor(_store(), "en").audit(AuditScope(locales=("pt",), checks=("counts",)))

    assert report.missing == {"pt": 2}
    assert report.orphans == []
    assert report.to_dict()["missing_translations"] == {"pt": 2}


def test_audit_clean_locale_is_consistent():
    store = FakeStore([question(1, "Q1"), question(10, "Q1", "pt")])
    assert Auditor(store, "en").audit(AuditScope(locales=("pt",))).consistent


def test_audit_reports_source_duplicates():
    store = FakeStore([question(1, "Q1"), question(2, "Q1", link_id="doc-Q1b")])
    report = Auditor(store, "en").audit(AuditScope(locales=("pt",), checks=("duplicates",)))
    assert [(d.base_id, d.locale) for d in report.duplicates] == [("Q1", "en")]


def test_linkage_sample_limits_variants():
    orphans, mismatched = Auditor(_store(), "en").linkage(["fr"], sample=1)
    assert orphans == []
    assert mismatched == []


def test_linkage_flags_base_id_mismatch():
    store = FakeStore([question(1, "Q1"), question(10, "Q9", "pt", link_id="doc-Q1")])
    _, mismatched = Auditor(store, "en").linkage(["pt"])
    assert [r.record_id for r in mismatched] == [10]


def test_unknown_check_rejected():
    with pytest.raises(ValueError):
        AuditScope(locales=("pt",), checks=("spelling",))


def test_find_duplicates_ignores_distinct_locales():
    assert find_duplicates([question(1, "Q1", "pt"), question(2, "Q1", "fr")]) == []
