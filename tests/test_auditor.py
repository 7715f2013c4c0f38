import logging
import threading
from unittest.mock import MagicMock

import pytest

from auditor import AuditOptions, SiteAuditor
from dataforseo import CrawlResult
from errors import AuditCancelled, InvalidInput, PersistenceConflict, UpstreamUnavailable
from models import AuditRecord, AuditStatus, CrawlSnapshot, MetadataSource, Site
from settings import Settings

GOOD_TITLE = ("Handmade oak furniture for every room " * 3)[:45]
GOOD_DESCRIPTION = ("Solid oak tables, chairs and shelving made to order in our workshop. " * 3)[:140]


def crawled(path, **overrides):
    fields = dict(
        url=f"https://example.com/{path}",
        status_code=200,
        title=GOOD_TITLE,
        description=GOOD_DESCRIPTION,
        h1_count=1,
        h2_count=2,
        word_count=720,
        image_count=5,
        internal_link_count=9,
        lcp_ms=1100,
        dom_complete_ms=800,
    )
    fields.update(overrides)
    return CrawlResult(**fields)


@pytest.fixture
def settings():
    return Settings(db_url="sqlite://", max_workers=4, crawl_timeout=5, write_timeout=5)


@pytest.fixture
def provider():
    return MagicMock()


@pytest.fixture
def auditor(Session, provider, settings):
    return SiteAuditor(session_factory=Session, crawl_provider=provider, settings=settings)


def test_twelve_page_site_with_four_h1_violations(auditor, provider, site):
    pages = [crawled(f"page-{n}", h1_count=2 if n < 4 else 1) for n in range(12)]
    provider.fetch_pages.return_value = pages

    run = auditor.run_audit(site.id)

    assert run.status is AuditStatus.COMPLETE
    assert run.source is MetadataSource.EXTERNAL
    assert run.page_count == 12
    assert run.score == 83
    assert run.severity_counts == {"critical": 0, "major": 4, "minor": 0}
    assert run.category_scores["structure"] == 83
    assert set(run.category_scores.values()) == {83, 100}
    assert run.passed_checks == 12 * 9 - 4
    assert [i.page_url for i in run.issues] == [f"https://example.com/page-{n}" for n in range(4)]
    kwargs = provider.fetch_pages.call_args.kwargs
    assert provider.fetch_pages.call_args.args == ("example.com",)
    assert kwargs["max_pages"] == 100
    assert kwargs["timeout"] == 5


def test_external_issues_persist_with_null_page(auditor, provider, site):
    provider.fetch_pages.return_value = [crawled("search?q=oak")]

    run = auditor.run_audit(site.id)

    stored = auditor.persister.fetch_issues(run.id, without_page=True)
    assert [i.check_name for i in stored] == ["dynamic_url"]
    record = auditor.persister.fetch_run(run.id)
    assert record.score == run.score
    assert record.category_scores == run.category_scores
    assert record.category_scores["technical"] == 90
    assert record.passed_checks == 8


def test_local_pages_used_without_provider(Session, settings, page_store, site):
    page = page_store.save_page(site.id, "https://example.com/", title="Short", description=GOOD_DESCRIPTION,
                                h1_count=1, h2_count=1, word_count=500)
    page_store.save_page(site.id, "https://example.com/empty")
    auditor = SiteAuditor(session_factory=Session, settings=settings)

    run = auditor.run_audit(site.id)

    assert auditor.crawl_provider is None
    assert run.source is MetadataSource.LOCAL
    assert run.page_count == 2
    assert [(i.check_name, i.page_id) for i in run.issues] == [("title", page.id)]
    assert run.score == 75
    assert auditor.persister.fetch_issues(run.id, page_id=page.id)[0].title == "Title too short"


def test_upstream_failure_completes_with_zero_score(auditor, provider, site, caplog):
    provider.fetch_pages.side_effect = UpstreamUnavailable("dataforseo: HTTP 503")

    with caplog.at_level(logging.DEBUG):
        run = auditor.run_audit(site.id)

    assert run.status is AuditStatus.UPSTREAM_UNAVAILABLE
    assert run.page_count == 0
    assert run.score == 0
    assert run.issues == ()
    assert "HTTP 503" in run.error
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)
    assert auditor.persister.fetch_run(run.id).status == "upstream_unavailable"


def test_unknown_site_rejected_before_any_work(auditor, provider):
    with pytest.raises(InvalidInput):
        auditor.run_audit(4040)
    provider.fetch_pages.assert_not_called()


def test_pages_without_metadata_still_count(auditor, provider, site):
    provider.fetch_pages.return_value = [crawled("a"), CrawlResult(url="https://example.com/b")]

    run = auditor.run_audit(site.id)

    assert run.page_count == 2
    assert run.issues == ()
    assert run.score == 100


def test_snapshots_kept_on_request(auditor, provider, site, Session):
    provider.fetch_pages.return_value = [crawled("a"), crawled("b")]

    run = auditor.run_audit(site.id, AuditOptions(persist_snapshots=True))

    with Session() as session:
        assert session.query(CrawlSnapshot).filter_by(audit_id=run.id).count() == 2


def test_cancelled_run_persists_nothing(auditor, provider, site, Session):
    cancel = threading.Event()

    def crawl_then_cancel(*args, **kwargs):
        cancel.set()
        return [crawled("a")]

    provider.fetch_pages.side_effect = crawl_then_cancel

    with pytest.raises(AuditCancelled):
        auditor.run_audit(site.id, AuditOptions(cancel=cancel))
    with Session() as session:
        assert session.query(AuditRecord).count() == 0


def test_persistence_failure_reaches_caller(auditor, provider, site, Session):
    def crawl_and_remove_site(*args, **kwargs):
        with Session() as session:
            session.query(Site).filter_by(id=site.id).delete()
            session.commit()
        return [crawled("a", h1_count=0)]

    provider.fetch_pages.side_effect = crawl_and_remove_site

    with pytest.raises(PersistenceConflict):
        auditor.run_audit(site.id)


def test_issues_grouped_by_category(auditor, provider, site):
    provider.fetch_pages.return_value = [
        crawled("a", word_count=100, lcp_ms=5200),
        crawled("b", lcp_ms=3000, h1_count=0),
    ]

    run = auditor.run_audit(site.id)
    grouped = run.issues_by_category()

    assert list(grouped) == ["content", "structure", "performance"]
    assert [i.severity.value for i in grouped["performance"]] == ["major", "minor"]


def test_page_and_summary_diagnostics_are_logged(auditor, provider, site, caplog):
    provider.fetch_pages.return_value = [crawled("a", h1_count=2), crawled("b")]

    with caplog.at_level(logging.DEBUG, logger="auditor"):
        run = auditor.run_audit(site.id)

    pages = [r for r in caplog.records if hasattr(r, "score_contribution")]
    assert [(r.page_url, r.issue_count, r.score_contribution) for r in pages] == [
        ("https://example.com/a", 1, 25.0),
        ("https://example.com/b", 0, 0.0),
    ]
    assert all(r.audit_id == run.id for r in pages)

    summary = [r for r in caplog.records if hasattr(r, "severity_counts")]
    assert len(summary) == 1
    assert summary[0].severity_counts == {"critical": 0, "major": 1, "minor": 0}
    assert summary[0].category_scores["structure"] == 75
    assert summary[0].passed_checks == 17
