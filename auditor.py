import argparse
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from database import init_db
from dataforseo import DataForSEOClient
from errors import AuditCancelled, UpstreamUnavailable
from models import AuditRun, AuditStatus, MetadataSource
from page_store import PageStore
from persister import BatchPersister, IssueBatch
from resolver import MetadataResolver, select_source
from rules import CHECK_CATEGORIES, run_checks
from scorer import category_scores, compute_score, page_contribution, passed_checks, severity_distribution
from settings import Settings


@dataclass
class AuditOptions:
    crawl_timeout: Optional[float] = None
    write_timeout: Optional[float] = None
    cancel: threading.Event = field(default_factory=threading.Event)
    persist_snapshots: bool = False
    max_workers: Optional[int] = None
    max_pages: Optional[int] = None


class SiteAuditor:
    def __init__(self, session_factory=None, crawl_provider=None, settings=None):
        self.settings = settings or Settings.from_env()
        self.Session = session_factory or init_db(self.settings.db_url,
                                                  lock_timeout=self.settings.write_timeout)
        if crawl_provider is None and self.settings.crawl_provider_configured:
            crawl_provider = DataForSEOClient(
                self.settings.dataforseo_login,
                self.settings.dataforseo_password,
                base_url=self.settings.dataforseo_base_url,
                requests_per_second=self.settings.requests_per_second,
            )
        self.crawl_provider = crawl_provider
        self.page_store = PageStore(self.Session)
        self.persister = BatchPersister(self.Session)
        self.logger = logging.getLogger(__name__)

    def _options(self, options):
        options = options or AuditOptions()
        return AuditOptions(
            crawl_timeout=options.crawl_timeout or self.settings.crawl_timeout,
            write_timeout=options.write_timeout or self.settings.write_timeout,
            cancel=options.cancel,
            persist_snapshots=options.persist_snapshots,
            max_workers=options.max_workers or self.settings.max_workers,
            max_pages=options.max_pages or self.settings.max_pages,
        )

    def run_audit(self, site_id, options=None):
        """Audit one site and return its finalized AuditRun.

        Raises InvalidInput for an unknown site before any work starts,
        PersistenceError if the results could not be stored and
        AuditCancelled if ``options.cancel`` was set. A failed crawl provider
        does not raise: the run completes with zero pages and a zero score.
        """
        options = self._options(options)
        site = self.page_store.get_site(site_id)
        run_id = str(uuid.uuid4())
        started_at = datetime.utcnow()
        source = select_source(self.crawl_provider is not None)
        log_context = {'audit_id': run_id, 'site_id': site_id, 'source': source.value}
        self.logger.info(f"Starting audit {run_id} for {site.domain}", extra=log_context)

        crawl_results = []
        page_records = []
        error = None
        if source is MetadataSource.EXTERNAL:
            try:
                crawl_results = self.crawl_provider.fetch_pages(
                    site.domain,
                    max_pages=options.max_pages,
                    timeout=options.crawl_timeout,
                    cancel=options.cancel,
                )
            except UpstreamUnavailable as e:
                if options.cancel.is_set():
                    raise AuditCancelled(f"Audit {run_id} cancelled during crawl") from e
                error = str(e)
                self.logger.critical(
                    f"Crawl provider unavailable for {site.domain}: {error}",
                    extra={**log_context, 'status': AuditStatus.UPSTREAM_UNAVAILABLE.value, 'error': error},
                )
        else:
            page_records = self.page_store.list_pages(site.id)
        resolver = MetadataResolver(source, crawl_results=crawl_results, page_records=page_records)

        issues, checks_evaluated = self.evaluate_pages(resolver, options, log_context)
        page_count = resolver.page_count
        score = compute_score(issues, page_count)
        distribution = severity_distribution(issues)
        by_category = category_scores(issues, page_count, CHECK_CATEGORIES)
        passed = passed_checks(checks_evaluated, issues)

        run = AuditRun(
            id=run_id,
            site_id=site_id,
            status=AuditStatus.UPSTREAM_UNAVAILABLE if error else AuditStatus.COMPLETE,
            source=source,
            started_at=started_at,
            completed_at=datetime.utcnow(),
            page_count=page_count,
            score=score,
            severity_counts=distribution,
            issues=tuple(issues),
            error=error,
            category_scores=by_category,
            passed_checks=passed,
        )
        self.logger.info(
            f"Audit {run_id} severity distribution: {distribution}",
            extra={**log_context, 'severity_counts': distribution, 'category_scores': by_category,
                   'passed_checks': passed},
        )

        snapshots = crawl_results if options.persist_snapshots else ()
        self.persister.write(IssueBatch(run, issues, snapshots),
                             timeout=options.write_timeout, cancel=options.cancel)

        level = logging.WARNING if run.status is AuditStatus.UPSTREAM_UNAVAILABLE else logging.INFO
        self.logger.log(
            level,
            f"Audit {run_id} finished: status={run.status.value} pages={page_count} score={score}",
            extra={**log_context, 'status': run.status.value, 'error': error,
                   'page_count': page_count, 'score': score},
        )
        return run

    def evaluate_pages(self, resolver, options, log_context):
        """Run the rule engine over every page.

        Returns the issues in page order and the number of checks evaluated.
        """
        if options.cancel.is_set():
            raise AuditCancelled(f"Audit {log_context['audit_id']} cancelled")

        def evaluate(key):
            if options.cancel.is_set():
                return [], 0
            meta = resolver.resolve(key)
            if meta is None:
                return None
            return run_checks(meta)

        keys = list(resolver.page_keys())
        with ThreadPoolExecutor(max_workers=options.max_workers) as executor:
            per_page = list(executor.map(evaluate, keys))

        if options.cancel.is_set():
            raise AuditCancelled(f"Audit {log_context['audit_id']} cancelled")

        issues = []
        checks_evaluated = 0
        for key, outcome in zip(keys, per_page):
            url = resolver.page_url(key)
            if outcome is None:
                self.logger.debug(f"No metadata for {url}; counted but not evaluated",
                                  extra={**log_context, 'page_url': url})
                continue
            page_issues, evaluated = outcome
            checks_evaluated += evaluated
            self.logger.debug(
                f"Page {url}: {len(page_issues)} issues",
                extra={**log_context, 'page_url': url, 'issue_count': len(page_issues),
                       'score_contribution': round(page_contribution(page_issues, len(keys)), 2)},
            )
            issues.extend(page_issues)
        return issues, checks_evaluated


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run an on-page SEO audit for a stored site.")
    parser.add_argument("site_id", type=int)
    parser.add_argument("--snapshots", action="store_true", help="Keep crawl results for debugging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    auditor = SiteAuditor()
    run = auditor.run_audit(args.site_id, AuditOptions(persist_snapshots=args.snapshots))
    print(f"Score: {run.score}/100 over {run.page_count} pages ({run.status.value})")
    for category, issues in run.issues_by_category().items():
        print(f"\n[{category}]")
        for issue in issues:
            print(f"  {issue.severity.value:<8} {issue.title}: {issue.page_url}")
