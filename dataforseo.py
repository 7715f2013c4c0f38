"""DataForSEO on-page client, the external crawl provider for audits.

Posts an on-page crawl task for a domain, polls the task summary until the
crawl has finished, then pages through the crawled pages and turns each one
into a ``CrawlResult``. Values are kept as the provider sent them; parsing
and threshold decisions belong to the rule engine.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    stop_any,
    wait_exponential,
    wait_fixed,
)

from errors import TaskNotReady, UpstreamUnavailable
from settings import DEFAULT_DATAFORSEO_URL

logger = logging.getLogger(__name__)

STATUS_OK = 20000
STATUS_TASK_CREATED = 20100
STATUS_NOT_FOUND = 40400
PAGES_LIMIT = 1000
# Upper bound on polling a crawl task when the caller gives no timeout.
DEFAULT_POLL_TIMEOUT = 600


def _is_transient(exc):
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(exc, requests.exceptions.HTTPError) and exc.response is not None:
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return False


@dataclass
class CrawlResult:
    """One page as returned by the provider's on_page/pages endpoint."""

    url: Optional[str]
    status_code: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    h1_count: Optional[int] = None
    h2_count: Optional[int] = None
    word_count: Optional[object] = None
    image_count: Optional[object] = None
    internal_link_count: Optional[object] = None
    lcp_ms: Optional[object] = None
    dom_complete_ms: Optional[object] = None
    checks: dict = field(default_factory=dict)

    @property
    def has_metadata(self):
        return any(
            value is not None
            for value in (self.title, self.description, self.h1_count, self.h2_count, self.word_count,
                          self.image_count, self.internal_link_count, self.lcp_ms, self.dom_complete_ms)
        )

    @classmethod
    def from_item(cls, item):
        has_meta = isinstance(item.get('meta'), dict)
        meta = item['meta'] if has_meta else {}
        timing = item.get('page_timing') or {}
        htags = meta.get('htags')
        content = meta.get('content') or {}

        def text(name):
            # A page without a <title> or description comes back as null inside a present meta block.
            value = meta.get(name)
            if value is None and has_meta:
                return ''
            return value

        def heading_count(tag):
            # Provider omits htags entirely when the page had no meta block.
            if not isinstance(htags, dict):
                return None
            return len(htags.get(tag) or [])

        checks = item.get('checks')
        return cls(
            url=item.get('url'),
            status_code=item.get('status_code'),
            title=text('title'),
            description=text('description'),
            h1_count=heading_count('h1'),
            h2_count=heading_count('h2'),
            word_count=content.get('plain_text_word_count'),
            image_count=meta.get('images_count'),
            internal_link_count=meta.get('internal_links_count'),
            lcp_ms=timing.get('largest_contentful_paint'),
            dom_complete_ms=timing.get('dom_complete'),
            checks=dict(checks) if isinstance(checks, dict) else {},
        )


class DataForSEOClient:
    def __init__(self, login, password, base_url=DEFAULT_DATAFORSEO_URL, requests_per_second=2,
                 request_timeout=30, poll_interval=10):
        self.base_url = base_url.rstrip('/')
        self.requests_per_second = requests_per_second
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self.last_request_time = 0
        self.logger = logger

        self.session = requests.Session()
        self.session.auth = (login, password)
        self._rate_lock = threading.Lock()

    def wait_for_rate_limit(self):
        """Ensure we don't exceed our rate limit by waiting if necessary."""
        if self.requests_per_second <= 0:
            return

        with self._rate_lock:
            current_time = time.time()
            time_since_last_request = current_time - self.last_request_time
            time_to_wait = (1.0 / self.requests_per_second) - time_since_last_request

            if time_to_wait > 0:
                time.sleep(time_to_wait)

            self.last_request_time = time.time()

    def make_request(self, method, path, payload=None):
        """Make a single request with rate limiting"""
        self.wait_for_rate_limit()
        return self.session.request(method, self.base_url + path, json=payload, timeout=self.request_timeout)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def request_with_retry(self, method, path, payload=None):
        """Send a request, retrying connection errors, timeouts, 429 and 5xx."""
        response = self.make_request(method, path, payload)
        response.raise_for_status()
        return response.json()

    def call(self, method, path, payload=None):
        try:
            return self.request_with_retry(method, path, payload)
        except (requests.exceptions.RequestException, ValueError) as e:
            raise UpstreamUnavailable(f"dataforseo: {method} {path} failed: {e}") from e

    @staticmethod
    def first_task(envelope, allowed=(STATUS_OK,)):
        if envelope.get('status_code') != STATUS_OK:
            raise UpstreamUnavailable(
                f"dataforseo: API error {envelope.get('status_code')}: {envelope.get('status_message')}")
        tasks = envelope.get('tasks') or []
        if not tasks:
            raise UpstreamUnavailable("dataforseo: no tasks in response")
        task = tasks[0]
        if task.get('status_code') not in allowed:
            raise UpstreamUnavailable(
                f"dataforseo: task error {task.get('status_code')}: {task.get('status_message')}")
        return task

    @classmethod
    def first_result(cls, envelope):
        result = cls.first_task(envelope).get('result')
        if result is None:
            raise UpstreamUnavailable("dataforseo: empty result")
        return result

    def create_on_page_task(self, target, max_crawl_pages=100):
        """Start an on-page crawl of ``target`` and return the task id."""
        payload = [{
            'target': target,
            'max_crawl_pages': max_crawl_pages,
            'load_resources': True,
            'enable_browser_rendering': True,
        }]
        envelope = self.call('POST', '/on_page/task_post', payload)
        return self.first_task(envelope, allowed=(STATUS_OK, STATUS_TASK_CREATED))['id']

    def get_on_page_summary(self, task_id):
        """Return the task summary, or raise TaskNotReady while the crawl runs."""
        envelope = self.call('GET', f'/on_page/summary/{task_id}')
        if envelope.get('status_code') == STATUS_NOT_FOUND:
            raise TaskNotReady(f"dataforseo: task {task_id} not ready")
        results = self.first_result(envelope)
        if not results:
            raise UpstreamUnavailable("dataforseo: empty on-page summary result")
        summary = results[0]
        if summary.get('crawl_progress') != 'finished':
            raise TaskNotReady(f"dataforseo: task {task_id} is {summary.get('crawl_progress')}")
        return summary

    def get_on_page_pages(self, task_id, limit=PAGES_LIMIT, offset=0):
        """Return one page of crawled items and the total item count."""
        envelope = self.call('POST', '/on_page/pages', [{'id': task_id, 'limit': limit, 'offset': offset}])
        results = self.first_result(envelope)
        if not results:
            return [], 0
        return results[0].get('items') or [], results[0].get('items_count') or 0

    def wait_for_task(self, task_id, timeout=None, cancel=None):
        """Poll the task summary until the crawl finishes.

        Gives up with TaskNotReady after ``timeout`` seconds (DEFAULT_POLL_TIMEOUT
        when unset) or as soon as ``cancel`` is set, including mid-sleep.
        """
        stops = [stop_after_delay(timeout or DEFAULT_POLL_TIMEOUT)]
        sleep = time.sleep
        if cancel is not None:
            stops.append(lambda retry_state: cancel.is_set())
            sleep = cancel.wait

        def poll():
            if cancel is not None and cancel.is_set():
                raise TaskNotReady(f"dataforseo: polling task {task_id} cancelled")
            return self.get_on_page_summary(task_id)

        retrying = Retrying(
            stop=stop_any(*stops),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_exception_type(TaskNotReady),
            sleep=sleep,
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        return retrying(poll)

    def fetch_pages(self, target, max_pages=100, timeout=None, cancel=None):
        """Crawl ``target`` and return its pages as CrawlResults.

        Raises UpstreamUnavailable if the provider fails or the crawl does not
        finish within ``timeout`` seconds.
        """
        task_id = self.create_on_page_task(target, max_crawl_pages=max_pages)
        self.logger.info(f"Created on-page task {task_id} for {target}")
        summary = self.wait_for_task(task_id, timeout=timeout, cancel=cancel)
        self.logger.info(
            f"On-page task {task_id} finished",
            extra={'task_id': task_id, 'crawl_stop_reason': summary.get('crawl_stop_reason')},
        )

        results = []
        offset = 0
        while len(results) < max_pages:
            items, total = self.get_on_page_pages(task_id, limit=min(PAGES_LIMIT, max_pages), offset=offset)
            if not items:
                break
            for item in items:
                if item.get('resource_type', 'html') == 'html':
                    results.append(CrawlResult.from_item(item))
            offset += len(items)
            if offset >= total:
                break
        return results[:max_pages]
