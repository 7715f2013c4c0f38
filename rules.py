"""Fixed on-page checks that turn page metadata into issues.

Checks read only raw facts from ``PageMetadata``. Provider "is this bad"
flags are ignored for load time and URL friendliness because they misfire
(2ms pages flagged slow, ``/about/`` flagged malformed); the one exception is
the dynamic-parameter flag, used only when the URL itself is unavailable.

Every check is independent: missing data yields no issue, and a value that
cannot be parsed skips that check alone.
"""

import logging
import math
from urllib.parse import urlparse

from errors import MalformedMetadata
from models import Issue, Severity

logger = logging.getLogger(__name__)

TITLE_LENGTH = (30, 60)
DESCRIPTION_LENGTH = (120, 160)
MIN_WORD_COUNT = 300
MIN_INTERNAL_LINKS = 3
MS_PER_SECOND = 1000.0
LOAD_TIME_GOOD = 2.5
LOAD_TIME_POOR = 4.0

TRUSTED_DYNAMIC_URL_FLAG = 'seo_friendly_url_dynamic_check'


def _as_text(meta, name):
    value = getattr(meta, name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedMetadata(name, value)
    return value.strip()


def _as_number(meta, name):
    value = getattr(meta, name)
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedMetadata(name, value)
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise MalformedMetadata(name, value)
    if not isinstance(value, (int, float)) or math.isnan(value) or math.isinf(value) or value < 0:
        raise MalformedMetadata(name, value)
    return value


def _as_count(meta, name):
    value = _as_number(meta, name)
    if value is None:
        return None
    if value != int(value):
        raise MalformedMetadata(name, getattr(meta, name))
    return int(value)


def _issue(meta, check_name, category, severity, title, description, current_value=None, recommended_value=None):
    return Issue(
        category=category,
        severity=severity,
        check_name=check_name,
        title=title,
        description=description,
        page_url=meta.url,
        current_value=current_value,
        recommended_value=recommended_value,
        page_id=meta.page_id,
    )


def check_title(meta):
    title = _as_text(meta, 'title')
    if title is None:
        return None
    low, high = TITLE_LENGTH
    if not title:
        return _issue(meta, 'title', 'meta', Severity.MAJOR, 'Missing title tag',
                      'The page has no title tag.', current_value=meta.url,
                      recommended_value=f'{low}-{high} characters')
    if low <= len(title) <= high:
        return None
    kind = 'short' if len(title) < low else 'long'
    return _issue(meta, 'title', 'meta', Severity.MAJOR, f'Title too {kind}',
                  f'Title is {len(title)} characters; search results show {low}-{high} best.',
                  current_value=title, recommended_value=f'{low}-{high} characters')


def check_description(meta):
    description = _as_text(meta, 'description')
    if description is None:
        return None
    low, high = DESCRIPTION_LENGTH
    if not description:
        return _issue(meta, 'description', 'meta', Severity.MINOR, 'Missing meta description',
                      'The page has no meta description.', current_value=meta.url,
                      recommended_value=f'{low}-{high} characters')
    if low <= len(description) <= high:
        return None
    kind = 'short' if len(description) < low else 'long'
    return _issue(meta, 'description', 'meta', Severity.MINOR, f'Meta description too {kind}',
                  f'Meta description is {len(description)} characters; {low}-{high} is preferred.',
                  current_value=description, recommended_value=f'{low}-{high} characters')


def check_h1(meta):
    count = _as_count(meta, 'h1_count')
    if count is None or count == 1:
        return None
    title = 'Missing H1 heading' if count == 0 else 'Multiple H1 headings'
    return _issue(meta, 'h1_presence', 'structure', Severity.MAJOR, title,
                  f'The page has {count} H1 headings; it should have exactly one.',
                  current_value=str(count), recommended_value='1')


def check_h2(meta):
    count = _as_count(meta, 'h2_count')
    if count is None or count > 0:
        return None
    return _issue(meta, 'h2_presence', 'structure', Severity.MINOR, 'No H2 headings',
                  'The page has no H2 subheadings to structure its content.',
                  current_value='0', recommended_value='1 or more')


def check_word_count(meta):
    count = _as_count(meta, 'word_count')
    if count is None or count >= MIN_WORD_COUNT:
        return None
    return _issue(meta, 'word_count', 'content', Severity.MINOR, 'Thin content',
                  f'The page has {count} words of text.',
                  current_value=str(count), recommended_value=f'{MIN_WORD_COUNT}+ words')


def check_images(meta):
    count = _as_count(meta, 'image_count')
    if count is None or count > 0:
        return None
    return _issue(meta, 'images', 'content', Severity.MINOR, 'No images',
                  'The page has no images.', current_value='0', recommended_value='1 or more')


def check_internal_links(meta):
    count = _as_count(meta, 'internal_link_count')
    if count is None or count >= MIN_INTERNAL_LINKS:
        return None
    return _issue(meta, 'internal_links', 'internal_links', Severity.MINOR, 'Few internal links',
                  f'The page links to {count} other pages on the site.',
                  current_value=str(count), recommended_value=f'{MIN_INTERNAL_LINKS}+ links')


def has_dynamic_parameters(meta):
    """True/False when known, None when neither the URL nor a trusted flag says."""
    if meta.url is not None:
        if not isinstance(meta.url, str):
            raise MalformedMetadata('url', meta.url)
        try:
            return bool(urlparse(meta.url).query)
        except ValueError:
            raise MalformedMetadata('url', meta.url)
    flag = (meta.flags or {}).get(TRUSTED_DYNAMIC_URL_FLAG)
    if isinstance(flag, bool):
        # The provider sets this flag when the check passes.
        return not flag
    return None


def check_dynamic_url(meta):
    if not has_dynamic_parameters(meta):
        return None
    return _issue(meta, 'dynamic_url', 'technical', Severity.MINOR, 'Dynamic URL',
                  'The URL carries query-string parameters.',
                  current_value=meta.url, recommended_value='A static, descriptive path')


def load_time_seconds(meta):
    """Load time in seconds: LCP when measured, otherwise DOM complete.

    Provider timings are milliseconds. A zero or unparseable LCP counts as
    not measured.
    """
    try:
        lcp = _as_number(meta, 'lcp_ms')
    except MalformedMetadata:
        lcp = None
    if lcp:
        return lcp / MS_PER_SECOND
    dom_complete = _as_number(meta, 'dom_complete_ms')
    if dom_complete is None:
        return None
    return dom_complete / MS_PER_SECOND


def classify_load_time(seconds):
    if seconds is None or seconds <= LOAD_TIME_GOOD:
        return None
    if seconds <= LOAD_TIME_POOR:
        return Severity.MINOR
    return Severity.MAJOR


def check_load_time(meta):
    seconds = load_time_seconds(meta)
    severity = classify_load_time(seconds)
    if severity is None:
        return None
    title = 'Slow page load' if severity is Severity.MAJOR else 'Page load could be faster'
    return _issue(meta, 'load_time', 'performance', severity, title,
                  f'The page took {seconds:.2f}s to load.',
                  current_value=f'{seconds:.2f}s', recommended_value=f'{LOAD_TIME_GOOD}s or less')


CHECKS = (
    check_title,
    check_description,
    check_h1,
    check_h2,
    check_word_count,
    check_images,
    check_internal_links,
    check_dynamic_url,
    check_load_time,
)


# Categories some check above can report, in report order.
CHECK_CATEGORIES = ('technical', 'content', 'meta', 'structure', 'performance', 'internal_links')


def run_checks(meta, checks=CHECKS):
    """Run every check against one page.

    Returns ``(issues, evaluated)``: the issues in check order and how many
    checks actually looked at the page, i.e. were not skipped for malformed
    data.
    """
    issues = []
    evaluated = 0
    for check in checks:
        try:
            issue = check(meta)
        except MalformedMetadata as e:
            logger.debug(
                f"Skipping {check.__name__} for {meta.url}: {e}",
                extra={'page_url': meta.url, 'check': check.__name__, 'field': e.field},
            )
            continue
        evaluated += 1
        if issue is not None:
            issues.append(issue)
    return issues, evaluated


def evaluate_page(meta, checks=CHECKS):
    """Run every check against one page and return its issues in check order."""
    return run_checks(meta, checks)[0]
