import logging
import math

from models import CATEGORIES, Severity

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 10,
    Severity.MAJOR: 5,
    Severity.MINOR: 1,
}
# Worst-case penalty a single page is expected to carry.
PAGE_PENALTY_CEILING = 10


def severity_distribution(issues):
    counts = {severity.value: 0 for severity in Severity}
    for issue in issues:
        counts[Severity(issue.severity).value] += 1
    return counts


def raw_penalty(issues):
    return sum(SEVERITY_WEIGHTS[Severity(issue.severity)] for issue in issues)


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def _density_score(issues, page_count):
    if page_count <= 0:
        return 0
    penalty = raw_penalty(issues)
    score = _round_half_up(100 * (1 - penalty / (page_count * PAGE_PENALTY_CEILING)))
    return max(0, min(100, score))


def compute_score(issues, page_count):
    """Density-normalized score in [0, 100].

    ``100 * (1 - penalty / (page_count * 10))``, so sites are judged on
    issues per page rather than on size. A run with no pages scores 0.
    """
    if page_count <= 0:
        logger.error(
            "Scoring a run with zero pages; the crawl most likely failed upstream",
            extra={'page_count': page_count, 'issue_count': len(issues)},
        )
    return _density_score(issues, page_count)


def category_scores(issues, page_count, categories=CATEGORIES):
    """The site score formula applied to each category's issues alone."""
    by_category = {category: [] for category in categories}
    for issue in issues:
        if issue.category in by_category:
            by_category[issue.category].append(issue)
    return {category: _density_score(members, page_count) for category, members in by_category.items()}


def passed_checks(checks_evaluated, issues):
    return max(0, checks_evaluated - len(issues))


def page_contribution(page_issues, page_count):
    """Points one page's issues take off the site score."""
    if page_count <= 0:
        return 0.0
    return 100.0 * raw_penalty(page_issues) / (page_count * PAGE_PENALTY_CEILING)
