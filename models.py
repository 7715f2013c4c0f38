from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

CATEGORIES = (
    "technical",
    "content",
    "meta",
    "structure",
    "performance",
    "mobile",
    "accessibility",
    "backlinks",
    "keywords",
    "schema",
    "internal_links",
)


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class MetadataSource(str, Enum):
    EXTERNAL = "external"
    LOCAL = "local"


class AuditStatus(str, Enum):
    COMPLETE = "complete"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


def _sql_in(column, values):
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


class Site(Base):
    __tablename__ = 'sites'

    id = Column(Integer, primary_key=True)
    domain = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class PageRecord(Base):
    """Locally stored page metadata, used when no crawl provider is configured."""

    __tablename__ = 'pages'

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey('sites.id'), nullable=False, index=True)
    url = Column(String, nullable=False)
    title = Column(String)
    description = Column(Text)
    h1_count = Column(Integer)
    h2_count = Column(Integer)
    word_count = Column(Integer)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AuditRecord(Base):
    __tablename__ = 'audit_runs'

    id = Column(String(36), primary_key=True)
    site_id = Column(Integer, ForeignKey('sites.id'), nullable=False, index=True)
    status = Column(String, nullable=False)
    source = Column(String)
    page_count = Column(Integer, nullable=False, default=0)
    score = Column(Integer, nullable=False, default=0)
    severity_counts = Column(JSON)
    category_scores = Column(JSON)
    passed_checks = Column(Integer, nullable=False, default=0)
    error = Column(Text)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint(_sql_in('status', [s.value for s in AuditStatus]), name='ck_audit_status'),
        CheckConstraint('score >= 0 AND score <= 100', name='ck_audit_score'),
    )


class IssueRecord(Base):
    __tablename__ = 'seo_issues'

    id = Column(Integer, primary_key=True)
    audit_id = Column(String(36), ForeignKey('audit_runs.id', ondelete='CASCADE'), nullable=False, index=True)
    # NULL means the page came from the crawl provider and has no local record.
    page_id = Column(Integer, ForeignKey('pages.id'), nullable=True)
    category = Column(String, nullable=False)
    severity = Column(String, nullable=False)
    check_name = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    page_url = Column(String)
    current_value = Column(Text)
    recommended_value = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_sql_in('category', CATEGORIES), name='ck_issue_category'),
        CheckConstraint(_sql_in('severity', [s.value for s in Severity]), name='ck_issue_severity'),
    )


class CrawlSnapshot(Base):
    """Crawl result kept for debugging a run."""

    __tablename__ = 'crawl_results'

    id = Column(Integer, primary_key=True)
    audit_id = Column(String(36), ForeignKey('audit_runs.id', ondelete='CASCADE'), nullable=False, index=True)
    url = Column(String, nullable=False)
    status_code = Column(Integer)
    title = Column(String)
    description = Column(Text)
    h1_count = Column(Integer)
    h2_count = Column(Integer)
    word_count = Column(Integer)
    image_count = Column(Integer)
    internal_link_count = Column(Integer)
    lcp_ms = Column(Float)
    dom_complete_ms = Column(Float)
    checks = Column(JSON)
    crawled_at = Column(DateTime, default=datetime.utcnow)


@dataclass(frozen=True)
class PageMetadata:
    """Raw facts about one page, from exactly one source.

    ``None`` on any field means the source had no value for it. Timings are
    in milliseconds as reported.
    """

    url: Optional[str]
    source: MetadataSource
    page_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    h1_count: Optional[int] = None
    h2_count: Optional[int] = None
    word_count: Optional[int] = None
    image_count: Optional[int] = None
    internal_link_count: Optional[int] = None
    lcp_ms: Optional[float] = None
    dom_complete_ms: Optional[float] = None
    flags: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Issue:
    category: str
    severity: Severity
    check_name: str
    title: str
    description: str
    page_url: Optional[str] = None
    current_value: Optional[str] = None
    recommended_value: Optional[str] = None
    page_id: Optional[int] = None

    def to_record(self, audit_id):
        return IssueRecord(
            audit_id=audit_id,
            page_id=self.page_id,
            category=self.category,
            severity=getattr(self.severity, 'value', self.severity),
            check_name=self.check_name,
            title=self.title,
            description=self.description,
            page_url=self.page_url,
            current_value=self.current_value,
            recommended_value=self.recommended_value,
        )


SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.MAJOR: 1, Severity.MINOR: 2}


@dataclass(frozen=True)
class AuditRun:
    id: str
    site_id: int
    status: AuditStatus
    source: Optional[MetadataSource]
    started_at: datetime
    completed_at: datetime
    page_count: int
    score: int
    severity_counts: dict
    issues: tuple = ()
    error: Optional[str] = None
    category_scores: dict = field(default_factory=dict)
    passed_checks: int = 0

    def issues_by_category(self):
        """Issues grouped by category, worst severity first within each group."""
        grouped = OrderedDict()
        for category in CATEGORIES:
            members = [issue for issue in self.issues if issue.category == category]
            if members:
                grouped[category] = sorted(members, key=lambda issue: SEVERITY_ORDER[Severity(issue.severity)])
        return grouped

    def to_record(self):
        return AuditRecord(
            id=self.id,
            site_id=self.site_id,
            status=self.status.value,
            source=self.source.value if self.source else None,
            page_count=self.page_count,
            score=self.score,
            severity_counts=dict(self.severity_counts),
            category_scores=dict(self.category_scores),
            passed_checks=self.passed_checks,
            error=self.error,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )
