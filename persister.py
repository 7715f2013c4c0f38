"""All-or-nothing writes of an audit run, its issues and crawl snapshots.

A batch moves ``pending -> writing -> committed | rolled_back``. Records are
flushed one at a time so a failure can be pinned to the record that caused
it; the first failure rolls the whole transaction back and nothing further is
sent on it.
"""

import logging
import time
from enum import Enum

from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError

from errors import AuditCancelled, PersistenceConflict, PersistenceError
from models import AuditRecord, CrawlSnapshot, IssueRecord, Site

logger = logging.getLogger(__name__)


class BatchState(str, Enum):
    PENDING = "pending"
    WRITING = "writing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def _number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def snapshot_record(audit_id, result):
    return CrawlSnapshot(
        audit_id=audit_id,
        url=result.url or '',
        status_code=_number(result.status_code),
        title=result.title if isinstance(result.title, str) else None,
        description=result.description if isinstance(result.description, str) else None,
        h1_count=_number(result.h1_count),
        h2_count=_number(result.h2_count),
        word_count=_number(result.word_count),
        image_count=_number(result.image_count),
        internal_link_count=_number(result.internal_link_count),
        lcp_ms=_number(result.lcp_ms),
        dom_complete_ms=_number(result.dom_complete_ms),
        checks=dict(result.checks or {}),
    )


class IssueBatch:
    def __init__(self, run, issues, snapshots=()):
        self.run = run
        self.issues = list(issues)
        self.snapshots = list(snapshots)
        self.state = BatchState.PENDING

    def __len__(self):
        return 1 + len(self.issues) + len(self.snapshots)


class BatchPersister:
    def __init__(self, session_factory):
        self.Session = session_factory

    def _check_deadline(self, deadline, cancel, attempted, index):
        if cancel is not None and cancel.is_set():
            raise AuditCancelled(f"Write cancelled after {attempted} records")
        if deadline is not None and time.monotonic() > deadline:
            raise PersistenceError(f"Write timed out after {attempted} records",
                                   attempted=attempted, failed_index=index)

    def write(self, batch, timeout=None, cancel=None):
        """Write ``batch`` in one transaction and return it committed.

        Raises PersistenceConflict when a record violates a constraint,
        PersistenceError for any other database failure or an expired
        ``timeout``, and AuditCancelled when ``cancel`` is set. In every
        failure case the transaction has been rolled back.
        """
        if batch.state is not BatchState.PENDING:
            raise PersistenceError(f"Batch for run {batch.run.id} is already {batch.state.value}")

        deadline = time.monotonic() + timeout if timeout else None
        run_id = batch.run.id
        attempted = 0
        index = None
        record = None
        batch.state = BatchState.WRITING
        session = self.Session()
        try:
            self._check_deadline(deadline, cancel, attempted, index)
            # Serializes writers for the same site where the backend supports row locks.
            session.query(Site).filter_by(id=batch.run.site_id).with_for_update().one()

            record = batch.run
            attempted += 1
            session.add(batch.run.to_record())
            session.flush()

            for index, issue in enumerate(batch.issues):
                self._check_deadline(deadline, cancel, attempted, index)
                record = issue
                attempted += 1
                session.add(issue.to_record(run_id))
                session.flush()
            index = None

            for result in batch.snapshots:
                self._check_deadline(deadline, cancel, attempted, index)
                record = result
                attempted += 1
                session.add(snapshot_record(run_id, result))
                session.flush()

            self._check_deadline(deadline, cancel, attempted, index)
            record = None
            session.commit()
        except IntegrityError as e:
            self._roll_back(session, batch, attempted, index)
            raise PersistenceConflict(
                f"Constraint violated writing run {run_id}: {e.orig}",
                attempted=attempted, failed_index=index, record=record,
            ) from e
        except NoResultFound as e:
            self._roll_back(session, batch, attempted, index)
            raise PersistenceConflict(f"Site {batch.run.site_id} no longer exists",
                                      attempted=attempted) from e
        except SQLAlchemyError as e:
            self._roll_back(session, batch, attempted, index)
            raise PersistenceError(f"Database error writing run {run_id}: {e}",
                                   attempted=attempted, failed_index=index, record=record) from e
        except BaseException:
            self._roll_back(session, batch, attempted, index)
            raise
        finally:
            session.close()

        batch.state = BatchState.COMMITTED
        logger.info(
            f"Committed run {run_id}: {len(batch.issues)} issues, {len(batch.snapshots)} snapshots",
            extra={'audit_id': run_id, 'records': attempted},
        )
        return batch

    def _roll_back(self, session, batch, attempted, index):
        session.rollback()
        batch.state = BatchState.ROLLED_BACK
        logger.error(
            f"Rolled back run {batch.run.id} after {attempted} of {len(batch)} records",
            extra={'audit_id': batch.run.id, 'attempted': attempted, 'failed_index': index},
        )

    def fetch_issues(self, audit_id, without_page=False, page_id=None):
        """Stored issues for a run, optionally only those with no local page."""
        with self.Session() as session:
            query = session.query(IssueRecord).filter_by(audit_id=audit_id)
            if without_page:
                query = query.filter(IssueRecord.page_id.is_(None))
            elif page_id is not None:
                query = query.filter(IssueRecord.page_id == page_id)
            issues = query.order_by(IssueRecord.id).all()
            session.expunge_all()
            return issues

    def fetch_run(self, audit_id):
        with self.Session() as session:
            run = session.get(AuditRecord, audit_id)
            if run is not None:
                session.expunge(run)
            return run
