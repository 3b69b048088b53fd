"""
Issue store: persisted issues, categories, users, upvotes and assignments.

All reads and writes go through one SQLAlchemy session handed in by the
caller. Writes happen inside ``transaction()``, which commits on success and
rolls back on any error, so a failed operation leaves nothing behind.

``Issue.status`` mirrors the assignment rows and resolution fields. Only
``record_assignments`` and ``set_resolution`` change it, and both do so with
a compare-and-set UPDATE in the same transaction as the facts it summarises.
A writer that loses a race sees zero updated rows and gets InvalidState.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import exists, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import joinedload, selectinload

from models.models import (
    ROLE_ADMIN,
    STATUS_ASSIGNED,
    STATUS_NOT_ASSIGNED,
    STATUS_RESOLVED,
    STATUSES,
    Assignment,
    Category,
    Issue,
    Upvote,
    User,
    utcnow,
)
from services.errors import (
    ConflictRetryable,
    EngineError,
    InvalidState,
    NotFound,
    StoreUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

# SQLSTATEs for serialization failure, deadlock and lock-not-available
_RETRYABLE_SQLSTATES = {'40001', '40P01', '55P03'}


def _is_contention(exc):
    orig = getattr(exc, 'orig', None)
    code = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    # SQLite reports both SQLITE_BUSY and SQLITE_LOCKED as "... is locked"
    return 'is locked' in str(orig).lower()


class IssueStore:
    def __init__(self, session):
        self.session = session

    # ------------------------------------------------------------------
    # Transaction boundaries
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self):
        """Run a unit of work that either fully commits or leaves no trace."""
        try:
            yield self.session
            self.session.commit()
        except EngineError:
            self.session.rollback()
            raise
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Write conflict: %s", exc.orig)
            raise ConflictRetryable('Concurrent update detected, retry the request') from exc
        except OperationalError as exc:
            self.session.rollback()
            if _is_contention(exc):
                logger.warning("Lock contention: %s", exc.orig)
                raise ConflictRetryable('Concurrent update detected, retry the request') from exc
            logger.error("Issue store unavailable: %s", exc.orig)
            raise StoreUnavailable('Issue store is unavailable') from exc
        except Exception:
            self.session.rollback()
            raise

    @contextmanager
    def snapshot(self):
        """Read-only unit of work; maps connection failures to StoreUnavailable."""
        try:
            yield self.session
        except OperationalError as exc:
            self.session.rollback()
            logger.error("Issue store unavailable: %s", exc.orig)
            raise StoreUnavailable('Issue store is unavailable') from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id):
        return self.session.get(User, user_id)

    def get_user_by_email(self, email):
        if not isinstance(email, str):
            return None
        return self.session.query(User).filter(User.email == email.strip().lower()).one_or_none()

    def get_users(self, user_ids):
        users = self.session.query(User).filter(User.id.in_(list(user_ids))).all()
        return {user.id: user for user in users}

    def create_user(self, email, name, password_hash, role):
        if self.get_user_by_email(email) is not None:
            raise ValidationError('Email already exists')
        user = User(email=email.strip().lower(), name=name, password=password_hash, role=role)
        self.session.add(user)
        self.session.flush()
        return user

    def list_admins(self):
        return self.session.query(User).filter(User.role == ROLE_ADMIN).order_by(User.name, User.id).all()

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def list_categories(self):
        return self.session.query(Category).order_by(Category.name).all()

    def get_category(self, category_id):
        return self.session.get(Category, category_id)

    def create_category(self, name):
        if self.session.query(Category).filter(Category.name == name).one_or_none() is not None:
            raise ValidationError(f"Category '{name}' already exists")
        category = Category(name=name)
        self.session.add(category)
        self.session.flush()
        return category

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def create_issue(self, draft, reporter_id):
        issue = Issue(status=STATUS_NOT_ASSIGNED, user_id=reporter_id, **draft)
        self.session.add(issue)
        self.session.flush()
        return issue

    def lock_issue(self, issue_id):
        """Load an issue for update. FOR UPDATE is a no-op on SQLite."""
        issue = (
            self.session.query(Issue)
            .filter(Issue.id == issue_id)
            .with_for_update()
            .one_or_none()
        )
        if issue is None:
            raise NotFound(f"Issue {issue_id} not found")
        return issue

    def _upvote_counts(self):
        return (
            self.session.query(Upvote.issue_id.label('issue_id'), func.count(Upvote.id).label('n'))
            .group_by(Upvote.issue_id)
            .subquery()
        )

    def _issue_query(self, viewer_id=None):
        """Issues joined with their upvote count and, for a viewer, a voted flag."""
        counts = self._upvote_counts()
        upvote_count = func.coalesce(counts.c.n, 0)
        columns = [Issue, upvote_count]
        if viewer_id is not None:
            columns.append(
                exists().where(Upvote.issue_id == Issue.id, Upvote.user_id == viewer_id).label('user_upvoted')
            )
        query = (
            self.session.query(*columns)
            .outerjoin(counts, counts.c.issue_id == Issue.id)
            .options(
                joinedload(Issue.category),
                joinedload(Issue.reporter),
                joinedload(Issue.resolver),
                selectinload(Issue.assignments),
            )
        )
        return query, upvote_count

    def _serialize(self, issue, upvote_count, user_upvoted=False):
        data = issue.to_dict()
        data['category'] = issue.category.to_dict() if issue.category else None
        data['user'] = issue.reporter.to_dict() if issue.reporter else None
        data['upvote_count'] = int(upvote_count or 0)
        data['user_upvoted'] = bool(user_upvoted)
        data['resolver'] = (
            issue.resolver.to_dict() if issue.status == STATUS_RESOLVED and issue.resolver else None
        )
        # Assignment rows committed after the issue row was read stay hidden
        if issue.status == STATUS_NOT_ASSIGNED:
            data['assignments'] = []
        else:
            data['assignments'] = [a.to_dict() for a in issue.assignments]
        return data

    def get_issue(self, issue_id, viewer_id=None):
        with self.snapshot():
            query, _ = self._issue_query(viewer_id)
            row = query.filter(Issue.id == issue_id).first()
            if row is None:
                raise NotFound(f"Issue {issue_id} not found")
            return self._serialize(*row)

    def list_issues(self, state=None, city=None, status=None, reporter_id=None, assigned_admin=None):
        """Return issues matching every given filter, newest first."""
        if status is not None and status not in STATUSES:
            raise ValidationError(f"Unknown status '{status}'")

        with self.snapshot():
            query, _ = self._issue_query()
            if state:
                query = query.filter(Issue.state == state)
            if city:
                query = query.filter(Issue.city == city)
            if status:
                query = query.filter(Issue.status == status)
            if reporter_id is not None:
                query = query.filter(Issue.user_id == reporter_id)
            if assigned_admin is not None:
                assigned = self.session.query(Assignment.issue_id).filter(
                    Assignment.admin_id == assigned_admin
                )
                query = query.filter(Issue.id.in_(assigned))

            rows = query.order_by(Issue.created_at.desc(), Issue.id.desc()).all()
            return [self._serialize(*row) for row in rows]

    # ------------------------------------------------------------------
    # Lifecycle mutators, called only by LifecycleEngine
    # ------------------------------------------------------------------

    def set_status(self, issue, expected, new_status, **fields):
        """Compare-and-set the issue status, writing ``fields`` in the same UPDATE."""
        values = {Issue.status: new_status}
        values.update({getattr(Issue, name): value for name, value in fields.items()})
        updated = (
            self.session.query(Issue)
            .filter(Issue.id == issue.id, Issue.status == expected)
            .update(values, synchronize_session='fetch')
        )
        if updated != 1:
            self.session.refresh(issue)
            raise InvalidState(
                f"Issue {issue.id} is '{issue.status}', expected '{expected}'",
                status=issue.status,
            )

    def record_assignments(self, issue, admin_ids, assigned_by, note):
        self.set_status(issue, STATUS_NOT_ASSIGNED, STATUS_ASSIGNED)
        rows = [
            Assignment(
                issue_id=issue.id,
                admin_id=admin_id,
                assigned_by=assigned_by,
                assignment_notes=note,
            )
            for admin_id in admin_ids
        ]
        self.session.add_all(rows)
        self.session.flush()
        return rows

    def set_resolution(self, issue, notes, proof_ref, resolver_id):
        self.set_status(
            issue,
            STATUS_ASSIGNED,
            STATUS_RESOLVED,
            resolution_notes=notes,
            resolution_image_url=proof_ref,
            resolved_by=resolver_id,
            resolved_at=utcnow(),
        )

    # ------------------------------------------------------------------
    # Upvotes
    # ------------------------------------------------------------------

    def find_upvote(self, user_id, issue_id):
        return (
            self.session.query(Upvote)
            .filter(Upvote.user_id == user_id, Upvote.issue_id == issue_id)
            .one_or_none()
        )

    def add_upvote(self, user_id, issue_id):
        upvote = Upvote(user_id=user_id, issue_id=issue_id)
        self.session.add(upvote)
        self.session.flush()
        return upvote

    def remove_upvote(self, upvote):
        self.session.delete(upvote)
        self.session.flush()

    def count_upvotes(self, issue_id):
        return (
            self.session.query(func.count(Upvote.id))
            .filter(Upvote.issue_id == issue_id)
            .scalar()
        )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def status_counts(self):
        rows = self.session.query(Issue.status, func.count(Issue.id)).group_by(Issue.status).all()
        return dict(rows)

    def category_counts(self):
        return (
            self.session.query(Category.name, func.count(Issue.id))
            .outerjoin(Issue, Issue.category_id == Category.id)
            .group_by(Category.id, Category.name)
            .order_by(Category.name)
            .all()
        )

    def uncategorized_count(self):
        return self.session.query(func.count(Issue.id)).filter(Issue.category_id.is_(None)).scalar()

    def most_upvoted(self, limit):
        query, upvote_count = self._issue_query()
        rows = (
            query
            .order_by(upvote_count.desc(), Issue.created_at.desc(), Issue.id.desc())
            .limit(limit)
            .all()
        )
        return [self._serialize(*row) for row in rows]
