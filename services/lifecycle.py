"""
Issue lifecycle: not-assigned -> assigned -> resolved.

``resolved`` is terminal and ``assigned`` cannot be skipped. Every transition
checks the authorization policy first, then validates its input, then runs
inside a single store transaction.
"""

import logging
from collections.abc import Mapping

from models.models import PRIORITIES, ROLE_ADMIN, STATUS_ASSIGNED, STATUS_NOT_ASSIGNED
from services import policy
from services.errors import Forbidden, InvalidState, NotFound, ValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    'title',
    'description',
    'state',
    'city',
    'reporter_name',
    'reporter_phone',
    'location',
    'priority',
)


def _text(value):
    return value.strip() if isinstance(value, str) else ''


def _parse_id(value, label):
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {label} '{value}'")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label} '{value}'") from None


class LifecycleEngine:
    def __init__(self, store, enforce_assignee=True, max_media=5):
        self.store = store
        self.enforce_assignee = enforce_assignee
        self.max_media = max_media

    def _clean_draft(self, draft):
        if not isinstance(draft, Mapping):
            raise ValidationError('Issue draft must be an object')
        cleaned = {}
        missing = []
        for field in REQUIRED_FIELDS:
            value = _text(draft.get(field))
            if not value:
                missing.append(field)
            cleaned[field] = value
        if missing:
            raise ValidationError('Missing required fields', fields=missing)

        cleaned['priority'] = cleaned['priority'].lower()
        if cleaned['priority'] not in PRIORITIES:
            raise ValidationError(f"Priority must be one of {', '.join(PRIORITIES)}")

        media = draft.get('media_urls') or []
        if isinstance(media, str):
            media = [media]
        media = [_text(ref) for ref in media if _text(ref)]
        if not media:
            raise ValidationError('Please upload at least one image or video')
        if len(media) > self.max_media:
            raise ValidationError(f'At most {self.max_media} media files per issue')
        cleaned['media_urls'] = media

        category_id = draft.get('category_id')
        cleaned['category_id'] = (
            None if category_id in (None, '') else _parse_id(category_id, 'category id')
        )
        return cleaned

    def submit(self, identity, draft):
        """Create an issue in not-assigned for the calling citizen."""
        policy.authorize(identity, policy.CREATE_ISSUE)
        cleaned = self._clean_draft(draft)

        with self.store.transaction():
            if cleaned['category_id'] is not None and self.store.get_category(cleaned['category_id']) is None:
                raise NotFound(f"Category {cleaned['category_id']} not found")
            issue = self.store.create_issue(cleaned, identity.user_id)

        logger.info("Issue %s submitted by user %s", issue.id, identity.user_id)
        return issue.to_dict()

    def assign(self, identity, issue_id, admin_ids, note=None):
        """Assign a not-assigned issue to one or more admins in one unit of work."""
        policy.authorize(identity, policy.ASSIGN)

        if not admin_ids or isinstance(admin_ids, (str, int)):
            raise ValidationError('At least one admin must be selected')
        ids = []
        for value in admin_ids:
            admin_id = _parse_id(value, 'admin id')
            if admin_id not in ids:
                ids.append(admin_id)
        note = _text(note) or None

        with self.store.transaction():
            issue = self.store.lock_issue(issue_id)
            if issue.status != STATUS_NOT_ASSIGNED:
                logger.warning("Assign rejected for issue %s in status %s", issue.id, issue.status)
                raise InvalidState(f"Issue {issue.id} is already {issue.status}", status=issue.status)

            users = self.store.get_users(ids)
            missing = [admin_id for admin_id in ids if admin_id not in users]
            if missing:
                raise NotFound('Admin user not found', admin_ids=missing)
            not_admins = [admin_id for admin_id in ids if users[admin_id].role != ROLE_ADMIN]
            if not_admins:
                raise ValidationError('Issues can only be assigned to admins', admin_ids=not_admins)

            rows = self.store.record_assignments(issue, ids, identity.user_id, note)

        logger.info("Issue %s assigned to admins %s by user %s", issue_id, ids, identity.user_id)
        return [row.to_dict() for row in rows]

    def resolve(self, identity, issue_id, notes, proof_ref):
        """Resolve an assigned issue with notes and a proof media reference."""
        policy.authorize(identity, policy.RESOLVE)

        notes = _text(notes)
        proof_ref = _text(proof_ref)
        if not notes:
            raise ValidationError('Resolution notes are required')
        if not proof_ref:
            raise ValidationError('Please upload a proof image')

        with self.store.transaction():
            issue = self.store.lock_issue(issue_id)
            if issue.status != STATUS_ASSIGNED:
                logger.warning("Resolve rejected for issue %s in status %s", issue.id, issue.status)
                raise InvalidState(f"Issue {issue.id} is {issue.status}, not assigned", status=issue.status)

            policy.authorize(
                identity,
                policy.RESOLVE,
                assignee_ids=[a.admin_id for a in issue.assignments],
                enforce_assignee=self.enforce_assignee,
            )
            self.store.set_resolution(issue, notes, proof_ref, identity.user_id)

        logger.info("Issue %s resolved by admin %s", issue_id, identity.user_id)
        return self.store.get_issue(issue_id, viewer_id=identity.user_id)

    def admin_queue(self, identity, admin_id=None):
        """Issues still awaiting resolution by the calling admin."""
        policy.authorize(identity, policy.LIST_ADMIN_QUEUE)
        if admin_id is None:
            admin_id = identity.user_id
        if admin_id != identity.user_id:
            raise Forbidden("Admins can only view their own queue")
        return self.store.list_issues(assigned_admin=admin_id, status=STATUS_ASSIGNED)

    def issues_for_reporter(self, identity):
        return self.store.list_issues(reporter_id=identity.user_id)
