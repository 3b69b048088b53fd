import logging

from services import policy

logger = logging.getLogger(__name__)


class VoteLedger:
    """Toggle-only upvotes: one row per (user, issue), its presence is the vote."""

    def __init__(self, store):
        self.store = store

    def toggle_upvote(self, identity, issue_id):
        """Flip the caller's vote and return the post-toggle state and total.

        The existence check, the insert or delete and the count read share
        one transaction. The issue row is locked first so toggles on the same
        issue serialize where the backend supports row locks; elsewhere the
        unique constraint on (user_id, issue_id) turns a lost race into
        ConflictRetryable instead of a second row.
        """
        policy.authorize(identity, policy.UPVOTE)

        with self.store.transaction():
            issue = self.store.lock_issue(issue_id)
            existing = self.store.find_upvote(identity.user_id, issue.id)
            if existing is not None:
                self.store.remove_upvote(existing)
                upvoted = False
            else:
                self.store.add_upvote(identity.user_id, issue.id)
                upvoted = True
            count = self.store.count_upvotes(issue.id)

        logger.info(
            "User %s %s issue %s (count=%s)",
            identity.user_id, 'upvoted' if upvoted else 'withdrew upvote on', issue_id, count,
        )
        return {'upvoted': upvoted, 'count': count}
