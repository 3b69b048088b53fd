import logging

from models.models import STATUS_ASSIGNED, STATUS_NOT_ASSIGNED, STATUS_RESOLVED
from services import policy

logger = logging.getLogger(__name__)

TOP_VOTED_LIMIT = 3


class AnalyticsAggregator:
    """Read-only statistics computed fresh from the store on every call."""

    def __init__(self, store, top_limit=TOP_VOTED_LIMIT):
        self.store = store
        self.top_limit = top_limit

    def get_analytics(self, identity):
        policy.authorize(identity, policy.VIEW_ANALYTICS)

        with self.store.snapshot():
            by_status = self.store.status_counts()
            categories = self.store.category_counts()
            uncategorized = self.store.uncategorized_count()
            most_upvoted = self.store.most_upvoted(self.top_limit)

        not_assigned = by_status.get(STATUS_NOT_ASSIGNED, 0)
        assigned = by_status.get(STATUS_ASSIGNED, 0)
        resolved = by_status.get(STATUS_RESOLVED, 0)

        # Total comes from the same grouped read as the buckets
        return {
            'total_issues': not_assigned + assigned + resolved,
            'not_assigned': not_assigned,
            'assigned': assigned,
            'resolved': resolved,
            'category_breakdown': [{'name': name, 'count': count} for name, count in categories],
            'uncategorized': uncategorized,
            'most_upvoted': most_upvoted,
        }
