from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from services.subscriptions import get_current_subscription
from utils.helpers import utcnow

# Reported for a resource whose plan limit is missing or not positive.
# Plans meant to be "unlimited" use a large limit (e.g. 999 children) instead.
NON_POSITIVE_LIMIT_PERCENTAGE = 100

# Storage estimate when no measured figure is available, in MB.
STORAGE_BASE_MB = 100
STORAGE_PER_CHILD_MB = 50

RESOURCES = ('children', 'sessions', 'storage')


def estimate_storage_mb(children_count):
    return children_count * STORAGE_PER_CHILD_MB + STORAGE_BASE_MB


def usage_percentage(used, limit):
    """Share of `limit` consumed, as a whole percentage rounded half-up and capped at 100."""
    if limit is None or limit <= 0:
        return NON_POSITIVE_LIMIT_PERCENTAGE
    percentage = (Decimal(used) / Decimal(limit) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return min(100, int(percentage))


def _empty_usage():
    return {resource: {'used': 0, 'limit': 0, 'percentage': 0} for resource in RESOURCES}


def compute_usage(user_id, children_count, sessions_this_month, storage_used=None, now=None):
    """
    Compares a user's consumption with the limits of their live plan.

    Args:
        user_id (int): The user whose plan limits apply.
        children_count (int): Children currently on the account.
        sessions_this_month (int): Sessions booked in the current calendar month.
        storage_used (int, optional): Storage in MB; estimated from the children
                                      count when omitted.
        now (datetime, optional): Reference time for picking the live subscription.

    Returns:
        dict: {'children'|'sessions'|'storage': {'used', 'limit', 'percentage'}}.
              All zeros when the user has no live subscription.
    """
    now = now or utcnow()
    subscription = get_current_subscription(user_id, now=now)
    if subscription is None:
        return _empty_usage()

    plan = subscription.plan
    if storage_used is None:
        storage_used = estimate_storage_mb(children_count)

    usage = {}
    for resource, used, limit in (
        ('children', children_count, plan.children_limit),
        ('sessions', sessions_this_month, plan.sessions_limit),
        ('storage', storage_used, plan.storage_limit),
    ):
        usage[resource] = {'used': used, 'limit': limit, 'percentage': usage_percentage(used, limit)}
    return usage


def zero_usage_counts(user_id, now):
    """Default usage counts provider: nothing on the account is counted yet."""
    return 0, 0


def usage_for_user(user_id, now=None):
    """
    Usage for the HTTP surface, with counts taken from the app's
    USAGE_COUNTS_PROVIDER (a callable `(user_id, now) -> (children, sessions)`).
    """
    now = now or utcnow()
    provider = current_app.config.get('USAGE_COUNTS_PROVIDER') or zero_usage_counts
    children_count, sessions_this_month = provider(user_id, now)
    return compute_usage(user_id, children_count, sessions_this_month, now=now)
