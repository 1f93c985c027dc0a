from decimal import Decimal

from utils.helpers import to_money

DEFAULT_CYCLE_LENGTH_DAYS = 30


def remaining_days(end_date, now):
    """
    Whole days left in the current billing cycle, floored and never negative.

    A partial day does not count: 14 days and 23 hours is 14 days.
    """
    if end_date is None:
        return 0
    return max(0, (end_date - now).days)


def prorate(old_price, new_price, end_date, now, cycle_length_days=DEFAULT_CYCLE_LENGTH_DAYS):
    """
    Computes the signed amount owed (positive) or credited (negative) when a
    subscription switches plans mid-cycle.

    Every cycle is treated as `cycle_length_days` long regardless of the actual
    month, so the daily rate of a plan is simply price / cycle_length_days.

    Args:
        old_price (Decimal): Price of the plan being left.
        new_price (Decimal): Price of the plan being moved to.
        end_date (datetime or None): End of the current billing cycle.
        now (datetime): Moment of the change.
        cycle_length_days (int): Fixed cycle length the daily rates are based on.

    Returns:
        Decimal: The prorated amount rounded half-up to cents. 0 when no whole
                 day is left in the cycle.
    """
    days = remaining_days(end_date, now)
    if days <= 0:
        return Decimal('0.00')

    cycle = Decimal(cycle_length_days)
    old_daily_rate = Decimal(str(old_price)) / cycle
    new_daily_rate = Decimal(str(new_price)) / cycle
    return to_money((new_daily_rate - old_daily_rate) * days)


def describe_proration(amount, old_plan_name, new_plan_name):
    """Invoice description for a proration charge or credit."""
    if amount > 0:
        return f"Plan change proration: {old_plan_name} to {new_plan_name}"
    return f"Plan change credit: {old_plan_name} to {new_plan_name}"
