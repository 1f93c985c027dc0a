from decimal import Decimal

from flask import current_app

from extensions import db
from models import Plan, PlanIntervalEnum
from services.exceptions import NotFoundError, ValidationError

# The tiers offered when the platform launched. Limits: children, sessions per month, storage in MB.
DEFAULT_PLANS = [
    {
        'name': 'Basic Plan',
        'description': '1 child, basic features',
        'price': Decimal('29.99'),
        'features': [
            'Single child access',
            'Core learning materials',
            'Basic progress tracking',
            'Email support',
        ],
        'children_limit': 1,
        'sessions_limit': 5,
        'storage_limit': 1024,
    },
    {
        'name': 'Family Plan',
        'description': 'Up to 3 children, all features',
        'price': Decimal('49.99'),
        'features': [
            'Up to 3 children',
            'All learning materials',
            'Advanced progress tracking',
            'Priority email support',
            'Live tutoring sessions (2/month)',
        ],
        'children_limit': 3,
        'sessions_limit': 10,
        'storage_limit': 5120,
    },
    {
        'name': 'Premium Plan',
        'description': 'Unlimited children, all features + premium support',
        'price': Decimal('79.99'),
        'features': [
            'Unlimited children',
            'All learning materials',
            'Advanced progress tracking',
            '24/7 priority support',
            'Live tutoring sessions (5/month)',
            'Personalized learning plans',
        ],
        'children_limit': 999,
        'sessions_limit': 20,
        'storage_limit': 10240,
    },
]


def list_active_plans():
    """Active plans, cheapest first."""
    return Plan.query.filter_by(is_active=True).order_by(Plan.price, Plan.id).all()


def get_plan(plan_id):
    """
    Fetches a plan by id.

    Raises:
        NotFoundError: If no plan has this id.
    """
    plan = db.session.get(Plan, plan_id) if plan_id is not None else None
    if plan is None:
        raise NotFoundError('Plan', plan_id)
    return plan


def get_active_plan(plan_id):
    """
    Fetches a plan that can still be subscribed to.

    Raises:
        NotFoundError: If no plan has this id.
        ValidationError: If the plan has been retired.
    """
    plan = get_plan(plan_id)
    if not plan.is_active:
        raise ValidationError(f"The plan '{plan.name}' is no longer available.", field='plan_id')
    return plan


def seed_default_plans():
    """
    Inserts the DEFAULT_PLANS that are not in the catalog yet (matched by name).

    Returns:
        list: The Plan rows that were created.
    """
    existing = {name for (name,) in db.session.query(Plan.name).all()}
    created = []
    for attrs in DEFAULT_PLANS:
        if attrs['name'] in existing:
            continue
        plan = Plan(interval=PlanIntervalEnum.MONTH, is_active=True, **attrs)
        db.session.add(plan)
        created.append(plan)
    db.session.commit()
    current_app.logger.info(f"Seeded {len(created)} default plan(s): {[p.name for p in created]}")
    return created
